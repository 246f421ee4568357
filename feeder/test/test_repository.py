import datetime as dt

from feeder.database.models import FeedStatus
from feeder.test.dbtest import DBTest
from feeder.util import utc


class TestItems(DBTest):

    def fields(self, url='https://example.com/a', title='A',
               published_at=dt.datetime(2025, 1, 1)):
        return {'url': url, 'title': title, 'summary': None,
                'content': None, 'author': None, 'image_url': None,
                'published_at': published_at}

    def test_upsert(self):
        feed = self.add_feed()
        assert self.repo.upsert_item(feed.id, 'g1', self.fields()) == 'created'
        assert self.repo.upsert_item(feed.id, 'g1',
                                     self.fields(title='A2')) == 'updated'
        items = self.repo.get_items(feed.id)
        assert len(items) == 1
        assert items[0].title == 'A2'

    def test_upsert_matches_url_and_date(self):
        feed = self.add_feed()
        self.repo.upsert_item(feed.id, 'g1', self.fields())
        # same story, guid changed by the publisher
        assert self.repo.upsert_item(feed.id, 'g2',
                                     self.fields(title='B')) == 'updated'
        assert self.repo.count_items(feed.id) == 1
        # same URL, different date: a new item
        assert self.repo.upsert_item(
            feed.id, 'g3',
            self.fields(published_at=dt.datetime(2025, 2, 1))) == 'created'
        assert self.repo.count_items(feed.id) == 2

    def test_eviction(self):
        feed = self.add_feed()
        self.add_items(feed.id, 30)
        assert self.repo.evict_oldest_items(20, 3) == 10
        assert self.repo.count_items() == 20
        remaining = {item.source_guid for item in self.repo.get_items(feed.id)}
        # oldest (lowest numbered) gone
        assert f"guid-{feed.id}-9" not in remaining
        assert f"guid-{feed.id}-10" in remaining

    def test_eviction_undated_last(self):
        feed = self.add_feed()
        self.repo.upsert_item(feed.id, 'undated',
                              self.fields(url='https://example.com/u',
                                          published_at=None))
        self.add_items(feed.id, 5)
        assert self.repo.evict_oldest_items(3, 10) == 3
        remaining = {item.source_guid for item in self.repo.get_items(feed.id)}
        assert remaining == {'undated', f"guid-{feed.id}-3", f"guid-{feed.id}-4"}

    def test_eviction_under_cap(self):
        feed = self.add_feed()
        self.add_items(feed.id, 5)
        assert self.repo.evict_oldest_items(20, 3) == 0
        assert self.repo.count_items() == 5


class TestFeeds(DBTest):

    def test_update_status_keeps_paused(self):
        feed = self.add_feed(status='paused', is_active=False)
        assert not self.repo.update_status(feed.id, FeedStatus.BLOCKED)
        assert self.feed(feed.id).status == 'paused'

    def test_set_alternatives(self):
        feed = self.add_feed(meta={'other': 1})
        when = dt.datetime(2025, 3, 1, 12, 0)
        assert self.repo.set_alternatives(feed.id, ['https://example.com/feed'], when)
        meta = self.feed(feed.id).meta
        assert meta['alternatives'] == ['https://example.com/feed']
        assert meta['alternatives_discovered_at'] == '2025-03-01T12:00:00'
        assert meta['other'] == 1
        assert not self.repo.set_alternatives(999, [], when)

    def test_status_counts(self):
        self.add_feed()
        self.add_feed()
        self.add_feed(status='blocked')
        assert self.repo.feed_status_counts() == {'active': 2, 'blocked': 1}
        assert self.repo.count_feeds(status='blocked') == 1

    def test_claim_skips_queued_and_future(self):
        due = self.add_feed(next_fetch_attempt=utc(-10))
        self.add_feed(next_fetch_attempt=utc(3600))
        self.add_feed(next_fetch_attempt=utc(-10), queued=True)
        self.add_feed()
        assert self.repo.claim_due(utc(), 10) == [due.id]
        assert self.repo.claim_due(utc(), 10) == []
