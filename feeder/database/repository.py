"""
Persistence interface used by the ingestion core.

All database access by feeder services goes through FeedRepository,
constructed with a sessionmaker (feeder.database.session.Session
in production, an SQLite sessionmaker in tests).
"""

import datetime as dt
import logging
from typing import Any, ContextManager, Dict, List, Optional, Sequence

# PyPI:
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from feeder.database.models import (Feed, FeedNotification, FeedStatus,
                                    HealthLog, Item)
from feeder.util import utc

logger = logging.getLogger(__name__)

# fields refreshed when an item is seen again
ITEM_FIELDS = ('title', 'url', 'summary', 'content', 'author',
               'image_url', 'published_at')

# order for unread notifications
_PRIORITY_ORDER = case(
    (FeedNotification.priority == FeedNotification.Priority.HIGH.value, 2),
    (FeedNotification.priority == FeedNotification.Priority.NORMAL.value, 1),
    else_=0)


class FeedRepository:
    def __init__(self, session_factory: sessionmaker):
        self.Session = session_factory

    def begin(self) -> ContextManager[Session]:
        """
        returns context manager for a session inside a transaction
        (commits on normal exit, rolls back on exception)
        """
        return self.Session.begin()

    ################ feeds

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        with self.Session() as session:
            return session.get(Feed, feed_id)

    @staticmethod
    def lock_feed(session: Session, feed_id: int) -> Optional[Feed]:
        """
        fetch feed row with row lock for read-modify-write.
        `session` must be in a transaction!
        """
        stmt = select(Feed).where(Feed.id == feed_id).with_for_update()
        return session.scalars(stmt).one_or_none()

    def update_feed(self, feed_id: int, **values: Any) -> bool:
        """
        update mutable Feed columns; returns False if no such feed
        """
        with self.begin() as session:
            result = session.execute(
                update(Feed).where(Feed.id == feed_id).values(**values))
            return bool(result.rowcount)

    def update_status(self, feed_id: int, status: FeedStatus) -> bool:
        """
        change Feed.status, but never overwrite "paused"
        (pause/resume belong to the auto-pause manager)
        """
        with self.begin() as session:
            result = session.execute(
                update(Feed)
                .where(Feed.id == feed_id,
                       Feed.status != FeedStatus.PAUSED.value)
                .values(status=status.value))
            return bool(result.rowcount)

    def schedulable_feed_ids(self) -> List[int]:
        with self.Session() as session:
            return list(session.scalars(
                Feed.select_where_schedulable(Feed.id).order_by(Feed.id)))

    def feed_status_counts(self) -> Dict[str, int]:
        with self.Session() as session:
            rows = session.execute(
                select(Feed.status, func.count(Feed.id))
                .group_by(Feed.status))
            return {status: count for status, count in rows}

    def count_feeds(self, **filters: Any) -> int:
        """
        count feeds with column == value for each keyword argument
        """
        with self.Session() as session:
            stmt = select(func.count(Feed.id)).where(
                *[getattr(Feed, col) == value
                  for col, value in filters.items()])
            return session.scalar(stmt) or 0

    def set_alternatives(self, feed_id: int, alternatives: List[str],
                         discovered_at: dt.datetime) -> bool:
        """
        store discovered alternative URLs in Feed.meta
        (replacing dict so JSON column change is seen)
        """
        with self.begin() as session:
            feed = self.lock_feed(session, feed_id)
            if feed is None:
                return False
            meta = dict(feed.meta or {})
            meta['alternatives'] = alternatives
            meta['alternatives_discovered_at'] = discovered_at.isoformat()
            feed.meta = meta
            return True

    ################ scheduler registration

    def register(self, feed_id: int, when: dt.datetime) -> bool:
        """
        (re)install registration: ONE per feed, by construction
        """
        return self.update_feed(feed_id, next_fetch_attempt=when,
                                queued=False)

    def unregister(self, feed_id: int) -> bool:
        return self.update_feed(feed_id, next_fetch_attempt=None,
                                queued=False)

    def rearm(self, feed_id: int, when: dt.datetime) -> bool:
        """
        advance registration after an attempt;
        does NOT re-register a feed unscheduled while in flight
        """
        with self.begin() as session:
            result = session.execute(
                update(Feed)
                .where(Feed.id == feed_id,
                       Feed.next_fetch_attempt.is_not(None))
                .values(next_fetch_attempt=when, queued=False))
            return bool(result.rowcount)

    def claim_due(self, now: dt.datetime, limit: int) -> List[int]:
        """
        return ids of up to `limit` due feeds (oldest due first),
        marking them queued in the same transaction.
        """
        with self.begin() as session:
            stmt = Feed.select_where_due(now, Feed.id)\
                       .order_by(Feed.next_fetch_attempt.asc(), Feed.id)\
                       .limit(limit)\
                       .with_for_update(skip_locked=True)
            feed_ids = list(session.scalars(stmt))
            if feed_ids:
                session.execute(
                    update(Feed)
                    .where(Feed.id.in_(feed_ids))
                    .values(queued=True, queued_at=now)
                    .execution_options(synchronize_session=False))
            return feed_ids

    def unclaim(self, feed_ids: Sequence[int]) -> None:
        if feed_ids:
            with self.begin() as session:
                session.execute(
                    update(Feed)
                    .where(Feed.id.in_(feed_ids))
                    .values(queued=False)
                    .execution_options(synchronize_session=False))

    def release_strays(self, older_than: dt.datetime) -> int:
        """
        clear "queued" on feeds claimed before `older_than`
        but never (finished being) fetched
        """
        with self.begin() as session:
            result = session.execute(
                update(Feed)
                .where(Feed.queued.is_(True),
                       or_(Feed.queued_at.is_(None),
                           Feed.queued_at < older_than))
                .values(queued=False)
                .execution_options(synchronize_session=False))
            return int(result.rowcount or 0)

    def count_queued(self) -> int:
        return self.count_feeds(queued=True)

    def count_due(self, now: dt.datetime) -> int:
        with self.Session() as session:
            return session.scalar(
                Feed.select_where_due(now, func.count(Feed.id))) or 0

    ################ items

    def upsert_item(self, feed_id: int, source_guid: str,
                    fields: Dict[str, Any]) -> str:
        """
        create item on first sighting of source_guid, else update in place.
        Falls back to matching (feed_id, url, published_at) for rows
        stored under a different guid.
        returns 'created' or 'updated'
        """
        try:
            return self._upsert_item(feed_id, source_guid, fields)
        except IntegrityError:
            # lost a race with another worker inserting the same guid
            logger.debug(f" * duplicate guid {source_guid}; updating")
            return self._upsert_item(feed_id, source_guid, fields)

    def _upsert_item(self, feed_id: int, source_guid: str,
                     fields: Dict[str, Any]) -> str:
        with self.begin() as session:
            item = session.scalars(
                select(Item).where(Item.source_guid == source_guid)
            ).one_or_none()
            if item is None:
                item = session.scalars(
                    select(Item).where(
                        Item.feed_id == feed_id,
                        Item.url == fields['url'],
                        Item.published_at.is_(None)
                        if fields.get('published_at') is None
                        else Item.published_at == fields['published_at'])
                    .limit(1)
                ).one_or_none()
            if item is None:
                item = Item(feed_id=feed_id, source_guid=source_guid)
                for key in ITEM_FIELDS:
                    setattr(item, key, fields.get(key))
                session.add(item)
                return 'created'

            for key in ITEM_FIELDS:
                setattr(item, key, fields.get(key))
            item.updated_at = utc()
            return 'updated'

    def count_items(self, feed_id: Optional[int] = None) -> int:
        with self.Session() as session:
            stmt = select(func.count(Item.id))
            if feed_id is not None:
                stmt = stmt.where(Item.feed_id == feed_id)
            return session.scalar(stmt) or 0

    def evict_oldest_items(self, cap: int, batch_size: int) -> int:
        """
        delete oldest items (by published_at, NULLs last, then created_at)
        in batches until at most `cap` remain. returns number deleted.
        """
        deleted = 0
        excess = self.count_items() - cap
        while excess > 0:
            n = min(excess, batch_size)
            with self.begin() as session:
                ids = list(session.scalars(
                    select(Item.id)
                    .order_by(Item.published_at.asc().nulls_last(),
                              Item.created_at.asc(),
                              Item.id.asc())
                    .limit(n)))
                if not ids:
                    break
                session.execute(
                    delete(Item)
                    .where(Item.id.in_(ids))
                    .execution_options(synchronize_session=False))
            deleted += len(ids)
            excess -= len(ids)
        return deleted

    def get_items(self, feed_id: int) -> List[Item]:
        with self.Session() as session:
            return list(session.scalars(
                select(Item).where(Item.feed_id == feed_id)
                .order_by(Item.id)))

    ################ health log

    @staticmethod
    def prune_health_logs(session: Session, feed_id: int, keep: int) -> int:
        """
        delete all but newest `keep` rows for feed.
        `session` should already be in a transaction!
        """
        ids = list(session.scalars(
            select(HealthLog.id)
            .where(HealthLog.feed_id == feed_id)
            .order_by(HealthLog.attempted_at.desc(), HealthLog.id.desc())
            .offset(keep)))
        if ids:
            session.execute(
                delete(HealthLog)
                .where(HealthLog.id.in_(ids))
                .execution_options(synchronize_session=False))
        return len(ids)

    def recent_health_logs(self, feed_id: int, limit: int,
                           since: Optional[dt.datetime] = None) -> List[HealthLog]:
        """
        newest first
        """
        with self.Session() as session:
            stmt = select(HealthLog).where(HealthLog.feed_id == feed_id)
            if since is not None:
                stmt = stmt.where(HealthLog.attempted_at >= since)
            stmt = stmt.order_by(HealthLog.attempted_at.desc(),
                                 HealthLog.id.desc()).limit(limit)
            return list(session.scalars(stmt))

    def attempt_counts(self, since: dt.datetime,
                       strategy: Optional[str] = None) -> Dict[bool, int]:
        """
        return {True: successes, False: failures} for attempts since `since`
        (optionally for a single strategy)
        """
        with self.Session() as session:
            stmt = select(HealthLog.success, func.count(HealthLog.id))\
                .where(HealthLog.attempted_at >= since)
            if strategy is not None:
                stmt = stmt.where(HealthLog.strategy == strategy)
            counts = {True: 0, False: 0}
            for success, count in session.execute(
                    stmt.group_by(HealthLog.success)):
                counts[bool(success)] = count
            return counts

    ################ notifications

    def add_notification(self, notification: FeedNotification) -> None:
        with self.begin() as session:
            session.add(notification)

    def unread_notifications(self, limit: int) -> List[FeedNotification]:
        with self.Session() as session:
            return list(session.scalars(
                select(FeedNotification)
                .where(FeedNotification.is_read.is_(False))
                .order_by(_PRIORITY_ORDER.desc(),
                          FeedNotification.created_at.desc(),
                          FeedNotification.id.desc())
                .limit(limit)))

    def feed_notifications(self, feed_id: int) -> List[FeedNotification]:
        with self.Session() as session:
            return list(session.scalars(
                select(FeedNotification)
                .where(FeedNotification.feed_id == feed_id)
                .order_by(FeedNotification.id)))

    def mark_notifications_read(self, *where: Any) -> int:
        with self.begin() as session:
            result = session.execute(
                update(FeedNotification)
                .where(FeedNotification.is_read.is_(False), *where)
                .values(is_read=True)
                .execution_options(synchronize_session=False))
            return int(result.rowcount or 0)

    def delete_notification(self, notification_id: int) -> bool:
        with self.begin() as session:
            result = session.execute(
                delete(FeedNotification)
                .where(FeedNotification.id == notification_id))
            return bool(result.rowcount)
