import datetime as dt
from enum import Enum
from typing import Any, Dict, Optional

# PyPI:
from sqlalchemy import (JSON, BigInteger, Boolean, DateTime, Index, Integer,
                        String, Text, select, text)
from sqlalchemy.orm import DeclarativeBase, mapped_column
from sqlalchemy.sql._typing import _ColumnsClauseArgument
from sqlalchemy.sql.selectable import Select

from feeder.util import utc

# SQLite only auto-increments "INTEGER PRIMARY KEY" (tests run on SQLite)
BigIntId = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    __abstract__ = True

    def as_dict(self) -> Dict[str, Any]:
        return {c.key: getattr(self, c.key)
                for c in self.__mapper__.column_attrs}


class FeedStatus(Enum):
    # .value stored in Feed.status
    ACTIVE = 'active'
    DEGRADED = 'degraded'
    BLOCKED = 'blocked'
    UNREACHABLE = 'unreachable'
    PAUSED = 'paused'


class Feed(Base):
    __tablename__ = 'feeds'

    id = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    url = mapped_column(String, nullable=False)
    title = mapped_column(String)
    rss_title = mapped_column(String)  # ONLY set from feed document title
    refresh_interval_minutes = mapped_column(Integer)
    is_active = mapped_column(Boolean, nullable=False, default=True,
                              server_default=text('true'))
    # sticky: once set, only browser rendering is used
    requires_browser = mapped_column(Boolean, nullable=False, default=False,
                                     server_default=text('false'))
    status = mapped_column(String, nullable=False,
                           default=FeedStatus.ACTIVE.value,
                           server_default=text("'active'"))
    consecutive_failures = mapped_column(Integer, nullable=False, default=0,
                                         server_default=text('0'))
    failure_count = mapped_column(Integer, nullable=False, default=0,
                                  server_default=text('0'))  # lifetime
    last_error = mapped_column(String)
    last_error_class = mapped_column(String)  # errors.ErrorClass value
    last_status_code = mapped_column(Integer)
    last_fetched_at = mapped_column(DateTime)
    last_success_at = mapped_column(DateTime)
    last_attempt_at = mapped_column(DateTime)
    total_attempts = mapped_column(Integer, nullable=False, default=0,
                                   server_default=text('0'))
    total_successes = mapped_column(Integer, nullable=False, default=0,
                                    server_default=text('0'))
    total_failures = mapped_column(Integer, nullable=False, default=0,
                                   server_default=text('0'))
    avg_response_time = mapped_column(Integer)  # ms
    # "metadata" is reserved by the declarative base:
    meta = mapped_column('metadata', JSON, nullable=False, default=dict)
    # scheduler registration: NULL means not scheduled
    next_fetch_attempt = mapped_column(DateTime)
    queued = mapped_column(Boolean, nullable=False, default=False,
                           server_default=text('false'))
    queued_at = mapped_column(DateTime)  # time of last claim by queuer
    created_at = mapped_column(DateTime, default=utc)

    __table_args__ = (
        Index('feeds_next_fetch_attempt', 'next_fetch_attempt'),
        Index('feeds_status', 'status'),
    )

    def __repr__(self) -> str:
        return f"<Feed id={self.id} url={self.url} status={self.status}>"

    @property
    def paused(self) -> bool:
        return bool(self.status == FeedStatus.PAUSED.value)

    @property
    def schedulable(self) -> bool:
        return bool(self.is_active) and not self.paused

    @staticmethod
    def select_where_schedulable(
            *entities: _ColumnsClauseArgument[Any]) -> Select[Any]:
        """
        Helper for defining queries.
        Should be the ONE place where the "schedulable" test is coded.
        """
        return select(*entities).where(
            Feed.is_active.is_(True),
            Feed.status != FeedStatus.PAUSED.value)

    @classmethod
    def select_where_due(cls, now: dt.datetime,
                         *entities: _ColumnsClauseArgument[Any]) -> Select[Any]:
        """
        registered feeds whose due time has come, not already queued
        """
        return cls.select_where_schedulable(*entities)\
                  .where(Feed.queued.is_(False),
                         Feed.next_fetch_attempt.is_not(None),
                         Feed.next_fetch_attempt <= now)


class Item(Base):
    __tablename__ = 'items'

    id = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    feed_id = mapped_column(BigInteger, nullable=False, index=True)
    source_guid = mapped_column(String, nullable=False, unique=True)
    title = mapped_column(String, nullable=False)
    url = mapped_column(String, nullable=False)
    summary = mapped_column(Text)
    content = mapped_column(Text)
    author = mapped_column(String)
    image_url = mapped_column(String)
    published_at = mapped_column(DateTime)
    created_at = mapped_column(DateTime, default=utc)
    updated_at = mapped_column(DateTime, default=utc)

    __table_args__ = (
        Index('items_feed_url_published', 'feed_id', 'url', 'published_at'),
        Index('items_published_created', 'published_at', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<Item id={self.id} feed_id={self.feed_id}>"


class HealthLog(Base):
    __tablename__ = 'feed_health_logs'

    id = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    feed_id = mapped_column(BigInteger, nullable=False)
    attempted_at = mapped_column(DateTime, nullable=False)
    success = mapped_column(Boolean, nullable=False)
    status_code = mapped_column(Integer)
    error_message = mapped_column(String)
    error_class = mapped_column(String)
    response_time = mapped_column(Integer)  # ms
    strategy = mapped_column(String)

    __table_args__ = (
        Index('feed_health_logs_feed_attempted', 'feed_id', 'attempted_at'),
    )

    def __repr__(self) -> str:
        return f"<HealthLog id={self.id} feed_id={self.feed_id} success={self.success}>"


class FeedNotification(Base):
    __tablename__ = 'feed_notifications'

    id = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    feed_id = mapped_column(BigInteger, nullable=False, index=True)
    type = mapped_column(String, nullable=False)      # Type enum
    priority = mapped_column(String, nullable=False)  # Priority enum
    title = mapped_column(String, nullable=False)
    message = mapped_column(String, nullable=False)
    is_read = mapped_column(Boolean, nullable=False, default=False,
                            server_default=text('false'))
    created_at = mapped_column(DateTime, default=utc)

    class Type(Enum):
        WARNING = 'warning'
        ERROR = 'error'
        SUCCESS = 'success'
        INFO = 'info'

    class Priority(Enum):
        LOW = 'low'
        NORMAL = 'normal'
        HIGH = 'high'

    def __repr__(self) -> str:
        return f"<FeedNotification id={self.id} feed_id={self.feed_id} type={self.type}>"

    @staticmethod
    def from_info(feed_id: int, type: Type, priority: Priority,
                  title: str, message: str,
                  created_at: Optional[dt.datetime] = None) -> 'FeedNotification':
        fn = FeedNotification()
        fn.feed_id = feed_id
        fn.type = type.value
        fn.priority = priority.value
        fn.title = title
        fn.message = message
        fn.is_read = False
        fn.created_at = created_at or utc()
        return fn
