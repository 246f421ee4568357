import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from feeder.errors import FeedNotFound
from feeder.status import status_description

import server.auth as auth
from server.common import HEALTH_LOG_LIMIT, services
from server.util import api_method

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/feeds",
    tags=["feeds"],
)


class AlternativeURL(BaseModel):
    url: str


@router.post("/test-alternative", dependencies=[Depends(auth.write_access)])
@api_method
def test_alternative(body: AlternativeURL) -> Dict[str, Any]:
    """
    Fetch and parse a candidate URL: {valid, item_count, title | error}
    """
    return services().discovery.test_alternative(body.url)


@router.post("/{feed_id}/schedule", dependencies=[Depends(auth.write_access)])
@api_method
def schedule_feed(feed_id: int) -> Optional[str]:
    """
    (Re)install the feed's registration.
    Returns first due time, or null if feed paused/inactive.
    """
    when = services().scheduler.schedule(feed_id)
    return when.isoformat() if when else None


@router.delete("/{feed_id}/schedule", dependencies=[Depends(auth.write_access)])
@api_method
def unschedule_feed(feed_id: int) -> bool:
    return services().scheduler.unschedule(feed_id)


@router.post("/{feed_id}/fetch-now", dependencies=[Depends(auth.write_access)])
@api_method
def fetch_now(feed_id: int) -> Optional[str]:
    """
    Queue a one-off fetch; returns job id (null if paused/inactive).
    """
    return services().scheduler.fetch_now(feed_id)


@router.post("/{feed_id}/resume", dependencies=[Depends(auth.write_access)])
@api_method
def resume_feed(feed_id: int) -> Optional[str]:
    """
    Clear failures, reactivate and reschedule a paused feed.
    Returns next due time.
    """
    return services().autopause.resume(feed_id)


@router.get("/{feed_id}/health", dependencies=[Depends(auth.read_access)])
@api_method
def get_feed_health(
        feed_id: int,
        _limit: int = Query(default=HEALTH_LOG_LIMIT,
                            description="max log rows to return",
                            gt=0)) -> Dict[str, Any]:
    tracker = services().tracker
    metrics = tracker.metrics(feed_id)
    metrics['status_description'] = status_description(metrics['status'])
    metrics['recent_logs'] = tracker.recent_logs(feed_id, _limit)
    return metrics


@router.get("/{feed_id}/alternatives", dependencies=[Depends(auth.read_access)])
@api_method
def get_feed_alternatives(feed_id: int) -> Dict[str, Any]:
    feed = services().repo.get_feed(feed_id)
    if feed is None:
        raise FeedNotFound(feed_id)
    meta = feed.meta or {}
    alternatives: List[str] = meta.get('alternatives', [])
    return {
        'url': feed.url,
        'status': feed.status,
        'alternatives': alternatives,
        'discovered_at': meta.get('alternatives_discovered_at'),
    }
