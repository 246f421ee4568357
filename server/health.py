import dataclasses
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

import server.auth as auth
from server.common import services
from server.util import api_method

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["health"],
)


@router.get("/health/summary", dependencies=[Depends(auth.read_access)])
@api_method
def get_health_summary() -> Dict[str, Any]:
    s = services().monitor.summary()
    results = dataclasses.asdict(s)
    results['healthy'] = s.healthy
    return results


@router.get("/notifications", dependencies=[Depends(auth.read_access)])
@api_method
def get_notifications(
        _limit: int = Query(default=100, description="max rows", gt=0)) -> List[Dict]:
    return [n.as_dict() for n in services().notifier.unread(_limit)]


@router.post("/notifications/{notification_id}/read",
             dependencies=[Depends(auth.write_access)])
@api_method
def mark_notification_read(notification_id: int) -> bool:
    return services().notifier.mark_read(notification_id)


@router.delete("/notifications/{notification_id}",
               dependencies=[Depends(auth.write_access)])
@api_method
def delete_notification(notification_id: int) -> bool:
    return services().notifier.delete(notification_id)


@router.post("/notifications/feed/{feed_id}/read",
             dependencies=[Depends(auth.write_access)])
@api_method
def dismiss_feed_notifications(feed_id: int) -> Dict[str, int]:
    return {'count': services().notifier.dismiss_feed(feed_id)}
