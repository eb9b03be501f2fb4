"""
MeshGate — Notification Routes
==============================

HTTP surface for the notification service. The list, by-type and
date-range views are convenience shapes over `notification.advanced_query`.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from meshgate.gateway.dependencies import build_query, get_dispatcher
from meshgate.gateway.dispatcher import GatewayDispatcher
from meshgate.schemas.common import ErrorResponse
from meshgate.schemas.notification import (
    EmailTestResponse,
    NotificationQuery,
    NotificationResponse,
    NotificationStatsResponse,
    NotificationStatus,
    RetryFailedResponse,
    SendNotificationRequest,
)

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
    responses={500: {"description": "Downstream failure", "model": ErrorResponse}},
)


@router.post("/send", response_model=NotificationResponse, status_code=201, summary="Send a notification")
async def send_notification(
    body: SendNotificationRequest,
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> NotificationResponse:
    return await dispatcher.send_notification(body)


@router.get(
    "/status/{notification_id}",
    response_model=Optional[NotificationResponse],
    summary="Notification status",
)
async def notification_status(
    notification_id: str,
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> Optional[NotificationResponse]:
    return await dispatcher.notification_status(notification_id)


@router.get("/user/{user_id}", response_model=List[NotificationResponse], summary="Notifications for a user")
async def notifications_by_user(
    user_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[NotificationResponse]:
    return await dispatcher.notifications_by_user(user_id, limit)


@router.get("/search/advanced", response_model=List[NotificationResponse], summary="Search notifications")
async def search_notifications(
    user_id: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    status: Optional[NotificationStatus] = Query(default=None),
    date_from: Optional[datetime] = Query(default=None),
    date_to: Optional[datetime] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[NotificationResponse]:
    query = build_query(
        NotificationQuery,
        user_id=user_id, type=type, status=status,
        date_from=date_from, date_to=date_to,
        limit=limit, offset=offset,
    )
    return await dispatcher.search_notifications(query)


@router.get("/stats/overview", response_model=NotificationStatsResponse, summary="Delivery statistics")
async def notification_stats(dispatcher: GatewayDispatcher = Depends(get_dispatcher)) -> NotificationStatsResponse:
    return await dispatcher.notification_stats()


@router.get("/failed/list", response_model=List[NotificationResponse], summary="Failed notifications")
async def failed_notifications(dispatcher: GatewayDispatcher = Depends(get_dispatcher)) -> List[NotificationResponse]:
    return await dispatcher.failed_notifications()


@router.post("/retry/failed", response_model=RetryFailedResponse, summary="Retry every failed notification")
async def retry_failed(dispatcher: GatewayDispatcher = Depends(get_dispatcher)) -> RetryFailedResponse:
    return await dispatcher.retry_failed()


@router.get("/test/email", response_model=EmailTestResponse, summary="Check the SMTP connection")
async def test_email(dispatcher: GatewayDispatcher = Depends(get_dispatcher)) -> EmailTestResponse:
    return await dispatcher.test_email()


@router.get("/list/all", response_model=List[NotificationResponse], summary="Paginated notification list")
async def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[NotificationStatus] = Query(default=None),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[NotificationResponse]:
    query = build_query(NotificationQuery, status=status, limit=limit, offset=(page - 1) * limit)
    return await dispatcher.search_notifications(query, action="get all notifications")


@router.get("/by-type/{notification_type}", response_model=List[NotificationResponse], summary="Notifications of one type")
async def notifications_by_type(
    notification_type: str,
    limit: int = Query(default=20, ge=1, le=100),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[NotificationResponse]:
    query = build_query(NotificationQuery, type=notification_type, limit=limit)
    return await dispatcher.search_notifications(query, action="get notifications by type")


@router.get("/date-range", response_model=List[NotificationResponse], summary="Notifications in a date range")
async def notifications_by_date_range(
    start_date: datetime = Query(description="ISO 8601, inclusive"),
    end_date: datetime = Query(description="ISO 8601, inclusive"),
    limit: int = Query(default=50, ge=1, le=100),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[NotificationResponse]:
    query = build_query(NotificationQuery, date_from=start_date, date_to=end_date, limit=limit)
    return await dispatcher.search_notifications(query, action="get notifications by date range")
