"""
MeshGate — User Routes
======================

What:  HTTP surface for the user service, one downstream request per call.
How:   Parameters are validated into the same schemas the user service
       validates on receipt, then handed to the GatewayDispatcher. Downstream
       failures arrive as GatewayError and become HTTP 500 in the app's
       exception handlers.

Lookups that miss return JSON null with 200, matching the message contract.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from meshgate.gateway.dependencies import build_query, get_dispatcher
from meshgate.gateway.dispatcher import GatewayDispatcher
from meshgate.schemas.common import ErrorResponse
from meshgate.schemas.user import (
    CreateUserCommand,
    CreateUserRequest,
    DateRange,
    UserQuery,
    UserResponse,
    UserStatsResponse,
    UserWithNotifications,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    responses={500: {"description": "Downstream failure", "model": ErrorResponse}},
)


@router.post("", response_model=UserResponse, status_code=201, summary="Create a user")
async def create_user(
    body: CreateUserRequest,
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> UserResponse:
    logger.info("Creating user: %s", body.email)
    return await dispatcher.create_user(CreateUserCommand(**body.model_dump()))


@router.get("/search/advanced", response_model=List[UserResponse], summary="Search users")
async def search_users(
    search: Optional[str] = Query(default=None, description="Substring of first name, last name or email"),
    created_after: Optional[datetime] = Query(default=None, description="ISO 8601 lower bound"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[UserResponse]:
    query = build_query(UserQuery, search=search, created_after=created_after, limit=limit, offset=offset)
    return await dispatcher.search_users(query)


@router.get("/stats/overview", response_model=UserStatsResponse, summary="Registration statistics")
async def user_stats(dispatcher: GatewayDispatcher = Depends(get_dispatcher)) -> UserStatsResponse:
    return await dispatcher.user_stats()


@router.get("/search/similar/{name}", response_model=List[UserResponse], summary="Users with similar names")
async def similar_names(
    name: str = Path(min_length=1, max_length=100),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[UserResponse]:
    return await dispatcher.similar_names(name)


@router.get("/created/between", response_model=List[UserResponse], summary="Users created in a date range")
async def created_between(
    start_date: datetime = Query(description="ISO 8601, inclusive"),
    end_date: datetime = Query(description="ISO 8601, inclusive"),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[UserResponse]:
    window = build_query(DateRange, start_date=start_date, end_date=end_date)
    return await dispatcher.users_created_between(window)


@router.get("/list/all", response_model=List[UserResponse], summary="Paginated user list")
async def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[UserResponse]:
    query = build_query(UserQuery, limit=limit, offset=(page - 1) * limit)
    return await dispatcher.search_users(query, action="get all users")


@router.get(
    "/with-notifications",
    response_model=List[UserWithNotifications],
    summary="Newest users with their latest notifications",
)
async def users_with_notifications(
    limit: int = Query(default=50, ge=1, le=100),
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> List[UserWithNotifications]:
    return await dispatcher.users_with_notifications(limit)


@router.get("/email/{email}", response_model=Optional[UserResponse], summary="Find a user by email")
async def get_user_by_email(
    email: str,
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> Optional[UserResponse]:
    return await dispatcher.get_user_by_email(email)


@router.get("/{user_id}", response_model=Optional[UserResponse], summary="Get a user")
async def get_user(
    user_id: int,
    dispatcher: GatewayDispatcher = Depends(get_dispatcher),
) -> Optional[UserResponse]:
    return await dispatcher.get_user(user_id)
