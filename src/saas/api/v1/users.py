"""Tenant-scoped user endpoints.

All queries run on the request's pinned session, so the same URL reads and
writes a different schema per tenant domain.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status

from src.saas.api.deps import get_user_service
from src.saas.schemas.tenant import ErrorResponse, UserCreate, UserResponse
from src.saas.services.users import UserService

router = APIRouter(
    prefix="/api/v1/users",
    tags=["users"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)


@router.get("", response_model=list[UserResponse])
async def list_users(service: UserService = Depends(get_user_service)):
    return await service.list_users()


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, service: UserService = Depends(get_user_service)):
    return await service.create_user(body.email)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: uuid.UUID, service: UserService = Depends(get_user_service)):
    return await service.get_user(user_id)


@router.delete("/{user_id}", response_model=UserResponse)
async def delete_user(user_id: uuid.UUID, service: UserService = Depends(get_user_service)):
    return await service.soft_delete_user(user_id)
