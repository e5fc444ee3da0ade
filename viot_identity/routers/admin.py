# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Admin API - register trusted accounts and manage users. Requires admin user."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from viot_identity.api.schemas import AdminRegisterRequest, AdminUserUpdate
from viot_identity.auth import get_verified_user
from viot_identity.database import get_db
from viot_identity.exceptions import Forbidden
from viot_identity.models import Role, User
from viot_identity.routers.auth import respond
from viot_identity.services import accounts
from viot_identity.services.identity import RegistrationData

router = APIRouter(prefix="/admin", tags=["admin"])


async def require_admin(user: User = Depends(get_verified_user)) -> User:
    """Dependency: require admin user. The stored role is checked, not the token claim."""
    if user.role != Role.ADMIN:
        raise Forbidden("Access denied. Admins only.")
    return user


@router.post("/register")
async def register_user(
    data: AdminRegisterRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Create a verified teacher, store or admin account. No phone verification."""
    outcome = await accounts.admin_register(
        db,
        admin,
        RegistrationData(
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            phone_number=data.phone_number,
            password=data.password,
            role=data.role,
        ),
    )
    return respond(outcome)


@router.get("/users")
async def list_users(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """List all users. Admin only."""
    return respond(await accounts.list_users(db))


@router.put("/users/{public_id}")
async def update_user(
    public_id: int,
    data: AdminUserUpdate,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = accounts.UserUpdate(**data.model_dump())
    return respond(await accounts.update_user(db, public_id, changes))


@router.delete("/users/{public_id}")
async def delete_user(
    public_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return respond(await accounts.delete_user(db, public_id))
