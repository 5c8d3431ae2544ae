"""User endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from trustbridge.core.exceptions import UnauthorizedException
from trustbridge.dependencies import DatabaseSession, Identity, authorize
from trustbridge.schemas.users import CurrentUserResponse, ProviderListResponse, ProviderResponse
from trustbridge.services.account_service import AccountService

router = APIRouter(prefix="/users")


@router.get(
    "/me",
    response_model=CurrentUserResponse,
    status_code=status.HTTP_200_OK,
    summary="Get current user",
)
async def get_current_user(
    identity: Annotated[Identity, Depends(authorize("users.me"))],
    db: DatabaseSession,
) -> CurrentUserResponse:
    """
    Get the caller's account.

    Role and 2FA flags come from the session token; the remaining fields
    are read from the database.
    """
    account = await AccountService().get_by_id(db, identity.id)
    if not account:
        raise UnauthorizedException("User not found")

    return CurrentUserResponse(
        id=identity.id,
        email=account["email"],
        name=account["name"],
        role=identity.role,
        two_factor_enabled=identity.two_factor_enabled,
        two_factor_verified=identity.two_factor_verified,
        created_at=account["created_at"],
    )


@router.get(
    "/providers",
    response_model=ProviderListResponse,
    status_code=status.HTTP_200_OK,
    summary="List providers",
)
async def list_providers(
    identity: Annotated[Identity, Depends(authorize("users.providers"))],
    db: DatabaseSession,
) -> ProviderListResponse:
    """List providers a file can be shared with."""
    providers = await AccountService().list_providers(db)
    return ProviderListResponse(
        providers=[ProviderResponse.model_validate(p) for p in providers],
    )
