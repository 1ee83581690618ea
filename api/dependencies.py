"""
API 依赖 - Bearer 身份与应用服务
"""
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.services.callback_reconciler import CallbackReconciler
from application.services.circulation_service import CirculationService
from application.services.payment_service import FinePaymentService
from core.config import settings
from core.exceptions import (
    ForbiddenException,
    TokenExpiredException,
    TokenInvalidException,
    UnauthorizedException,
)
from core.logging_config import get_logger


logger = get_logger(__name__)

ROLE_BORROWER = "borrower"
ROLE_LIBRARIAN = "librarian"
ROLE_ADMIN = "admin"
STAFF_ROLES = {ROLE_LIBRARIAN, ROLE_ADMIN}

http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT issued by the auth service",
    auto_error=False,
)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: str = ROLE_BORROWER

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_identity(token: str) -> CurrentUser:
    """校验 Bearer 令牌并读取其中的 ``sub`` 与 ``role``"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.PyJWTError as e:
        logger.warning("invalid_access_token", error=str(e))
        raise TokenInvalidException()

    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise TokenInvalidException("Token subject is not a user id")
    role = str(payload.get("role") or ROLE_BORROWER).lower()
    return CurrentUser(id=user_id, role=role)


async def get_current_user(
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> CurrentUser:
    if not bearer or not bearer.credentials:
        raise UnauthorizedException("Missing bearer token")
    return decode_identity(bearer.credentials)


async def require_librarian(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_staff:
        raise ForbiddenException("Librarian role required")
    return user


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenException("Admin role required")
    return user


def get_circulation_service(request: Request) -> CirculationService:
    return request.app.state.circulation_service


def get_payment_service(request: Request) -> FinePaymentService:
    return request.app.state.payment_service


def get_callback_reconciler(request: Request) -> CallbackReconciler:
    return request.app.state.callback_reconciler
