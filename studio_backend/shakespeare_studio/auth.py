import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Request

from . import settings
from .deps import get_repo
from .errors import AuthenticationRequired, Forbidden
from .repository import Repository

logger = logging.getLogger(__name__)

UID_HEADER = "X-User-UID"
UID_COOKIE = "showgeki_uid"


def _bearer(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _candidate(request: Request, allow_query: bool = True) -> Optional[str]:
    raw = request.headers.get(UID_HEADER) or _bearer(request) or request.cookies.get(UID_COOKIE)
    if raw or not allow_query:
        return raw
    return request.query_params.get("uid")


def normalize_uid(value: str) -> str:
    try:
        return str(UUID(value.strip()))
    except (AttributeError, ValueError):
        raise AuthenticationRequired("Invalid user id")


def _resolve(request: Request, allow_query: bool) -> str:
    if settings.AUTH_BYPASS:
        return settings.AUTH_BYPASS_UID
    raw = _candidate(request, allow_query)
    if not raw:
        raise AuthenticationRequired("Authentication required")
    return normalize_uid(raw)


async def current_uid(request: Request) -> str:
    return _resolve(request, allow_query=True)


async def admin_uid(request: Request, repo: Repository = Depends(get_repo)) -> str:
    # admin routes use `uid` as a filter, never as the caller
    uid = _resolve(request, allow_query=False)
    if uid in settings.ADMIN_UIDS or await repo.is_admin(uid):
        return uid
    logger.warning(f"Admin access denied for {uid}")
    raise Forbidden("Admin access required")
