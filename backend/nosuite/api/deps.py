"""
Request dependencies shared by the endpoint routers
"""

import logging
import re
from typing import Optional
from urllib.parse import urlparse

from fastapi import Depends, Request

from nosuite.core.errors import InvalidToken
from nosuite.schemas.auth import Device
from nosuite.services import ServiceContainer
from nosuite.services.storage import StorageContext
from nosuite.services.tokens import TokenCheck

logger = logging.getLogger(__name__)

_BROWSERS = [
    ("Edg/", "Edge"),
    ("OPR/", "Opera"),
    ("Firefox/", "Firefox"),
    ("Chrome/", "Chrome"),
    ("Safari/", "Safari"),
]

_PLATFORMS = [
    ("Windows", "Windows"),
    ("Android", "Android"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Mac OS X", "macOS"),
    ("Linux", "Linux"),
]


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def require_ready(services: ServiceContainer = Depends(get_services)) -> ServiceContainer:
    """Fail with 503 until the admin bootstrap has unlocked the service"""
    services.bootstrap.require_ready()
    return services


def parse_user_agent(user_agent: Optional[str]) -> dict:
    user_agent = user_agent or ""
    browser = next((name for marker, name in _BROWSERS if marker in user_agent), "unknown")
    platform = next((name for marker, name in _PLATFORMS if marker in user_agent), "unknown")
    return {
        "is_mobile": bool(re.search(r"Mobi|Android|iPhone|iPad", user_agent)),
        "browser": browser,
        "platform": platform,
    }


def device_from_request(request: Request, device_id: Optional[str] = None) -> Optional[Device]:
    """Device described by the request, None when no device id was sent"""
    device_id = device_id or request.headers.get("X-Device-Id")
    if not device_id:
        return None
    return Device(id=device_id, **parse_user_agent(request.headers.get("User-Agent")))


def app_origin(request: Request) -> Optional[str]:
    """Hostname of the calling app, from Origin or Referer"""
    origin = request.headers.get("Origin") or request.headers.get("Referer")
    if not origin:
        return None
    return urlparse(origin).hostname


def bearer_token(request: Request, token: Optional[str] = None) -> Optional[str]:
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


def check_token(
    services: ServiceContainer,
    request: Request,
    token: Optional[str],
    origin: Optional[str],
    device_id: Optional[str] = None,
) -> TokenCheck:
    """Validate a token for this request, raising InvalidToken on failure"""
    token = bearer_token(request, token)
    if not token:
        raise InvalidToken("No token provided")

    device_id = device_id or request.headers.get("X-Device-Id")
    check = services.tokens.validate_token(token, origin, device_id)
    if not check.valid:
        raise InvalidToken()
    return check


def get_storage_context(
    request: Request,
    services: ServiceContainer = Depends(require_ready),
) -> StorageContext:
    """Authenticate a REST storage call and scope it to the calling app"""
    origin = app_origin(request)
    check = check_token(services, request, None, origin)
    data = check.data
    return services.storage.context(
        data.email,
        origin,
        services.credentials.user_key(data.email, data.hashed_password),
        request.headers.get("X-Client-Id"),
        decode_paths=False,
    )
