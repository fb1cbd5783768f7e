"""
Authentication endpoints: sign in, sign up, app token exchange
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from nosuite.api.deps import app_origin, check_token, device_from_request, require_ready
from nosuite.core.encryption import hash_password
from nosuite.core.errors import BadRequest, Forbidden, Refuse
from nosuite.schemas.auth import (
    AccountInfo,
    AuthRequest,
    ChangePasswordRequest,
    EmailRequest,
    TokenRequest,
    TokenResponse,
)
from nosuite.services import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()

MINUTES_PER_DAY = 24 * 60


def _identity_ttl(services: ServiceContainer, email: str) -> float:
    settings = services.settings
    if email == settings.DEMO_ACCOUNT:
        return settings.DEMO_TOKEN_TTL_MINUTES / MINUTES_PER_DAY
    return settings.TOKEN_TTL_DAYS


def _app_ttl(services: ServiceContainer, email: str) -> float:
    settings = services.settings
    if email == settings.DEMO_ACCOUNT:
        return settings.DEMO_APP_TOKEN_TTL_MINUTES / MINUTES_PER_DAY
    return settings.APP_TOKEN_TTL_DAYS


@router.post("/email")
def email_action(request_data: EmailRequest, services: ServiceContainer = Depends(require_ready)):
    """Tell the client whether this email signs in or signs up"""
    email = request_data.email
    if services.credentials.user_exists(email):
        return {"action": "sign in"}
    if services.credentials.may_sign_up(email):
        return {"action": "sign up"}
    raise Refuse()


@router.post("/auth", response_model=TokenResponse)
def authenticate(request: Request, request_data: AuthRequest, services: ServiceContainer = Depends(require_ready)):
    """
    Sign in, or sign up when the account does not exist yet

    Returns an identity token scoped to the auth server.
    """
    email = request_data.email
    device = device_from_request(request, request_data.device_id)
    if device is None:
        raise BadRequest("No device id provided")

    credentials = services.credentials
    if not credentials.may_authenticate(email):
        raise Refuse()

    hashed_password = hash_password(request_data.password)

    if credentials.user_exists(email):
        if not credentials.verify_password(email, hashed_password):
            raise Forbidden("Invalid password")
    else:
        credentials.create_user(email, hashed_password, request_data.name)

    credentials.add_device(email, device, hashed_password)

    token = services.tokens.issue_token(
        email,
        services.settings.AUTH_SERVER,
        device,
        _identity_ttl(services, email),
        hashed_password,
    )
    logger.info(f"Issued identity token for {email}")
    return {"token": token}


@router.post("/auth/{app}", response_model=TokenResponse)
def delegate_to_app(
    app: str,
    request: Request,
    request_data: TokenRequest,
    services: ServiceContainer = Depends(require_ready),
):
    """Exchange an identity token for a token usable by one app"""
    check = check_token(
        services, request, request_data.token, services.settings.AUTH_SERVER, request_data.device_id
    )
    if not services.tokens.origin_authorized(app):
        raise Forbidden()

    data = check.data
    if data.email == services.settings.DEMO_ACCOUNT:
        services.credentials.reset_demo_account()
        if data.device:
            services.credentials.add_device(data.email, data.device, data.hashed_password)

    token = services.tokens.issue_token(
        data.email,
        app,
        data.device,
        _app_ttl(services, data.email),
        data.hashed_password,
    )
    logger.info(f"Issued app token for {data.email} on {app}")
    return {"token": token}


@router.post("/account-info", response_model=AccountInfo)
def account_info(request: Request, request_data: TokenRequest, services: ServiceContainer = Depends(require_ready)):
    check = check_token(services, request, request_data.token, app_origin(request), request_data.device_id)
    data = check.data
    return AccountInfo(
        email=data.email,
        name=services.credentials.read_name(data.email, data.hashed_password),
        shared=data.scope != services.settings.AUTH_SERVER,
    )


@router.post("/change-password", response_model=TokenResponse)
async def change_password(
    request: Request,
    request_data: ChangePasswordRequest,
    services: ServiceContainer = Depends(require_ready),
):
    """
    Rotate the password and re-encrypt the account

    Every token issued before the change stops validating. A fresh identity
    token is returned for the calling device.
    """
    check = await run_in_threadpool(
        check_token, services, request, request_data.token, app_origin(request), request_data.device_id
    )
    data = check.data
    if data.scope != services.settings.AUTH_SERVER:
        raise Forbidden()

    new_hash = hash_password(request_data.new_password)
    await run_in_threadpool(
        services.credentials.change_password,
        data.email,
        hash_password(request_data.password),
        new_hash,
    )

    token = services.tokens.issue_token(
        data.email, data.scope, data.device, _identity_ttl(services, data.email), new_hash
    )
    return {"token": token}
