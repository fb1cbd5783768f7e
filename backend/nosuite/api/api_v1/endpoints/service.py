"""
Service bootstrap endpoints: physical key issue and unlock
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from nosuite.api.deps import get_services
from nosuite.core.errors import Forbidden
from nosuite.schemas.auth import NfcKeyRequest, StartRequest
from nosuite.services import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def service_health(services: ServiceContainer = Depends(get_services)):
    """Health check, reports whether the service has been unlocked"""
    return {
        "status": "healthy",
        "ready": services.bootstrap.unlocked,
        "connections": services.registry.count(),
    }


@router.post("/nfc-key")
async def create_nfc_key(request_data: NfcKeyRequest, services: ServiceContainer = Depends(get_services)):
    """
    Issue a new physical key to the admin device

    The key is returned inside the URL written to the NFC tag.
    """
    physical_key = services.bootstrap.create_physical_key(request_data.admin_device_id)
    auth_server = services.settings.AUTH_SERVER
    return {"physical_key_url": f"https://{auth_server}/start/?key={physical_key}"}


@router.post("/start")
async def start_service(request_data: StartRequest, services: ServiceContainer = Depends(get_services)):
    """Unlock the master key from the physical key and admin password"""
    unlocked = await run_in_threadpool(
        services.bootstrap.unlock,
        request_data.physical_key_hex,
        request_data.admin_password,
        request_data.admin_device_id,
    )
    if not unlocked:
        raise Forbidden()

    logger.info("Service started")
    return {"success": True}
