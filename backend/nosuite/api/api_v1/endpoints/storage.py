"""
REST storage endpoints

Every route authenticates with "Authorization: Bearer <token>" and is scoped
to the calling app, taken from the Origin (or Referer) header.
"""

import logging
import mimetypes

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from nosuite.api.deps import get_services, get_storage_context
from nosuite.schemas.storage import ChunkRequest
from nosuite.services import ServiceContainer
from nosuite.services.storage import StorageContext

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/storage/{path:path}")
async def get_file(
    path: str,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    """Raw decrypted content of a file"""
    content = await services.storage.read(ctx, path)
    media_type, _ = mimetypes.guess_type(path)
    return Response(content=content, media_type=media_type or "application/octet-stream")


@router.get("/read/{path:path}")
async def read_file(
    path: str,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    """JSON content of a file written through the command transport"""
    return {"content": await services.storage.read_json(ctx, path)}


@router.post("/write/{path:path}")
async def write_file(
    path: str,
    request: Request,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    """Store the raw request body as the file content"""
    await services.storage.write(ctx, path, await request.body())
    return {"success": True}


@router.post("/write-chunk/{path:path}")
async def write_chunk(
    path: str,
    request_data: ChunkRequest,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    await services.storage.write_chunk(ctx, path, request_data.chunk, request_data.final)
    return {"success": True}


@router.post("/mkdir/{path:path}")
async def make_directory(
    path: str,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    await services.storage.mkdir(ctx, path)
    return {"success": True}


@router.get("/ls/{path:path}")
async def list_directory(
    path: str,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    return await services.storage.ls(ctx, path)


@router.get("/ls-r/{path:path}")
async def list_directory_recursive(
    path: str,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    return await services.storage.ls_recursive(ctx, path)


@router.delete("/rm/{path:path}")
async def remove(
    path: str,
    ctx: StorageContext = Depends(get_storage_context),
    services: ServiceContainer = Depends(get_services),
):
    await services.storage.rm(ctx, path)
    return {"success": True}
