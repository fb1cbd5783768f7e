"""
Encrypted app storage

StorageEngine performs the blocking filesystem work on paths that were
already confined by PathResolver. StorageService is the async facade used by
the API: it resolves logical paths, runs the engine in the worker thread pool
and broadcasts a change event after each successful mutation.

Writes are last-write-wins; there is no locking between concurrent writers
of one path.
"""

import base64
import binascii
import logging
import os
import shutil
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from nosuite.core.encryption import DECRYPT_FAILED, CipherEngine
from nosuite.core.errors import BadRequest, DecryptFailure, Forbidden, NotFound
from nosuite.schemas.storage import FileChangeEvent, StorageCommand, StorageEntry
from nosuite.services.broadcaster import ConnectionRegistry
from nosuite.services.paths import PathResolver

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".temp"


@dataclass
class StorageContext:
    """Who is operating on which app root, with which key"""

    email: str
    app_origin: str
    root: Path
    key: Optional[bytes]  # None for plain accounts
    client_id: Optional[str] = None
    decode_paths: bool = True  # False when the framework already decoded them


class StorageEngine:
    def __init__(self, cipher: CipherEngine, resolver: PathResolver):
        self.cipher = cipher
        self.resolver = resolver

    def _entry(self, ctx: StorageContext, path: Path, is_directory: bool) -> StorageEntry:
        return StorageEntry(
            name=path.name,
            path=self.resolver.logical(ctx.root, path),
            is_directory=is_directory,
        )

    def _scan(self, ctx: StorageContext, directory: Path) -> List[StorageEntry]:
        """Immediate children of a directory, symlinks excluded"""
        entries = []
        with os.scandir(directory) as it:
            for item in sorted(it, key=lambda e: e.name):
                if item.is_symlink():
                    continue
                entries.append(self._entry(ctx, directory / item.name, item.is_dir(follow_symlinks=False)))
        return entries

    def mkdir(self, ctx: StorageContext, path: Path) -> None:
        if path.exists() and not path.is_dir():
            raise BadRequest("A file exists at this path")
        path.mkdir(parents=True, exist_ok=True)

    def ls(self, ctx: StorageContext, path: Path) -> List[StorageEntry]:
        if not path.is_dir():
            raise NotFound()
        return self._scan(ctx, path)

    def ls_recursive(self, ctx: StorageContext, path: Path) -> List[StorageEntry]:
        """Breadth-first listing of every descendant"""
        if not path.is_dir():
            raise NotFound()

        entries: List[StorageEntry] = []
        pending = deque([path])
        while pending:
            directory = pending.popleft()
            self.resolver.check_confined(ctx.root, directory)
            try:
                children = self._scan(ctx, directory)
            except OSError as e:
                logger.warning(f"Skipping unreadable directory during recursive listing: {e.strerror}")
                continue

            entries.extend(children)
            pending.extend(directory / child.name for child in children if child.is_directory)
        return entries

    def read(self, ctx: StorageContext, path: Path) -> bytes:
        if not path.is_file():
            raise NotFound()
        content = self.cipher.read_encrypted(path, ctx.key)
        if content is None:
            raise DecryptFailure()
        return content

    def read_json(self, ctx: StorageContext, path: Path) -> Any:
        if not path.is_file():
            raise NotFound()
        content = self.cipher.read_json(path, ctx.key)
        if content is DECRYPT_FAILED:
            raise DecryptFailure()
        return content

    def ensure_root(self, ctx: StorageContext) -> None:
        ctx.root.mkdir(parents=True, exist_ok=True)

    def _prepare_write(self, ctx: StorageContext, path: Path) -> None:
        if path == ctx.root:
            raise BadRequest("Cannot write to the app root")
        if path.is_dir():
            raise BadRequest("A directory exists at this path")
        path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, ctx: StorageContext, path: Path, content: bytes) -> None:
        self._prepare_write(ctx, path)
        self.cipher.write_encrypted(path, content, ctx.key)

    def write_json(self, ctx: StorageContext, path: Path, value: Any) -> None:
        self._prepare_write(ctx, path)
        self.cipher.write_json(path, value, ctx.key)

    def write_chunk(self, ctx: StorageContext, path: Path, chunk: str, final: bool) -> bool:
        """
        Append a piece of a data URL upload; on the final piece decode it

        The side file path + ".temp" accumulates "<mime header>,<base64>".
        Returns True once the file has been written.
        """
        self._prepare_write(ctx, path)
        temp_path = path.with_name(path.name + TEMP_SUFFIX)

        with open(temp_path, "a", encoding="utf-8") as f:
            f.write(chunk or "")

        if not final:
            return False

        try:
            data_url = temp_path.read_text(encoding="utf-8")
            _, separator, payload = data_url.partition(",")
            if not separator:
                raise BadRequest("Upload is not a data URL")
            try:
                content = base64.b64decode(payload, validate=False)
            except (binascii.Error, ValueError):
                raise BadRequest("Upload is not valid base64")
            self.cipher.write_encrypted(path, content, ctx.key)
        finally:
            temp_path.unlink(missing_ok=True)
        return True

    def rm(self, ctx: StorageContext, path: Path) -> None:
        if path == ctx.root:
            raise Forbidden()
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)
        else:
            raise NotFound()

    def reap_temp_files(self, max_age_seconds: float) -> int:
        """Delete upload side files older than max_age_seconds"""
        cutoff = time.time() - max_age_seconds
        removed = 0
        users_root = self.resolver.users_root
        if not users_root.is_dir():
            return 0

        for dirpath, dirnames, filenames in os.walk(users_root):
            for filename in filenames:
                if not filename.endswith(TEMP_SUFFIX):
                    continue
                path = Path(dirpath) / filename
                try:
                    if path.stat().st_mtime < cutoff:
                        path.unlink()
                        removed += 1
                except OSError as e:
                    logger.warning(f"Could not reap {filename}: {e.strerror}")

        if removed:
            logger.info(f"Removed {removed} stale upload files")
        return removed


class StorageService:
    """Async storage operations with confinement and change broadcast"""

    def __init__(self, engine: StorageEngine, resolver: PathResolver, registry: ConnectionRegistry):
        self.engine = engine
        self.resolver = resolver
        self.registry = registry

    def context(
        self,
        email: str,
        app_origin: str,
        key: Optional[bytes],
        client_id: Optional[str] = None,
        decode_paths: bool = True,
    ) -> StorageContext:
        return StorageContext(
            email=email,
            app_origin=app_origin,
            root=self.resolver.root(email, app_origin),
            key=key,
            client_id=client_id,
            decode_paths=decode_paths,
        )

    async def _resolve(self, ctx: StorageContext, logical_path: str) -> Path:
        """Confine the logical path, then make sure the app root exists"""
        path = self.resolver.resolve(ctx.email, ctx.app_origin, logical_path, ctx.decode_paths)
        await run_in_threadpool(self.engine.ensure_root, ctx)
        return path

    async def _broadcast(self, ctx: StorageContext, path: Path, action: str, content: Any = None) -> None:
        event = FileChangeEvent(
            path=self.resolver.logical(ctx.root, path),
            action=action,
            content=content,
            app=ctx.app_origin,
            client_id=ctx.client_id,
        )
        await self.registry.broadcast(ctx.email, event, ctx.client_id)

    async def mkdir(self, ctx: StorageContext, logical_path: str) -> None:
        path = await self._resolve(ctx, logical_path)
        await run_in_threadpool(self.engine.mkdir, ctx, path)
        await self._broadcast(ctx, path, "mkdir")

    async def ls(self, ctx: StorageContext, logical_path: str) -> List[StorageEntry]:
        path = await self._resolve(ctx, logical_path)
        return await run_in_threadpool(self.engine.ls, ctx, path)

    async def ls_recursive(self, ctx: StorageContext, logical_path: str) -> List[StorageEntry]:
        path = await self._resolve(ctx, logical_path)
        return await run_in_threadpool(self.engine.ls_recursive, ctx, path)

    async def read(self, ctx: StorageContext, logical_path: str) -> bytes:
        path = await self._resolve(ctx, logical_path)
        return await run_in_threadpool(self.engine.read, ctx, path)

    async def read_json(self, ctx: StorageContext, logical_path: str) -> Any:
        path = await self._resolve(ctx, logical_path)
        return await run_in_threadpool(self.engine.read_json, ctx, path)

    async def write(self, ctx: StorageContext, logical_path: str, content: bytes) -> None:
        path = await self._resolve(ctx, logical_path)
        await run_in_threadpool(self.engine.write, ctx, path, content)
        await self._broadcast(ctx, path, "write")

    async def write_json(self, ctx: StorageContext, logical_path: str, value: Any) -> None:
        path = await self._resolve(ctx, logical_path)
        await run_in_threadpool(self.engine.write_json, ctx, path, value)
        await self._broadcast(ctx, path, "write", value)

    async def write_chunk(self, ctx: StorageContext, logical_path: str, chunk: str, final: bool) -> None:
        path = await self._resolve(ctx, logical_path)
        written = await run_in_threadpool(self.engine.write_chunk, ctx, path, chunk, final)
        if written:
            await self._broadcast(ctx, path, "write")

    async def rm(self, ctx: StorageContext, logical_path: str) -> None:
        path = await self._resolve(ctx, logical_path)
        await run_in_threadpool(self.engine.rm, ctx, path)
        await self._broadcast(ctx, path, "rm")

    async def execute(self, ctx: StorageContext, cmd: StorageCommand) -> Any:
        """Run one realtime transport command and build its response"""
        handler = COMMAND_HANDLERS[cmd.type]
        return await handler(self, ctx, cmd)


async def _cmd_mkdir(service: StorageService, ctx: StorageContext, cmd: StorageCommand) -> Dict:
    await service.mkdir(ctx, cmd.path)
    return {"success": True}


async def _cmd_ls(service: StorageService, ctx: StorageContext, cmd: StorageCommand) -> List[Dict]:
    return [entry.model_dump() for entry in await service.ls(ctx, cmd.path)]


async def _cmd_ls_recursive(service: StorageService, ctx: StorageContext, cmd: StorageCommand) -> List[Dict]:
    return [entry.model_dump() for entry in await service.ls_recursive(ctx, cmd.path)]


async def _cmd_read(service: StorageService, ctx: StorageContext, cmd: StorageCommand) -> Dict:
    return {"content": await service.read_json(ctx, cmd.path)}


async def _cmd_write(service: StorageService, ctx: StorageContext, cmd: StorageCommand) -> Dict:
    await service.write_json(ctx, cmd.path, cmd.content)
    return {"success": True}


async def _cmd_write_chunk(service: StorageService, ctx: StorageContext, cmd: StorageCommand) -> Dict:
    await service.write_chunk(ctx, cmd.path, cmd.chunk or "", cmd.final)
    return {"success": True}


async def _cmd_rm(service: StorageService, ctx: StorageContext, cmd: StorageCommand) -> Dict:
    await service.rm(ctx, cmd.path)
    return {"success": True}


COMMAND_HANDLERS: Dict[str, Callable] = {
    "mkdir": _cmd_mkdir,
    "ls": _cmd_ls,
    "ls-r": _cmd_ls_recursive,
    "read": _cmd_read,
    "write": _cmd_write,
    "write-chunk": _cmd_write_chunk,
    "rm": _cmd_rm,
}
