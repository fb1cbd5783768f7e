"""
Pydantic schemas for storage commands and change events
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

CommandType = Literal["mkdir", "ls", "ls-r", "read", "write", "write-chunk", "rm"]
ChangeAction = Literal["mkdir", "write", "rm"]


class StorageEntry(BaseModel):
    name: str
    path: str = Field(..., description="Path relative to the app root")
    is_directory: bool


class StorageCommand(BaseModel):
    """One command of the realtime transport"""

    type: CommandType
    path: str = "/"
    content: Any = None
    chunk: Optional[str] = None
    final: bool = False
    token: Optional[str] = None
    app: str = Field(..., description="Calling app origin (hostname)")
    device_id: Optional[str] = None
    client_id: Optional[str] = None


class StorageMessage(BaseModel):
    """A batch of commands sent over the realtime connection"""

    event: Literal["storage"] = "storage"
    id: Optional[str] = None
    cmds: List[StorageCommand] = Field(default_factory=list)


class RegisterMessage(BaseModel):
    """Join the change feed of the token's user without running a command"""

    event: Literal["register"] = "register"
    token: Optional[str] = None
    app: str = Field(..., description="Calling app origin (hostname)")
    device_id: Optional[str] = None
    client_id: Optional[str] = None


class ChunkRequest(BaseModel):
    chunk: str
    final: bool = False


class FileChangeEvent(BaseModel):
    path: str
    action: ChangeAction
    content: Any = None
    app: Optional[str] = None
    client_id: Optional[str] = None
    by_self: bool = False
