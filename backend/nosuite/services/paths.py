"""
Path confinement for app storage

Every storage operation goes through PathResolver.resolve before touching the
filesystem. A logical path is URL-decoded exactly once and only then checked,
so an encoded traversal such as %2e%2e%2f is rejected like a literal one.
"""

import logging
import os
import posixpath
from pathlib import Path
from urllib.parse import unquote

from nosuite.core.errors import Forbidden

logger = logging.getLogger(__name__)


def check_segment(value: str, what: str = "segment") -> str:
    """Reject values that cannot be used as a single directory name"""
    if (
        not value
        or value in (".", "..")
        or "/" in value
        or "\\" in value
        or "\x00" in value
    ):
        logger.info("Rejected %s %r", what, value)
        raise Forbidden()
    return value


class PathResolver:
    """Maps {email, app origin, logical path} to a path under the users root"""

    def __init__(self, users_root):
        self.users_root = Path(os.path.abspath(users_root))

    def user_dir(self, email: str) -> Path:
        return self.users_root / check_segment(email, "email")

    def root(self, email: str, app_origin: str) -> Path:
        return self.user_dir(email) / check_segment(app_origin, "app origin")

    def normalize(self, logical_path: str, decode: bool = True) -> str:
        """
        Canonical relative form of a logical path ("" for the root)

        decode=False is for paths the web framework has already
        percent-decoded once (REST route parameters).
        Raises Forbidden on any parent reference.
        """
        decoded = unquote(logical_path or "") if decode else (logical_path or "")
        decoded = decoded.replace("\\", "/")
        if "\x00" in decoded:
            raise Forbidden()

        parts = [part for part in decoded.split("/") if part not in ("", ".")]
        if ".." in parts:
            logger.info("Rejected traversal in logical path %r", logical_path)
            raise Forbidden()

        return posixpath.join(*parts) if parts else ""

    def resolve(self, email: str, app_origin: str, logical_path: str, decode: bool = True) -> Path:
        root = self.root(email, app_origin)
        relative = self.normalize(logical_path, decode)
        full_path = root / relative if relative else root
        self.check_confined(root, full_path)
        return full_path

    def check_confined(self, root: Path, full_path: Path) -> None:
        """Component-wise containment check on the real paths"""
        real_root = os.path.realpath(root)
        real_path = os.path.realpath(full_path)
        if os.path.commonpath([real_root, real_path]) != real_root:
            logger.warning("Rejected path escaping its root: %s", full_path.name)
            raise Forbidden()

    def logical(self, root: Path, full_path: Path) -> str:
        """Logical path ("/a/b") of a path under root"""
        relative = Path(full_path).relative_to(root).as_posix()
        return "/" if relative == "." else "/" + relative
