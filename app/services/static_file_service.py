"""Resolution of upload paths against the static files root."""

import logging
from pathlib import Path
from typing import Union

from app.config import UPLOAD_URL_PREFIX
from app.exceptions import StaticFileNotFound, TraversalRejected

logger = logging.getLogger(__name__)


class StaticFileService:
    """Maps request paths under a URL prefix onto files below a root directory."""

    def __init__(self, root_dir: Union[str, Path], url_prefix: str = UPLOAD_URL_PREFIX):
        """Initialize static file service.

        Args:
            root_dir: Directory whose files are served; relative paths use the cwd
            url_prefix: URL path the directory is mounted under
        """
        self.root_dir = Path(root_dir)
        self.url_prefix = url_prefix.rstrip("/")

    def matches(self, path: str) -> bool:
        """Check whether a request path falls under the mount prefix."""
        return path == self.url_prefix or path.startswith(self.url_prefix + "/")

    def resolve(self, path: str) -> Path:
        """Resolve a request path to a servable file.

        Args:
            path: Decoded request path, including the mount prefix

        Returns:
            Absolute path of an existing regular file inside the root

        Raises:
            TraversalRejected: The path resolves outside the root directory
            StaticFileNotFound: Nothing servable exists at the path
        """
        relative = path[len(self.url_prefix):].lstrip("/")
        if "\x00" in relative:
            raise TraversalRejected(context={"path": path})

        try:
            root = self.root_dir.resolve()
            candidate = (root / relative).resolve()
        except (OSError, RuntimeError):
            # Unresolvable paths (name too long, symlink loops) are simply absent
            raise StaticFileNotFound(context={"path": path})

        try:
            parts = candidate.relative_to(root).parts
        except ValueError:
            raise TraversalRejected(context={"path": path})

        # Dot-files are never served
        if any(part.startswith(".") for part in parts):
            raise StaticFileNotFound(context={"path": path})

        try:
            is_file = candidate.is_file()
        except OSError:
            is_file = False
        if not is_file:
            raise StaticFileNotFound(context={"path": path})

        return candidate
