"""Body file access for templated responses."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from bramble.errors import BodyFileNotFound, FileAccessError

logger = logging.getLogger(__name__)


class FileSource(Protocol):
    """Read-only access to named text files."""

    def read_text_file(self, name: str) -> str: ...


class DirectoryFileSource:
    """Serves body files from a root directory.

    Names are resolved relative to the root; names that escape it
    (``../secret``, absolute paths) are refused.
    """

    def __init__(self, root: str | Path, encoding: str = "utf-8") -> None:
        """Initialize the file source.

        Args:
            root: Directory containing body files.
            encoding: Text encoding used when reading files.
        """
        self.root = Path(root).resolve()
        self.encoding = encoding

    def resolve(self, name: str) -> Path:
        """Resolve a file name to a path under the root.

        Raises:
            FileAccessError: If the name points outside the root or is not
                a usable path (for example, it contains a NUL byte).
        """
        try:
            candidate = (self.root / name).resolve()
            inside = candidate.is_relative_to(self.root)
        except (OSError, ValueError) as exc:
            raise FileAccessError(f"Body file '{name}' could not be resolved") from exc
        if not inside:
            raise FileAccessError(f"Body file '{name}' is outside the file root")
        return candidate

    def read_text_file(self, name: str) -> str:
        path = self._existing(name)
        try:
            return path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read body file %s: %s", path, exc)
            raise FileAccessError(f"Body file '{name}' could not be read") from exc

    def read_binary_file(self, name: str) -> bytes:
        """Read a body file verbatim, for responses served without templating."""
        path = self._existing(name)
        try:
            return path.read_bytes()
        except OSError as exc:
            logger.warning("Failed to read body file %s: %s", path, exc)
            raise FileAccessError(f"Body file '{name}' could not be read") from exc

    def _existing(self, name: str) -> Path:
        path = self.resolve(name)
        try:
            found = path.is_file()
        except OSError as exc:
            raise FileAccessError(f"Body file '{name}' could not be read") from exc
        if not found:
            raise BodyFileNotFound(f"Body file '{name}' not found")
        return path

    def __repr__(self) -> str:
        return f"DirectoryFileSource({str(self.root)!r})"
