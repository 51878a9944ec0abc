"""Single-file JSON cache for provider catalogs.

The file holds exactly the serialized payload, with no envelope. Reads
return a validator (content hash of the raw bytes) that is sent back to
the catalog server as a conditional-request token.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Any, Generic, Tuple, TypeVar, Union

from pydantic import TypeAdapter, ValidationError

from kestrel.utils.log import get_logger

logger = get_logger()

T = TypeVar("T")


class CacheError(RuntimeError):
    """Raised when the cache file cannot be read, parsed, or written."""


def etag_of(data: bytes) -> str:
    """Strong entity tag for ``data``."""
    return f'"{hashlib.sha256(data).hexdigest()}"'


class DiskCache(Generic[T]):
    """JSON blob store for one value of type ``T`` at a fixed path."""

    def __init__(self, path: Union[str, Path], value_type: Any) -> None:
        self.path = Path(path)
        self._adapter: TypeAdapter[T] = TypeAdapter(value_type)

    def get(self) -> Tuple[T, str]:
        """Load the cached value and its validator.

        Raises:
            CacheError: if the file is missing, unreadable, or does not parse.
        """
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise CacheError(f"failed to read provider cache file: {exc}") from exc

        try:
            value = self._adapter.validate_json(data)
        except (ValidationError, ValueError) as exc:
            raise CacheError(f"failed to decode provider data from cache: {exc}") from exc

        return value, etag_of(data)

    def store(self, value: T) -> None:
        """Write ``value`` to disk, readable by the owner only."""
        logger.info("[cache] Saving provider data to disk", extra={"path": str(self.path)})
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheError(f"failed to create directory for provider cache: {exc}") from exc

        try:
            data = self._adapter.dump_json(value, by_alias=True)
        except (TypeError, ValueError) as exc:
            raise CacheError(f"failed to marshal provider data: {exc}") from exc

        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.chmod(self.path, 0o600)
        except OSError as exc:
            raise CacheError(f"failed to write provider data to cache: {exc}") from exc

