"""HTTP clients for the remote provider catalogs.

Both clients send the cached validator in ``If-None-Match`` and translate
the outcome into exceptions the synchronizers classify:
``NotModifiedError`` for HTTP 304, ``CatalogDeadlineExceeded`` when the
caller's deadline (or the client timeout) runs out, and
``CatalogClientError`` for everything else.
"""

from __future__ import annotations

import json
import time
from typing import Any, List, Optional, Protocol, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from kestrel.core.catalog import ProviderDescriptor
from kestrel.utils.log import get_logger
from kestrel.utils.user_agent import build_user_agent

logger = get_logger()

DEFAULT_CLIENT_TIMEOUT = 30.0

T_co = TypeVar("T_co", covariant=True)


class NotModifiedError(Exception):
    """The server reports the cached catalog is current."""


class CatalogDeadlineExceeded(TimeoutError):
    """The fetch did not complete before the caller's deadline."""


class CatalogClientError(RuntimeError):
    """Transport, status or decoding failure while fetching a catalog."""


class CatalogClient(Protocol[T_co]):
    def get(self, etag: str, deadline: Optional[float] = None) -> T_co:
        """Fetch the catalog; ``deadline`` is an absolute ``time.monotonic()`` value."""
        ...


def remaining_timeout(deadline: Optional[float], cap: float = DEFAULT_CLIENT_TIMEOUT) -> float:
    """Seconds left before ``deadline``, capped at ``cap``.

    Raises:
        CatalogDeadlineExceeded: if the deadline has already passed.
    """
    if deadline is None:
        return cap
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise CatalogDeadlineExceeded("deadline exceeded before request was sent")
    return min(cap, remaining)


class _HTTPCatalogClient:
    path = ""

    def __init__(self, base_url: str, timeout: float = DEFAULT_CLIENT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path}"

    def _fetch_json(self, etag: str, deadline: Optional[float]) -> Any:
        timeout = remaining_timeout(deadline, self.timeout)
        # Per-phase httpx timeouts do not bound a slowly trickled body.
        give_up_at = time.monotonic() + timeout
        headers = {
            "Accept": "application/json",
            "User-Agent": build_user_agent("catalog"),
        }
        if etag:
            headers["If-None-Match"] = etag

        try:
            with httpx.Client(timeout=timeout) as client:
                with client.stream("GET", self.url, headers=headers) as response:
                    if response.status_code == 304:
                        raise NotModifiedError(self.url)
                    if response.status_code != 200:
                        raise CatalogClientError(f"unexpected status code: {response.status_code}")
                    body = self._read_body(response, give_up_at)
        except httpx.TimeoutException as exc:
            raise CatalogDeadlineExceeded(f"request to {self.url} timed out") from exc
        except httpx.HTTPError as exc:
            raise CatalogClientError(f"request failed: {exc}") from exc

        try:
            return json.loads(body)
        except ValueError as exc:
            raise CatalogClientError(f"failed to decode response: {exc}") from exc

    def _read_body(self, response: httpx.Response, give_up_at: float) -> bytes:
        chunks: List[bytes] = []
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            if time.monotonic() >= give_up_at:
                raise CatalogDeadlineExceeded(f"response from {self.url} did not finish before the deadline")
        return b"".join(chunks)


class ProviderCatalogClient(_HTTPCatalogClient):
    """Client for the multi-provider catalog endpoint."""

    path = "/v2/providers"
    _adapter: TypeAdapter[List[ProviderDescriptor]] = TypeAdapter(List[ProviderDescriptor])

    def get(self, etag: str, deadline: Optional[float] = None) -> List[ProviderDescriptor]:
        payload = self._fetch_json(etag, deadline)
        try:
            return self._adapter.validate_python(payload)
        except ValidationError as exc:
            raise CatalogClientError(f"failed to decode providers: {exc}") from exc


class HyperClient(_HTTPCatalogClient):
    """Client for the single Hyper provider endpoint."""

    path = "/api/v1/provider"

    def get(self, etag: str, deadline: Optional[float] = None) -> ProviderDescriptor:
        payload = self._fetch_json(etag, deadline)
        try:
            return ProviderDescriptor.model_validate(payload)
        except ValidationError as exc:
            raise CatalogClientError(f"failed to decode provider: {exc}") from exc
