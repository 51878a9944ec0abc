"""Provider catalog synchronization.

Two catalogs feed the set of built-in providers: the multi-provider
catalog and the single Hyper provider entry. Each is fetched at most once
per process through a ``CatalogSync`` which falls back, in order, to the
fresh remote payload, the on-disk cache, and the dataset embedded in this
release.
"""

from __future__ import annotations

import json
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Generic, List, Optional, Tuple, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from kestrel.core import hyper
from kestrel.core.cache import CacheError, DiskCache
from kestrel.core.catalog import ProviderDescriptor
from kestrel.core.catalog_client import (
    CatalogClient,
    CatalogClientError,
    CatalogDeadlineExceeded,
    HyperClient,
    NotModifiedError,
    ProviderCatalogClient,
)
from kestrel.data import embedded
from kestrel.utils.env import Env
from kestrel.utils.log import get_logger

logger = get_logger()

APP_NAME = "kestrel"
DEFAULT_CATALOG_URL = "https://catalog.kestrel.dev"
SYNC_DEADLINE_SECONDS = 45.0

T = TypeVar("T")


class EmptyCatalogError(RuntimeError):
    """The remote answered successfully but with nothing usable."""


class ProviderSyncError(RuntimeError):
    """One or more catalogs could not be refreshed."""

    def __init__(self, errors: List[Exception]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(str(err) for err in self.errors))


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    FETCHING = "fetching"
    DONE = "done"


def catalog_url(env: Optional[Env] = None) -> str:
    env = env or Env.from_os()
    return env.get("KESTREL_CATALOG_URL") or DEFAULT_CATALOG_URL


def cache_path_for(name: str, env: Optional[Env] = None) -> Path:
    """Location of the cached catalog called ``name``.

    ``$XDG_DATA_HOME/kestrel/`` when set, ``%LOCALAPPDATA%\\kestrel\\`` on
    Windows, ``~/.local/share/kestrel/`` otherwise.
    """
    env = env or Env.from_os()
    xdg_data_home = env.get("XDG_DATA_HOME")
    if xdg_data_home:
        return Path(xdg_data_home) / APP_NAME / f"{name}.json"

    if os.name == "nt":
        local_app_data = env.get("LOCALAPPDATA") or str(
            Path(env.get("USERPROFILE")) / "AppData" / "Local"
        )
        return Path(local_app_data) / APP_NAME / f"{name}.json"

    return Path.home() / ".local" / "share" / APP_NAME / f"{name}.json"


class CatalogSync(Generic[T]):
    """Fetch-once-and-memoize access to one remote catalog.

    ``init`` must be called before ``get``. The first ``get`` performs the
    fetch; concurrent callers wait for it and every later caller receives
    the memoized ``(value, error)`` pair without further I/O.
    """

    name = "catalog"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._state = SyncState.UNINITIALIZED
        self._client: Optional[CatalogClient[T]] = None
        self._cache: Optional[DiskCache[T]] = None
        self._autoupdate = False
        self._result: Optional[T] = None
        self._error: Optional[Exception] = None

    # Subclass hooks

    def value_type(self) -> Any:
        raise NotImplementedError

    def embedded(self) -> T:
        raise NotImplementedError

    def is_empty(self, value: T) -> bool:
        raise NotImplementedError

    @property
    def state(self) -> SyncState:
        return self._state

    def init(self, client: CatalogClient[T], path: os.PathLike[str] | str, autoupdate: bool) -> None:
        with self._lock:
            if self._state in (SyncState.FETCHING, SyncState.DONE):
                logger.debug(f"[providers] Ignoring re-init of {self.name} sync after fetch")
                return
            self._client = client
            self._cache = DiskCache(path, self.value_type())
            self._autoupdate = autoupdate
            self._state = SyncState.CONFIGURED

    def get(self, deadline: Optional[float] = None) -> Tuple[T, Optional[Exception]]:
        """Return the catalog and the error (if any) from the single fetch.

        ``deadline`` is an absolute ``time.monotonic()`` value bounding the
        remote call. A non-None error does not invalidate the value.
        """
        with self._lock:
            if self._state is SyncState.UNINITIALIZED:
                raise RuntimeError(f"{type(self).__name__}.get called before init")
            owner = self._state is SyncState.CONFIGURED
            if owner:
                self._state = SyncState.FETCHING

        if owner:
            try:
                self._result, self._error = self._fetch(deadline)
            finally:
                with self._lock:
                    self._state = SyncState.DONE
                self._done.set()
        else:
            self._done.wait()

        if self._result is None:
            raise RuntimeError(f"{self.name} fetch did not produce a result")
        return self._result, self._error

    def _fetch(self, deadline: Optional[float]) -> Tuple[T, Optional[Exception]]:
        assert self._client is not None and self._cache is not None

        if not self._autoupdate:
            logger.info(f"[providers] Using embedded {self.name} providers")
            return self.embedded(), None

        etag = ""
        try:
            cached, etag = self._cache.get()
        except CacheError as exc:
            logger.debug(
                f"[providers] No usable {self.name} cache: {exc}",
                extra={"path": str(self._cache.path)},
            )
            cached = self.embedded()
            etag = ""
        if self.is_empty(cached):
            # An empty cache file defaults to the embedded providers.
            cached = self.embedded()
            etag = ""

        logger.info(f"[providers] Fetching {self.name} providers")
        try:
            result = self._client.get(etag, deadline)
        except CatalogDeadlineExceeded:
            logger.warning(f"[providers] {self.name} providers not updated in time")
            return cached, None
        except NotModifiedError:
            logger.info(f"[providers] {self.name} providers not modified")
            return cached, None
        except Exception as exc:
            logger.warning(
                f"[providers] Failed to fetch {self.name} providers; using cached data: "
                f"{type(exc).__name__}: {exc}"
            )
            return cached, None

        if self.is_empty(result):
            return cached, EmptyCatalogError(f"empty providers list from {self.name}")

        try:
            self._cache.store(result)
        except CacheError as exc:
            return result, exc
        return result, None


class ProviderCatalogSync(CatalogSync[List[ProviderDescriptor]]):
    name = "catalog"

    def value_type(self) -> Any:
        return List[ProviderDescriptor]

    def embedded(self) -> List[ProviderDescriptor]:
        return embedded.get_all()

    def is_empty(self, value: List[ProviderDescriptor]) -> bool:
        return len(value) == 0


class HyperSync(CatalogSync[ProviderDescriptor]):
    name = "hyper"

    def value_type(self) -> Any:
        return ProviderDescriptor

    def embedded(self) -> ProviderDescriptor:
        return hyper.embedded()

    def is_empty(self, value: ProviderDescriptor) -> bool:
        return not value.id or len(value.models) == 0


class ProviderCatalogService:
    """Owns both catalog synchronizers for the lifetime of a process.

    Construct once at startup and pass it to whatever needs the known
    provider list; tests build a fresh instance per case.
    """

    def __init__(
        self,
        autoupdate: bool = True,
        env: Optional[Env] = None,
        catalog_client: Optional[CatalogClient[List[ProviderDescriptor]]] = None,
        hyper_client: Optional[CatalogClient[ProviderDescriptor]] = None,
        catalog_cache_path: Optional[Path] = None,
        hyper_cache_path: Optional[Path] = None,
        hyper_enabled: Optional[bool] = None,
        deadline_seconds: float = SYNC_DEADLINE_SECONDS,
    ) -> None:
        self.env = env or Env.from_os()
        self.deadline_seconds = deadline_seconds
        self.hyper_enabled = hyper.enabled(self.env) if hyper_enabled is None else hyper_enabled
        self.catalog_url = catalog_url(self.env)

        self.catalog_sync = ProviderCatalogSync()
        self.catalog_sync.init(
            catalog_client or ProviderCatalogClient(self.catalog_url),
            catalog_cache_path or cache_path_for("providers", self.env),
            autoupdate,
        )
        self.hyper_sync = HyperSync()
        if self.hyper_enabled:
            self.hyper_sync.init(
                hyper_client or HyperClient(hyper.base_url(self.env)),
                hyper_cache_path or cache_path_for("hyper", self.env),
                autoupdate,
            )

        self._lock = threading.Lock()
        self._loaded = False
        self._providers: List[ProviderDescriptor] = []
        self._error: Optional[Exception] = None

    def known_providers(self) -> Tuple[List[ProviderDescriptor], Optional[Exception]]:
        """Return the built-in providers and a combined refresh error, if any.

        Both catalogs are fetched concurrently under one shared deadline; a
        failure in one does not affect the other. The error is informational:
        the provider list is always usable.
        """
        with self._lock:
            if not self._loaded:
                self._providers, self._error = self._load()
                self._loaded = True
            return list(self._providers), self._error

    def _load(self) -> Tuple[List[ProviderDescriptor], Optional[Exception]]:
        deadline = time.monotonic() + self.deadline_seconds
        errors: List[Exception] = []
        providers: List[ProviderDescriptor] = []

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="kestrel-catalog") as pool:
            catalog_future = pool.submit(self.catalog_sync.get, deadline)
            hyper_future = pool.submit(self.hyper_sync.get, deadline) if self.hyper_enabled else None

            items, err = catalog_future.result()
            providers.extend(items)
            if err is not None:
                errors.append(
                    CatalogClientError(
                        f"Kestrel was unable to fetch an updated list of providers from "
                        f"{self.catalog_url}/v2/providers. Consider setting "
                        f"KESTREL_DISABLE_PROVIDER_AUTO_UPDATE=1 to use the providers embedded "
                        f"in this release, or update them manually with "
                        f"`kestrel update-providers`.\n\nCause: {err}"
                    )
                )

            if hyper_future is not None:
                item, err = hyper_future.result()
                providers.append(item)
                if err is not None:
                    errors.append(
                        CatalogClientError(f"Kestrel was unable to fetch updated Hyper info: {err}")
                    )

        logger.debug(
            "[providers] Known providers loaded",
            extra={"count": len(providers), "errors": len(errors)},
        )
        return providers, (ProviderSyncError(errors) if errors else None)


def _is_url(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


def update_providers(path_or_url: str = "", env: Optional[Env] = None) -> List[ProviderDescriptor]:
    """Overwrite the provider catalog cache from an explicit source.

    ``path_or_url`` is ``"embedded"``, an HTTP(S) URL, or a local JSON file;
    empty means ``KESTREL_CATALOG_URL`` or the default catalog server.
    """
    env = env or Env.from_os()
    source = path_or_url or catalog_url(env)

    if source == "embedded":
        providers = embedded.get_all()
    elif _is_url(source):
        try:
            providers = ProviderCatalogClient(source).get("")
        except (CatalogClientError, CatalogDeadlineExceeded, NotModifiedError, httpx.HTTPError) as exc:
            raise CatalogClientError(f"failed to fetch providers from catalog: {exc}") from exc
    else:
        try:
            content = Path(source).read_text(encoding="utf-8")
            providers = TypeAdapter(List[ProviderDescriptor]).validate_python(json.loads(content))
        except OSError as exc:
            raise CatalogClientError(f"failed to read file: {exc}") from exc
        except (ValueError, ValidationError) as exc:
            raise CatalogClientError(f"failed to unmarshal provider data: {exc}") from exc
        if not providers:
            raise CatalogClientError("no providers found in the provided source")

    path = cache_path_for("providers", env)
    try:
        DiskCache(path, List[ProviderDescriptor]).store(providers)
    except CacheError as exc:
        raise CatalogClientError(f"failed to save providers to cache: {exc}") from exc

    logger.info(
        "[providers] Providers updated successfully",
        extra={"count": len(providers), "from": source, "to": str(path)},
    )
    return providers


def update_hyper(path_or_url: str = "", env: Optional[Env] = None) -> ProviderDescriptor:
    """Overwrite the Hyper provider cache from an explicit source."""
    env = env or Env.from_os()
    if not hyper.enabled(env):
        raise CatalogClientError("Hyper is not enabled")
    source = path_or_url or hyper.base_url(env)

    if source == "embedded":
        provider = hyper.embedded()
    elif _is_url(source):
        try:
            provider = HyperClient(source).get("")
        except (CatalogClientError, CatalogDeadlineExceeded, NotModifiedError, httpx.HTTPError) as exc:
            raise CatalogClientError(f"failed to fetch provider from Hyper: {exc}") from exc
    else:
        try:
            content = Path(source).read_text(encoding="utf-8")
            provider = ProviderDescriptor.model_validate(json.loads(content))
        except OSError as exc:
            raise CatalogClientError(f"failed to read file: {exc}") from exc
        except (ValueError, ValidationError) as exc:
            raise CatalogClientError(f"failed to unmarshal provider data: {exc}") from exc

    path = cache_path_for("hyper", env)
    try:
        DiskCache(path, ProviderDescriptor).store(provider)
    except CacheError as exc:
        raise CatalogClientError(f"failed to save Hyper provider to cache: {exc}") from exc

    logger.info("[providers] Hyper provider updated successfully", extra={"from": source, "to": str(path)})
    return provider
