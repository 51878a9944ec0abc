"""User-Agent generation for Kestrel HTTP requests.

Format: kestrel/{version} ({source})

Examples:
- CLI: kestrel/0.4.0 (cli)
- Catalog refresh: kestrel/0.4.0 (catalog)
"""

from __future__ import annotations

import os
from typing import Literal, Optional

from kestrel import __version__

UserAgentSource = Literal["cli", "catalog", "probe"]

KESTREL_CLIENT_SOURCE_ENV = "KESTREL_CLIENT_SOURCE"

DEFAULT_SOURCE: UserAgentSource = "cli"


def get_client_source() -> UserAgentSource:
    """Get the client source type from environment or default."""
    source = os.environ.get(KESTREL_CLIENT_SOURCE_ENV, "").lower()
    valid_sources: set[UserAgentSource] = {"cli", "catalog", "probe"}
    if source in valid_sources:
        return source  # type: ignore
    return DEFAULT_SOURCE


def build_user_agent(source: Optional[UserAgentSource] = None) -> str:
    """Build the User-Agent header value."""
    if source is None:
        source = get_client_source()
    return f"kestrel/{__version__} ({source})"
