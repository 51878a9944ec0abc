"""OAuth token model and provider-specific OAuth request headers."""

from __future__ import annotations

import time
from typing import Dict

from pydantic import BaseModel

COPILOT_USER_AGENT = "GitHubCopilotChat/0.32.4"
COPILOT_EDITOR_VERSION = "vscode/1.105.1"
COPILOT_EDITOR_PLUGIN_VERSION = "copilot-chat/0.32.4"
COPILOT_INTEGRATION_ID = "vscode-chat"


class OAuthToken(BaseModel):
    """Stored OAuth2 credentials for a provider."""

    access_token: str
    refresh_token: str = ""
    expires_in: int = 0
    expires_at: int = 0

    def set_expires_at(self) -> None:
        """Derive ``expires_at`` from ``expires_in`` relative to now."""
        self.expires_at = int(time.time()) + self.expires_in

    def set_expires_in(self) -> None:
        """Derive ``expires_in`` from ``expires_at`` relative to now."""
        self.expires_in = int(self.expires_at - time.time())

    def is_expired(self) -> bool:
        """True once the token is within the last 10% of its lifetime."""
        return int(time.time()) >= self.expires_at - self.expires_in // 10


def copilot_headers() -> Dict[str, str]:
    """Headers GitHub Copilot expects on every API request."""
    return {
        "User-Agent": COPILOT_USER_AGENT,
        "Editor-Version": COPILOT_EDITOR_VERSION,
        "Editor-Plugin-Version": COPILOT_EDITOR_PLUGIN_VERSION,
        "Copilot-Integration-Id": COPILOT_INTEGRATION_ID,
    }
