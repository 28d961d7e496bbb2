from __future__ import annotations

from dataclasses import dataclass

from auth.schwab_oauth2 import TokenResponse


@dataclass
class AuthorizationSession:
    """Token state for one authorization run, owned by the orchestrator."""

    authorization_code: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None

    @property
    def has_tokens(self) -> bool:
        return bool(self.access_token)

    def accept_code(self, code: str) -> bool:
        """Record the authorization code; only the first one is ever accepted."""
        if not code or self.authorization_code is not None:
            return False
        self.authorization_code = code
        return True

    def apply(self, tokens: TokenResponse) -> None:
        self.access_token = tokens.access_token
        # Refresh responses may omit a rotated refresh token.
        if tokens.refresh_token:
            self.refresh_token = tokens.refresh_token
