"""OAuth2 credential pair and token-endpoint response models."""

from __future__ import annotations

from dataclasses import dataclass, replace

from pydantic import BaseModel


@dataclass(frozen=True)
class CredentialPair:
    """Access/refresh token pair with an absolute wall-clock expiry.

    Instances are immutable; a refresh installs a new object so readers
    never observe a half-updated pair.
    """

    access_token: str
    refresh_token: str | None
    expires_at: float
    token_type: str = "Bearer"
    scopes: tuple[str, ...] = ()

    def expires_in(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def is_expired(self, now: float, margin: float = 0.0) -> bool:
        """Return ``True`` if the token expires within *margin* seconds of *now*."""
        return self.expires_at - margin <= now

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"{self.token_type} {self.access_token}"}

    def with_refresh_token(self, refresh_token: str | None) -> CredentialPair:
        return replace(self, refresh_token=refresh_token)

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CredentialPair:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=float(data["expires_at"]),
            token_type=data.get("token_type") or "Bearer",
            scopes=tuple(data.get("scopes") or ()),
        )


class TokenResponse(BaseModel):
    """Body of a successful ``/oauth2/access_token`` call."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int = 3600
    token_type: str = "Bearer"
    scope: str | None = None

    def to_pair(self, now: float, fallback_refresh_token: str | None = None) -> CredentialPair:
        """Convert to a ``CredentialPair`` expiring ``expires_in`` after *now*.

        Teamleader may omit the refresh token on refresh; the previous one
        stays valid in that case and is carried over.
        """
        scopes = tuple(self.scope.split()) if self.scope else ()
        return CredentialPair(
            access_token=self.access_token,
            refresh_token=self.refresh_token or fallback_refresh_token,
            expires_at=now + self.expires_in,
            token_type=self.token_type or "Bearer",
            scopes=scopes,
        )
