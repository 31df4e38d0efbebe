"""Authentication schemes accepted by the Origin CA API.

A client is built with exactly one of these and sends its headers on every call.
"""

from dataclasses import dataclass


@dataclass(frozen=True, repr=False)
class ApiKeyAuth:
    """Account email plus global API key."""

    email: str
    key: str

    def headers(self) -> dict[str, str]:
        return {"X-Auth-Email": self.email, "X-Auth-Key": self.key}

    def __repr__(self) -> str:
        return f"ApiKeyAuth(email={self.email!r}, key=<redacted>)"


@dataclass(frozen=True, repr=False)
class ServiceKeyAuth:
    """Origin CA service key."""

    token: str

    def headers(self) -> dict[str, str]:
        return {"X-Auth-User-Service-Key": self.token}

    def __repr__(self) -> str:
        return "ServiceKeyAuth(token=<redacted>)"


AuthMethod = ApiKeyAuth | ServiceKeyAuth
