"""Exception taxonomy for the harvest pipeline.

Fatal errors (credentials, authentication, expired session) propagate to the
CLI and abort the run. ``FetchFailed`` and ``VariantSwitchFailed`` are
recoverable: they are recorded and the run continues with the remaining work.
"""

from __future__ import annotations

from typing import Optional, Sequence


class HarvestError(RuntimeError):
    """Base class for every harvester failure."""


class CredentialsNotFound(HarvestError):
    def __init__(self, tried: Sequence[str] = ()) -> None:
        self.tried = tuple(tried)
        detail = f" (tried: {', '.join(self.tried)})" if self.tried else ""
        super().__init__(
            "No credentials found. Set TWP_EMAIL/TWP_PASSWORD, sign into the "
            f"secret manager, or create a credentials file{detail}"
        )


class AuthenticationFailed(HarvestError):
    def __init__(self, status: int, detail: Optional[str] = None) -> None:
        self.status = status
        message = f"Login failed with HTTP {status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SessionExpired(HarvestError):
    def __init__(self, detail: str = "anti-forgery token or session is no longer valid", status: Optional[int] = None) -> None:
        self.status = status
        suffix = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"Session expired: {detail}{suffix}")


class FetchFailed(HarvestError):
    def __init__(self, address: str, status: int, detail: Optional[str] = None) -> None:
        self.address = address
        self.status = status
        self.detail = detail
        message = f"Failed to fetch {address} (HTTP {status})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class VariantSwitchFailed(HarvestError):
    def __init__(self, variant: str, status: int, detail: Optional[str] = None) -> None:
        self.variant = variant
        self.status = status
        message = f"set-format {variant} rejected (HTTP {status})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MergeConflict(HarvestError):
    def __init__(self, path: Sequence[str]) -> None:
        self.path = tuple(path)
        super().__init__(f"Two fragments claim the same component: {' > '.join(self.path)}")


__all__ = [
    "HarvestError",
    "CredentialsNotFound",
    "AuthenticationFailed",
    "SessionExpired",
    "FetchFailed",
    "VariantSwitchFailed",
    "MergeConflict",
]
