"""Exception hierarchy shared by the quote pipeline and settlement."""

from __future__ import annotations


class UpstreamError(Exception):
    """A price provider call failed."""

    def __init__(self, provider: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class RateLimitedError(UpstreamError):
    """Provider answered HTTP 429."""

    def __init__(self, provider: str) -> None:
        super().__init__(provider, "rate limited (HTTP 429)", status=429)


class UpstreamUnavailableError(UpstreamError):
    """Network error, 5xx or an unparseable body — worth retrying."""


class QuoteFetchError(Exception):
    """Retry budget exhausted; the price could not be determined.

    Distinct from a ``None`` quote, which means the provider confirmed
    there is no such pair.
    """


# ── Domain errors ─────────────────────────────────────────────


class DomainError(Exception):
    """Caller-facing validation failure. Never retried."""


class RoomNotFoundError(DomainError):
    pass


class InvalidRoomStateError(DomainError):
    pass


class EvalTimeNotReachedError(DomainError):
    pass


class NotParticipantError(DomainError):
    pass


class PickLockedError(DomainError):
    pass
