"""Error types and the success/failure result returned by the engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class SproutError(Exception):
    """A fatal, user-visible failure with a machine-readable cause."""

    cause: str = "internal_error"
    status: int = 500

    def __init__(
        self,
        message: str,
        *,
        cause: str | None = None,
        status: int | None = None,
        upgrade_required: bool = False,
        feature: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.cause = cause
        if status is not None:
            self.status = status
        self.upgrade_required = upgrade_required
        self.feature = feature


class AccessDenied(SproutError):
    cause = "access_denied"
    status = 403


class UpgradeRequired(SproutError):
    cause = "subscription_required"
    status = 403

    def __init__(self, message: str, *, feature: str) -> None:
        super().__init__(message, upgrade_required=True, feature=feature)


class ProfileIncomplete(SproutError):
    cause = "profile_incomplete"
    status = 422


class InvalidPayload(SproutError):
    cause = "invalid_payload"
    status = 400


class UnknownEvent(SproutError):
    cause = "unknown_event"
    status = 400


class SessionNotActive(SproutError):
    cause = "session_not_active"
    status = 409


class EmptyReply(SproutError):
    cause = "empty_reply"
    status = 502


class UpstreamError(SproutError):
    cause = "upstream_error"
    status = 502


class RealtimeConnectionFailed(SproutError):
    cause = "realtime_connection_failed"
    status = 502


@dataclass
class Failure:
    """The failed outcome of an engine operation."""

    cause: str
    message: str
    status: int | None = None
    upgrade_required: bool = False
    feature: str | None = None

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, error: SproutError) -> Failure:
        return cls(
            cause=error.cause,
            message=error.message,
            status=error.status,
            upgrade_required=error.upgrade_required,
            feature=error.feature,
        )

    @classmethod
    def internal(cls) -> Failure:
        """Failure for an unexpected exception; details stay in the logs."""
        return cls(
            cause=SproutError.cause,
            message="Something went wrong. Please try again.",
            status=SproutError.status,
        )

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "cause": self.cause}
        if self.upgrade_required:
            body["requiresSubscription"] = True
        if self.feature:
            body["feature"] = self.feature
        return body


@dataclass
class Success(Generic[T]):
    """The successful outcome of an engine operation."""

    value: T

    @property
    def ok(self) -> bool:
        return True


Result = Success[T] | Failure
