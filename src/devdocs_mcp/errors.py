"""Structured failures raised by adapters and the router."""

from __future__ import annotations

from enum import Enum
from typing import Any

from devdocs_mcp.models import Ecosystem, Operation


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    PARSE_FAILURE = "ParseFailure"


class AdapterError(Exception):
    """A failure surfaced to the caller as a value, never retried here.

    ``ecosystem`` is None only when the caller named an unknown ecosystem.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        ecosystem: Ecosystem | None = None,
        operation: Operation | str | None = None,
        upstream_status: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.ecosystem = ecosystem
        self.operation = operation
        self.upstream_status = upstream_status

    @property
    def retryable(self) -> bool:
        """Whether the caller may reasonably try again later."""
        return self.kind in (ErrorKind.RATE_LIMITED, ErrorKind.UPSTREAM_UNAVAILABLE)

    def to_dict(self) -> dict[str, Any]:
        operation = self.operation
        if isinstance(operation, Operation):
            operation = operation.value
        return {
            "kind": self.kind.value,
            "ecosystem": self.ecosystem.value if self.ecosystem else None,
            "operation": operation,
            "upstream_status": self.upstream_status,
            "message": self.message,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        eco = self.ecosystem.value if self.ecosystem else "-"
        return f"AdapterError({self.kind.value}, {eco}, {self.message!r})"


def invalid_input(
    message: str,
    ecosystem: Ecosystem | None = None,
    operation: Operation | str | None = None,
) -> AdapterError:
    return AdapterError(
        ErrorKind.INVALID_INPUT, message, ecosystem=ecosystem, operation=operation
    )


def not_found(
    message: str,
    ecosystem: Ecosystem,
    operation: Operation | str | None = None,
    upstream_status: int | None = None,
) -> AdapterError:
    return AdapterError(
        ErrorKind.NOT_FOUND,
        message,
        ecosystem=ecosystem,
        operation=operation,
        upstream_status=upstream_status,
    )


def parse_failure(
    message: str,
    ecosystem: Ecosystem,
    operation: Operation | str | None = None,
) -> AdapterError:
    return AdapterError(
        ErrorKind.PARSE_FAILURE, message, ecosystem=ecosystem, operation=operation
    )
