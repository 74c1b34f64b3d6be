from __future__ import annotations

from typing import Literal

TransientReason = Literal["timeout", "rate-limited", "dependency-not-visible"]
PermanentReason = Literal["quota-exceeded", "naming-conflict", "malformed-spec", "provisioning-failed"]


class InfraError(Exception):
    """Base class for infra layer errors."""


class NotFoundError(InfraError):
    """Raised when a requested entity cannot be found."""


class ValidationError(InfraError):
    """Raised when a runtime profile, adapter setting, or input fails validation."""


class RetryableError(InfraError):
    """Raised when an operation may succeed if retried."""


class ConflictError(InfraError):
    """Raised when an operation conflicts with existing state (e.g. a record id already exists)."""


class NotConfiguredError(InfraError):
    """Raised when a requested adapter is declared but not wired for the current runtime."""


class TransientProvisionError(RetryableError):
    """A control-plane failure that is expected to clear: retried with backoff."""

    def __init__(self, reason: TransientReason, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class PermanentProvisionError(InfraError):
    """A control-plane failure retrying cannot fix: recorded immediately."""

    def __init__(self, reason: PermanentReason, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class RecordWriteError(InfraError):
    """A data-store write failed for a reason other than an id conflict."""
