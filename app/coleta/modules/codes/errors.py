from __future__ import annotations


class CodeError(Exception):
    """
    Base class for code allocation/validation failures.

    `reason` is a stable identifier surfaced to API callers so they can tell
    which invariant failed (parent missing, code taken, scope full, ...).
    """

    reason = "CodeError"
    status_code = 400

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out: dict = {"error": self.reason, "message": self.message}
        if self.details:
            out["details"] = {k: v for k, v in self.details.items() if v is not None}
        return out


class ParentNotFoundError(CodeError):
    reason = "ParentNotFound"
    status_code = 404


class DuplicateCodeError(CodeError):
    reason = "DuplicateCode"
    status_code = 409


class SequenceExhaustedError(CodeError):
    reason = "SequenceExhausted"
    status_code = 409


class SequenceOutOfRangeError(CodeError):
    reason = "SequenceOutOfRange"
    status_code = 422


class MalformedCodeError(CodeError):
    reason = "MalformedCode"
    status_code = 422


class ImmutableCodeError(CodeError):
    reason = "ImmutableCode"
    status_code = 422


class PrefixMismatchError(CodeError):
    reason = "PrefixMismatch"
    status_code = 500


class AllocationConflictError(CodeError):
    reason = "AllocationConflict"
    status_code = 503


class StaleSequenceError(Exception):
    """Counter row missing when it should exist. Transient; retried inside the service."""
