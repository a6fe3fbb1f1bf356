"""
Ledger Error Taxonomy

Every error raised by the price ledger and snapshot components derives from
LedgerError. Each class carries the HTTP status and machine-readable code the
API layer uses when rendering an ErrorResponse.

Integrity mismatches are NOT exceptions: they are reported through
VerificationResult.is_valid.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors."""

    status_code: int = 500
    error_code: str = "ledger_error"
    retryable: bool = False

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": False,
            "error": self.error_code,
            "detail": self.message,
        }


class InvalidArgument(LedgerError):
    """Malformed input. Caller's fault, never retried automatically."""
    status_code = 400
    error_code = "invalid_argument"


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""
    status_code = 404
    error_code = "not_found"


class Forbidden(LedgerError):
    """Permission gate or membership check denied the operation."""
    status_code = 403
    error_code = "forbidden"


class ImmutabilityViolation(LedgerError):
    """
    Attempted UPDATE or DELETE of append-only data.

    Always a programming or intrusion error. Never suppressed.
    """
    status_code = 409
    error_code = "immutability_violation"

    def __init__(self, table: str, operation: str = "modify", detail: Optional[str] = None):
        super().__init__(
            f"{operation.upper()} is not allowed on append-only table '{table}'",
            detail,
        )
        self.table = table
        self.operation = operation


class ConcurrentVersionConflict(LedgerError):
    """Another publish claimed the snapshot version first. Safe to retry."""
    status_code = 409
    error_code = "concurrent_version_conflict"
    retryable = True

    def __init__(
        self,
        organization_id: str,
        attempted_version: int,
        detail: Optional[str] = None,
    ):
        super().__init__(
            f"Snapshot version {attempted_version} for organization "
            f"{organization_id} is no longer the next version",
            detail,
        )
        self.organization_id = organization_id
        self.attempted_version = attempted_version


class BuildFailed(LedgerError):
    """Reference data could not be read while building a snapshot."""
    status_code = 502
    error_code = "build_failed"
    retryable = True


class CatalogReadError(LedgerError):
    """Raised by reference-data readers when the underlying source fails."""
    status_code = 502
    error_code = "catalog_unavailable"
    retryable = True
