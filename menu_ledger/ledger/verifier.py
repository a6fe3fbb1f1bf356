"""
Integrity Verifier

Recomputes a snapshot's hash from its stored content with the same
canonicalization the builder used and compares it to the stored hash.

The verifier is read-only. A mismatch means storage corruption or
out-of-band tampering; it is logged and reported, never repaired. Live
reference data is never consulted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from menu_ledger.core.config import get_security_logger
from menu_ledger.core.exceptions import NotFoundError
from menu_ledger.ledger.canonical import content_hash
from menu_ledger.ledger.clock import utc_now
from menu_ledger.ledger.snapshot_store import SnapshotStore
from menu_ledger.models import MenuSnapshot

logger = logging.getLogger(__name__)
security_logger = get_security_logger()


@dataclass(frozen=True)
class VerificationResult:
    snapshot_id: str
    is_valid: bool
    stored_hash: str
    computed_hash: str
    verified_at: datetime

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "stored_hash": self.stored_hash,
            "computed_hash": self.computed_hash,
            "verified_at": self.verified_at.isoformat(),
        }


class IntegrityVerifier:
    """Hash verification of stored snapshots."""

    def __init__(self, store: SnapshotStore):
        self.store = store

    def verify_snapshot(self, snapshot: MenuSnapshot) -> VerificationResult:
        """Verify an already loaded snapshot row."""
        try:
            computed = content_hash(snapshot.content)
        except (TypeError, ValueError) as e:
            # Content that cannot even be canonicalized was not written by the builder
            logger.error(f"Snapshot {snapshot.id} content is not canonicalizable: {e}")
            computed = ""

        result = VerificationResult(
            snapshot_id=snapshot.id,
            is_valid=computed == snapshot.hash,
            stored_hash=snapshot.hash,
            computed_hash=computed,
            verified_at=utc_now(),
        )
        if not result.is_valid:
            logger.error(
                f"INTEGRITY MISMATCH: snapshot {snapshot.id} "
                f"({snapshot.organization_id} v{snapshot.version}) "
                f"stored={snapshot.hash} computed={computed}"
            )
            security_logger.error(
                f"SECURITY: snapshot {snapshot.id} failed hash verification"
            )
        return result

    async def verify(self, snapshot_id: str) -> VerificationResult:
        """
        Verify a stored snapshot by id.

        Raises:
            NotFoundError: Unknown snapshot id
        """
        snapshot = await self.store.get_by_id(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Snapshot not found: {snapshot_id}")
        return self.verify_snapshot(snapshot)

    async def sweep(self, limit: int) -> list[VerificationResult]:
        """Re-verify the `limit` most recent snapshots."""
        snapshots = await self.store.list_recent(limit)
        results = [self.verify_snapshot(s) for s in snapshots]

        failures = sum(1 for r in results if not r.is_valid)
        if failures:
            logger.error(f"Re-verification sweep: {failures}/{len(results)} snapshots failed")
        else:
            logger.info(f"Re-verification sweep: {len(results)} snapshots verified")
        return results
