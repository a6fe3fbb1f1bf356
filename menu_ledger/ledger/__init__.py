"""
                        Ledger Module

Append-only price ledger and hash-verified menu snapshots:
    - price_ledger: insert-only price facts
    - projector: current price per item
    - canonical: deterministic serialization and hashing
    - snapshot_builder / snapshot_store: versioned menu snapshots
    - verifier / exporter: integrity checks and audit documents
    - permissions: plan and override feature gate
    - publisher: orchestration entry points
"""

from menu_ledger.ledger.canonical import canonical_bytes, content_hash
from menu_ledger.ledger.permissions import FeatureLimit, PermissionDecision, resolve_permission
from menu_ledger.ledger.publisher import MenuPublisher, PublishResult, SnapshotView

__all__ = [
    "canonical_bytes",
    "content_hash",
    "FeatureLimit",
    "PermissionDecision",
    "resolve_permission",
    "MenuPublisher",
    "PublishResult",
    "SnapshotView",
]
