"""
                QR Menu Price Ledger

Compliance-grade price ledger for restaurant QR menus: an append-only
log of price changes plus versioned, SHA-256 verified menu snapshots,
with a hybrid Mock/Real collaborator architecture.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
