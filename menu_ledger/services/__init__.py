"""
                        Services Module

Collaborators of the ledger with the hybrid architecture pattern.
Each service has a Mock (development) and a Real (production) implementation.

Services:
    - catalog: Reference data reader (organizations, categories, items)
    - identity: Organization membership roles
    - notifications: Realtime events over Redis pub/sub
    - excel_manager: Process-safe compliance workbooks
"""

from menu_ledger.services.excel_manager import ExcelManager

__all__ = ["ExcelManager"]
