"""
Pydantic Schemas for Request/Response Validation

Covers:
- Price changes and price history
- Menu publishing and snapshot queries
- Compliance exports and snapshot comparison
- Feature permission checks

Version: 1.0.0
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class PriceChangeCreate(BaseModel):
    """Request schema for recording a new price."""
    item_id: str = Field(..., min_length=1, max_length=64, examples=["item-tea"])
    price: Decimal = Field(..., gt=0, examples=["120.00"])
    currency: Optional[str] = Field(None, min_length=3, max_length=3, examples=["TRY"])
    reason: Optional[str] = Field(None, max_length=500, examples=["Seasonal update"])

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.isalpha():
            raise ValueError('Currency must be a 3-letter ISO 4217 code')
        return v.upper()


class PublishRequest(BaseModel):
    """Request schema for publishing a menu snapshot."""
    organization_id: str = Field(..., min_length=1, max_length=64, examples=["org-demo"])
    notes: Optional[str] = Field(None, max_length=1000)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class PriceFactResponse(BaseModel):
    """One ledger entry."""
    id: int
    item_id: str
    price: str
    currency: str
    reason: Optional[str]
    recorded_by: Optional[str]
    recorded_at: datetime


class CurrentPriceResponse(BaseModel):
    item_id: str
    price: str
    currency: str
    recorded_at: datetime
    fact_id: int


class PriceHistoryResponse(BaseModel):
    """Page of an item's price history."""
    item_id: str
    total: int
    limit: int
    offset: int
    entries: List[PriceFactResponse]


class PublishResponse(BaseModel):
    """Response after successfully publishing a menu."""
    success: bool = True
    snapshot_id: str
    organization_id: str
    version: int
    hash: str
    published_at: datetime


class VerificationResponse(BaseModel):
    is_valid: bool
    stored_hash: str
    computed_hash: str
    verified_at: datetime


class SnapshotResponse(BaseModel):
    """A stored menu snapshot."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    version: int
    hash: str
    content: dict[str, Any]
    published_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    verification: Optional[VerificationResponse] = None


class SnapshotSummary(BaseModel):
    """History entry without the full content."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    version: int
    hash: str
    published_by: Optional[str] = None
    created_at: datetime


class SnapshotHistoryResponse(BaseModel):
    organization_id: str
    total: int
    limit: int
    offset: int
    snapshots: List[SnapshotSummary]


class ComplianceExportResponse(BaseModel):
    """Audit export of one snapshot. integrity_failure is always present."""
    snapshot_id: str
    organization_id: str
    version: int
    hash: str
    created_at: datetime
    published_by: Optional[str] = None
    content: dict[str, Any]
    verification: VerificationResponse
    integrity_failure: bool
    exported_at: datetime


class SnapshotComparisonResponse(BaseModel):
    organization_id: str
    from_version: int
    to_version: int
    identical: bool
    added_items: List[str]
    removed_items: List[str]
    added_categories: List[str]
    removed_categories: List[str]
    price_changes: List[dict[str, Any]]


class PriceHistoryExportResponse(BaseModel):
    organization_id: str
    date_range: dict[str, datetime]
    entry_count: int
    entries: List[dict[str, Any]]
    exported_at: datetime


class FeatureLimitResponse(BaseModel):
    value: Optional[int] = None
    unlimited: bool = False


class FeatureCheckResponse(BaseModel):
    organization_id: str
    feature_key: str
    allowed: bool
    source: str
    plan_name: Optional[str] = None
    limit: Optional[FeatureLimitResponse] = None
    expires_at: Optional[datetime] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    catalog_service: str
    notification_service: str
    timestamp: datetime
