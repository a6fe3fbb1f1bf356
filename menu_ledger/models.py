"""
SQLAlchemy Database Models

Ledger tables (owned by this package, append-only):
- price_facts: every price ever set for a menu item
- menu_snapshots: versioned, hashed captures of a published menu

Reference tables (owned by the CRUD layer, read here):
- organizations, categories, items, organization_members

Licensing tables (inputs of the permission gate):
- features, plans, plan_features, subscriptions, organization_feature_overrides
"""

import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from menu_ledger.database import AppendOnlyMixin, Base, register_append_only

# JSONB on PostgreSQL, generic JSON elsewhere
JsonDocument = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
LedgerId = BigInteger().with_variant(Integer(), "sqlite")


def _uuid_str() -> str:
    return str(uuid.uuid4())


# =============================================================================
# LEDGER TABLES
# =============================================================================

class PriceFact(AppendOnlyMixin, Base):
    """
    One immutable record of a price having been set for an item.

    The integer id follows insertion order and breaks ties between facts
    recorded at the same instant.
    """
    __tablename__ = "price_facts"

    id = Column(LedgerId, primary_key=True, autoincrement=True)

    item_id = Column(String(64), nullable=False)
    price = Column(Numeric(14, 3), nullable=False)
    currency = Column(String(3), nullable=False)
    reason = Column(Text, nullable=True)
    recorded_by = Column(String(64), nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_price_facts_item_recorded", "item_id", "recorded_at", "id"),
        Index("ix_price_facts_recorded_at", "recorded_at"),
        Index("ix_price_facts_recorded_by", "recorded_by"),
    )

    def __repr__(self):
        return f"<PriceFact #{self.id} - {self.item_id} - {self.price} {self.currency}>"


class MenuSnapshot(AppendOnlyMixin, Base):
    """
    Immutable, hashed capture of an organization's published menu.

    (organization_id, version) is unique: two racing publishers cannot both
    persist the same version.
    """
    __tablename__ = "menu_snapshots"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    organization_id = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False)

    content = Column(JsonDocument, nullable=False)
    hash = Column(String(64), nullable=False, index=True)

    published_by = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "version", name="uq_menu_snapshots_org_version"),
        Index("ix_menu_snapshots_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<MenuSnapshot {self.organization_id} v{self.version} - {self.hash[:12]}>"


register_append_only(PriceFact.__table__)
register_append_only(MenuSnapshot.__table__)


# =============================================================================
# REFERENCE TABLES (CRUD layer)
# =============================================================================

class Organization(Base):
    """A restaurant tenant."""
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True, default=_uuid_str)
    name = Column(String(200), nullable=False)
    slug = Column(String(200), nullable=False, unique=True)
    logo_url = Column(String(500), nullable=True)
    cover_url = Column(String(500), nullable=True)
    settings = Column(JsonDocument, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Category(Base):
    """Menu category; parent_id builds the category tree."""
    __tablename__ = "categories"

    id = Column(String(64), primary_key=True, default=_uuid_str)
    organization_id = Column(String(64), nullable=False, index=True)
    parent_id = Column(String(64), nullable=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(200), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_visible = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "slug", name="uq_categories_org_slug"),
    )


class Item(Base):
    """Menu item. Prices are never stored here; see price_facts."""
    __tablename__ = "items"

    id = Column(String(64), primary_key=True, default=_uuid_str)
    organization_id = Column(String(64), nullable=False, index=True)
    category_id = Column(String(64), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    allergens = Column(JsonDocument, nullable=True)
    nutrition = Column(JsonDocument, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_visible = Column(Boolean, nullable=False, default=True)


class OrganizationMember(Base):
    """Membership of an authenticated user in an organization."""
    __tablename__ = "organization_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=False)
    role = Column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_members_org_user"),
    )


# =============================================================================
# LICENSING TABLES
# =============================================================================

class Feature(Base):
    """Licensable capability: 'boolean' (on/off) or 'limit' (numeric)."""
    __tablename__ = "features"

    key = Column(String(100), primary_key=True)
    name = Column(String(200), nullable=False)
    type = Column(String(10), nullable=False, default="boolean")


class Plan(Base):
    """Subscription plan bundling features."""
    __tablename__ = "plans"

    id = Column(String(64), primary_key=True, default=_uuid_str)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class PlanFeature(Base):
    """Value of one feature inside one plan."""
    __tablename__ = "plan_features"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_id = Column(String(64), nullable=False)
    feature_key = Column(String(100), nullable=False)
    value_boolean = Column(Boolean, nullable=True)
    value_limit = Column(Integer, nullable=True)
    is_unlimited = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("plan_id", "feature_key", name="uq_plan_features_plan_feature"),
    )


class Subscription(Base):
    """Links an organization to a plan."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String(64), nullable=False, index=True)
    plan_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    valid_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FeatureOverride(Base):
    """Per-organization exception that beats the plan while not expired."""
    __tablename__ = "organization_feature_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String(64), nullable=False)
    feature_key = Column(String(100), nullable=False)
    override_value = Column(Boolean, nullable=False)
    value_limit = Column(Integer, nullable=True)
    is_unlimited = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=True)
    granted_by = Column(String(64), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "feature_key", name="uq_overrides_org_feature"),
    )
