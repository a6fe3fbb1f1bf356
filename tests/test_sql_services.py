import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from menu_ledger.core.exceptions import CatalogReadError
from menu_ledger.ledger.publisher import MenuPublisher
from menu_ledger.models import Category, Item, Organization, OrganizationMember
from menu_ledger.services.catalog.sql import SqlCatalogReader, snapshot_isolation_level
from menu_ledger.services.identity.sql import SqlIdentityProvider

ORG = "org-sql"


@pytest.fixture
async def seeded(session_maker):
    async with session_maker() as session:
        session.add_all([
            Organization(id=ORG, name="Kebap House", slug="kebap-house", settings={"theme": "dark"}),
            Category(id="c-mains", organization_id=ORG, name="Mains", slug="mains", sort_order=1),
            Category(
                id="c-off", organization_id=ORG, name="Off Season", slug="off", sort_order=2,
                is_visible=False,
            ),
            Item(id="i-adana", organization_id=ORG, category_id="c-mains", name="Adana", sort_order=1,
                 allergens=["gluten"]),
            Item(id="i-draft", organization_id=ORG, category_id="c-mains", name="Draft", is_visible=False),
            Item(id="i-melon", organization_id=ORG, category_id="c-off", name="Melon"),
            OrganizationMember(organization_id=ORG, user_id="user-chef", role="Owner"),
        ])
        await session.commit()


async def test_catalog_reads(session_maker, seeded):
    reader = SqlCatalogReader(session_maker)

    organization = await reader.get_organization(ORG)
    assert organization.name == "Kebap House"
    assert organization.settings == {"theme": "dark"}
    assert (await reader.get_organization_by_slug("kebap-house")).id == ORG
    assert await reader.get_organization("org-missing") is None

    tree = await reader.get_visible_categories_and_items(ORG)
    assert [c.id for c in tree.categories] == ["c-mains"]
    assert tree.organization.slug == "kebap-house"
    # Visible items stay even when their category is hidden
    assert [i.id for i in tree.items] == ["i-adana", "i-melon"]
    assert tree.items[0].allergens == ["gluten"]

    assert await reader.get_item_ids(ORG) == ["i-adana", "i-draft", "i-melon"]
    assert await reader.health_check()


async def test_menu_tree_missing_organization(session_maker, seeded):
    tree = await SqlCatalogReader(session_maker).get_visible_categories_and_items("org-missing")

    assert tree.organization is None
    assert tree.categories == []
    assert tree.items == []


@pytest.mark.parametrize("dialect, level", [
    ("postgresql", "REPEATABLE READ"),
    ("sqlite", "SERIALIZABLE"),
])
def test_snapshot_isolation_level(dialect, level):
    assert snapshot_isolation_level(dialect) == level


async def test_menu_tree_is_read_in_one_isolated_transaction(session_maker, seeded, monkeypatch):
    requested = []
    connection = AsyncSession.connection

    async def recording_connection(self, *args, **kwargs):
        requested.append(kwargs.get("execution_options"))
        return await connection(self, *args, **kwargs)

    monkeypatch.setattr(AsyncSession, "connection", recording_connection)
    tree = await SqlCatalogReader(session_maker).get_visible_categories_and_items(ORG)

    assert requested == [{"isolation_level": "SERIALIZABLE"}]
    assert tree.organization.id == ORG


async def test_catalog_read_failure_is_wrapped(session_maker, monkeypatch):
    reader = SqlCatalogReader(session_maker)

    def broken():
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(reader, "_session_maker", broken)
    with pytest.raises(CatalogReadError):
        await reader.get_organization(ORG)
    assert not await reader.health_check()


async def test_identity_roles(session_maker, seeded):
    identity = SqlIdentityProvider(session_maker)

    assert await identity.get_role("user-chef", ORG) == "owner"
    assert await identity.get_role("user-chef", "org-other") is None
    assert await identity.get_role("user-nobody", ORG) is None


async def test_publish_over_sql_collaborators(session_maker, seeded, grant_plan, notifications, settings):
    await grant_plan(organization_id=ORG)

    async with session_maker() as session:
        publisher = MenuPublisher(
            session,
            SqlCatalogReader(session_maker),
            SqlIdentityProvider(session_maker),
            notifications,
            settings=settings,
        )
        await publisher.record_price_change("i-adana", "350", "TRY", actor_id="user-chef")
        result = await publisher.publish(ORG, actor_id="user-chef")
        snapshot = await publisher.get_public_menu("kebap-house")

    assert result.version == 1
    assert snapshot.id == result.snapshot_id
    assert [i["id"] for i in snapshot.content["items"]] == ["i-adana", "i-melon"]
    assert snapshot.content["items"][0]["price"] == "350.00"
