"""Shared fixtures: schema registry, a SQLite database and seeded sample data."""

import pytest
from fastapi.testclient import TestClient

from gridkeeper.api.app import create_app
from gridkeeper.auth import AccessResolver, AccessStore, TTLCache
from gridkeeper.config import GridConfig
from gridkeeper.metadata.registry import SchemaRegistry
from gridkeeper.persistence import DatabaseConfig, QueryExecutor, create_db_engine
from gridkeeper.query.pagination import Paginator
from gridkeeper.views import ViewService, ViewStore

SITE_COLUMNS = [
    "website", "costPrice", "remark", "tags", "websiteStatus", "createdAt", "categories",
]
ORDER_COLUMNS = ["orderNumber", "amount", "status", "orderDate"]


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def registry():
    return SchemaRegistry.load()


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(DatabaseConfig(url=f"sqlite:///{tmp_path / 'test.db'}"))
    yield eng
    eng.dispose()


@pytest.fixture
def executor(engine, registry):
    ex = QueryExecutor(engine, registry)
    ex.ensure_schema()
    return ex


def seed_sample_data(executor: QueryExecutor) -> None:
    for vendor in [
        {"id": 1, "name": "Acme Media", "email": "sales@acme.test", "country": "US", "vendorStatus": "active"},
        {"id": 2, "name": "Blue Links", "email": "hi@bluelinks.test", "country": "UK", "vendorStatus": "paused"},
        {"id": 3, "name": "Corner Press", "email": "desk@corner.test", "country": None, "vendorStatus": "active"},
    ]:
        executor.insert("Vendor", vendor)

    for category in [{"id": 1, "name": "Tech"}, {"id": 2, "name": "Finance"}, {"id": 3, "name": "Travel"}]:
        executor.insert("Category", category)

    sites = [
        {
            "id": 1, "website": "shop.example.com", "costPrice": 120.0, "sellingPrice": 200.0,
            "domainAuthority": 40, "remark": "Acme partner", "tags": ["seo", "news"],
            "websiteStatus": "Normal", "vendorId": 1, "createdAt": "2024-01-10T00:00:00Z",
        },
        {
            "id": 2, "website": "techshop.io", "costPrice": 80.0, "domainAuthority": 55,
            "remark": None, "tags": ["tech"], "websiteStatus": "Blacklisted", "vendorId": 2,
            "createdAt": "2024-03-05T12:00:00Z",
        },
        {
            "id": 3, "website": "travelblog.net", "costPrice": 45.5, "remark": "budget",
            "tags": [], "websiteStatus": "Normal", "vendorId": None,
            "createdAt": "2024-06-20T08:30:00Z",
        },
        {
            "id": 4, "website": "SHOPPING-daily.com", "costPrice": 300.0, "domainAuthority": 70,
            "remark": "premium", "tags": ["news"], "websiteStatus": "Disqualified", "vendorId": 3,
            "createdAt": "2023-12-31T23:00:00Z",
        },
    ]
    for site in sites:
        executor.insert("Site", site)
    executor.link("Site", "categories", 1, [1, 2])
    executor.link("Site", "categories", 2, [1])
    executor.link("Site", "categories", 3, [3])

    executor.insert("Client", {"id": 1, "name": "Northwind", "email": "ops@northwind.test", "clientType": "direct"})
    executor.insert("Client", {"id": 2, "name": "Contoso", "email": "buy@contoso.test", "clientType": "agency"})

    for order in [
        {"id": 1, "orderNumber": "ORD-001", "amount": 500.0, "status": "published",
         "orderDate": "2024-02-01T00:00:00Z", "clientId": 1, "siteId": 1},
        {"id": 2, "orderNumber": "ORD-002", "amount": 250.0, "status": "pending",
         "orderDate": "2024-04-15T00:00:00Z", "clientId": 2, "siteId": 2},
        {"id": 3, "orderNumber": "ORD-003", "amount": 99.5, "status": "rejected",
         "orderDate": "2024-07-01T00:00:00Z", "clientId": 1, "siteId": 3},
    ]:
        executor.insert("Order", order)


@pytest.fixture
def seeded(executor):
    seed_sample_data(executor)
    return executor


@pytest.fixture
def access_store(engine):
    return AccessStore(engine)


def seed_access(store: AccessStore) -> dict[str, str]:
    """An analyst who can view sites and orders, and a user with no role."""
    analyst = store.create_role("analyst")
    store.grant_role_permission(analyst, "site")
    store.grant_role_permission(analyst, "order")
    store.grant_role_permission(analyst, "_update_site")
    store.grant_role_resources(analyst, "site", SITE_COLUMNS)
    store.grant_role_resources(analyst, "vendor", ["name"])
    store.grant_role_resources(analyst, "order", ORDER_COLUMNS)
    store.grant_role_resources(analyst, "client", ["name"])
    store.grant_role_resources(analyst, "site", ["website"])

    return {
        "role": analyst,
        "alice": store.create_user("alice@example.test", "Alice", analyst, user_id="alice"),
        "bob": store.create_user("bob@example.test", "Bob", analyst, user_id="bob"),
        "nobody": store.create_user("nobody@example.test", "Nobody", None, user_id="nobody"),
    }


@pytest.fixture
def users(access_store):
    return seed_access(access_store)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resolver(access_store, registry, clock):
    return AccessResolver(access_store, registry, TTLCache(ttl=300, clock=clock))


@pytest.fixture
def view_store(engine):
    return ViewStore(engine)


@pytest.fixture
def view_service(registry, resolver, view_store, seeded, users):
    return ViewService(registry, resolver, view_store, Paginator(seeded, default_page_size=25, max_page_size=100))


@pytest.fixture
def api_client(tmp_path):
    """Test client over a fresh database seeded with sample data and grants."""
    app = create_app(
        GridConfig(
            database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'api.db'}"),
            max_page_size=100,
        )
    )
    with TestClient(app) as client:
        seed_sample_data(app.state.executor)
        seed_access(app.state.access_store)
        yield client
