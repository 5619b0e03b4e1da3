"""Integration tests for views API endpoints."""

import pytest

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


def available_columns(client, resource):
    return client.get(f"/api/views/{resource}", headers=ALICE).json()["data"]["availableColumns"]


@pytest.fixture
def client(api_client):
    return api_client


class TestIdentity:
    def test_missing_identity_header(self, client):
        response = client.get("/api/views/site")
        assert response.status_code == 401

    def test_unknown_user_is_forbidden(self, client):
        response = client.get("/api/views/site", headers={"X-User-Id": "mallory"})
        assert response.status_code == 403

    def test_user_without_capability(self, client):
        response = client.get("/api/views/site", headers={"X-User-Id": "nobody"})
        assert response.status_code == 403
        assert "site" in response.json()["detail"]


class TestDefaultView:
    """Test GET /api/views/{resource}."""

    def test_default_view(self, client):
        response = client.get("/api/views/site", headers=ALICE)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["viewName"] == "grid"
        assert data["kind"] == "rows"
        assert data["totalCount"] == 4
        assert "sellingPrice" not in data["availableColumns"]
        assert data["rows"][0]["vendor.name"] == "Acme Media"

    def test_paging_and_search(self, client):
        response = client.get("/api/views/site?page=1&pageSize=1&search=shop", headers=ALICE)
        data = response.json()["data"]
        assert data["totalCount"] == 3
        assert data["pageSize"] == 1
        assert len(data["rows"]) == 1

    def test_unknown_resource(self, client):
        response = client.get("/api/views/planet", headers=ALICE)
        assert response.status_code == 404


class TestInlineQuery:
    """Test POST /api/views/{resource}/query."""

    def test_query_prunes_forbidden_input(self, client):
        response = client.post(
            "/api/views/site/query",
            headers=ALICE,
            json={
                "filters": {"AND": [{"website": {"contains": "shop"}}, {"secretColumn": {"equals": 1}}]},
                "sort": [{"costPrice": "desc"}],
                "columns": ["website", "costPrice", "sellingPrice"],
            },
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["appliedFilters"] == {"AND": [{"website": {"contains": "shop"}}]}
        assert data["appliedSort"] == [{"costPrice": "desc"}]
        assert data["appliedColumns"] == ["website", "costPrice"]
        assert [r["website"] for r in data["rows"]] == [
            "SHOPPING-daily.com", "shop.example.com", "techshop.io",
        ]

    def test_query_collection_operator_on_scalar_column(self, client):
        response = client.post(
            "/api/views/site/query", headers=ALICE, json={"filters": {"website": {"isEmpty": True}}}
        )
        assert response.status_code == 200
        assert response.json()["data"]["totalCount"] == 4

    def test_query_group_by(self, client):
        response = client.post("/api/views/site/query", headers=ALICE, json={"groupBy": ["websiteStatus"]})
        data = response.json()["data"]
        assert data["kind"] == "grouped"
        assert sum(g["count"] for g in data["groups"]) == data["totalCount"] == 4

    def test_query_filter_config_shape(self, client):
        response = client.post(
            "/api/views/order/query",
            headers=ALICE,
            json={
                "filters": {
                    "filters": [{"column": "client.name", "operator": "equals", "value": "northwind"}],
                    "connector": "AND",
                },
            },
        )
        data = response.json()["data"]
        assert [r["orderNumber"] for r in data["rows"]] == ["ORD-001", "ORD-003"]


class TestSavedViews:
    """Test saved view lifecycle endpoints."""

    def test_create_run_update_delete(self, client):
        response = client.post(
            "/api/views/site",
            headers=ALICE,
            json={"viewName": "Cheap", "columns": ["website", "costPrice"], "filters": {"costPrice": {"lt": 100}}},
        )
        assert response.status_code == 201
        view = response.json()["data"]
        assert view["viewName"] == "Cheap"
        assert view["isDefault"] is False

        response = client.get(f"/api/views/site/{view['id']}", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["data"]["totalCount"] == 2

        response = client.put(f"/api/views/site/{view['id']}", headers=ALICE, json={"viewName": "Budget"})
        assert response.status_code == 200
        assert response.json()["data"]["viewName"] == "Budget"
        assert response.json()["data"]["columns"] == ["website", "costPrice"]

        response = client.delete(f"/api/views/site/{view['id']}", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["data"]["viewName"] == "grid"

        response = client.get(f"/api/views/site/{view['id']}", headers=ALICE)
        assert response.status_code == 404

    def test_list_views(self, client):
        client.post("/api/views/site", headers=ALICE, json={"viewName": "Mine"})
        response = client.get("/api/views/site/views", headers=ALICE)
        assert [v["viewName"] for v in response.json()["data"]] == ["grid", "Mine"]

    def test_reserved_and_duplicate_names(self, client):
        assert client.post("/api/views/site", headers=ALICE, json={"viewName": "grid"}).status_code == 400
        assert client.post("/api/views/site", headers=ALICE, json={"viewName": "Twice"}).status_code == 201
        assert client.post("/api/views/site", headers=ALICE, json={"viewName": "Twice"}).status_code == 400

    def test_view_name_required(self, client):
        assert client.post("/api/views/site", headers=ALICE, json={}).status_code == 422

    def test_other_users_view_is_forbidden(self, client):
        view = client.post("/api/views/site", headers=ALICE, json={"viewName": "Private"}).json()["data"]
        assert client.get(f"/api/views/site/{view['id']}", headers=BOB).status_code == 403
        assert client.delete(f"/api/views/site/{view['id']}", headers=BOB).status_code == 403

    def test_default_view_cannot_be_deleted(self, client):
        default_id = client.get("/api/views/site", headers=ALICE).json()["data"]["viewId"]
        response = client.delete(f"/api/views/site/{default_id}", headers=ALICE)
        assert response.status_code == 400


class TestTypeahead:
    def test_typeahead(self, client):
        response = client.get("/api/views/site/typeahead?column=website&value=travel", headers=ALICE)
        assert response.status_code == 200
        assert response.json()["data"] == ["travelblog.net"]

    def test_typeahead_requires_column(self, client):
        assert client.get("/api/views/site/typeahead", headers=ALICE).status_code == 422


class TestMetadataEndpoints:
    """Test /api/metadata, scoped to the caller's access."""

    def test_requires_identity(self, client):
        assert client.get("/api/metadata").status_code == 401
        assert client.get("/api/metadata/site").status_code == 401

    def test_lists_viewable_entities(self, client):
        assert client.get("/api/metadata", headers=ALICE).json()["data"] == ["Site", "Order"]
        assert client.get("/api/metadata", headers={"X-User-Id": "nobody"}).json()["data"] == []

    def test_entity_schema_is_limited_to_allowed_columns(self, client):
        data = client.get("/api/metadata/site", headers=ALICE).json()["data"]
        assert data["name"] == "Site"
        assert data["columns"]["vendor.name"] == "String"
        assert "sellingPrice" not in data["columns"]
        assert "vendor.country" not in data["columns"]
        assert "sellingPrice" not in [f["name"] for f in data["fields"]]
        assert [r["name"] for r in data["relations"]] == ["vendor"]
        assert list(data["columns"]) == available_columns(client, "site")

    def test_forbidden_entity(self, client):
        assert client.get("/api/metadata/vendor", headers=ALICE).status_code == 403
        assert client.get("/api/metadata/site", headers={"X-User-Id": "nobody"}).status_code == 403

    def test_unknown_entity(self, client):
        assert client.get("/api/metadata/planet", headers=ALICE).status_code == 404
