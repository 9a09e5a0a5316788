"""HTTP API tests: login, item codes, backfill and health."""

import pytest

from jewelbox.errors import ConflictError, StoreUnavailableError
from jewelbox.models import AuthEvent, Item, User, UserTaskLog
from jewelbox.services import inventory_service
from jewelbox.services.auth_service import ModernHash, detect_hash_format


class TestLoginRoute:
    def test_legacy_login_upgrades_and_logs(self, client, legacy_user, db_session):
        response = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "admin123"})

        assert response.status_code == 200
        body = response.get_json()
        assert body["user"]["email"] == "admin@example.com"
        assert body["message"] == "Login successful"

        db_session.expire_all()
        user = db_session.get(User, legacy_user.id)
        assert isinstance(detect_hash_format(user.password_hash), ModernHash)
        assert [e.outcome for e in db_session.query(AuthEvent).all()] == ["UPGRADED"]
        assert db_session.query(UserTaskLog).filter_by(action="LOGIN_SUCCESS").count() == 1

    def test_second_login_is_plain_success(self, client, legacy_user, db_session):
        client.post("/api/auth/login", json={"email": "admin@example.com", "password": "admin123"})
        response = client.post("/api/auth/login", json={"identifier": "admin@example.com", "password": "admin123"})

        assert response.status_code == 200
        outcomes = [e.outcome for e in db_session.query(AuthEvent).order_by(AuthEvent.id).all()]
        assert outcomes == ["UPGRADED", "SUCCESS"]

    @pytest.mark.parametrize("email,password", [
        ("admin@example.com", "wrong"),
        ("nobody@example.com", "admin123"),
    ])
    def test_failures_look_identical(self, client, legacy_user, db_session, email, password):
        response = client.post("/api/auth/login", json={"email": email, "password": password})

        assert response.status_code == 401
        assert response.get_json() == {"error": "Invalid credentials"}
        assert db_session.query(AuthEvent).filter_by(outcome="FAIL").count() == 1

    def test_missing_fields(self, client, db_session):
        response = client.post("/api/auth/login", json={"email": "admin@example.com"})
        assert response.status_code == 400

    @pytest.mark.parametrize("payload", [
        {"email": "admin@example.com", "password": 123},
        {"email": ["admin@example.com"], "password": "admin123"},
        ["admin@example.com", "admin123"],
    ])
    def test_non_string_credentials_are_400(self, client, legacy_user, db_session, payload):
        response = client.post("/api/auth/login", json=payload)

        assert response.status_code == 400
        assert db_session.query(AuthEvent).count() == 0


class TestItemRoutes:
    def test_create_and_peek(self, client, branch_hpi, category_rng, item_payload):
        response = client.post("/api/items", json={
            "branch_id": branch_hpi.id,
            "category_id": category_rng.id,
            "count": 2,
            "item": item_payload,
        })
        assert response.status_code == 201
        assert [i["item_code"] for i in response.get_json()["items"]] == ["HPI-rng-1", "HPI-rng-2"]

        response = client.get(f"/api/items/next-seq?branch_id={branch_hpi.id}&category_id={category_rng.id}&count=3")
        assert response.status_code == 200
        body = response.get_json()
        assert body["next_seq"] == 3
        assert [p["item_code"] for p in body["preview"]] == ["HPI-rng-3", "HPI-rng-4", "HPI-rng-5"]

    def test_next_seq_requires_ids(self, client, db_session):
        assert client.get("/api/items/next-seq").status_code == 400

    def test_next_seq_count_is_capped(self, client, branch_hpi, category_rng):
        response = client.get(
            f"/api/items/next-seq?branch_id={branch_hpi.id}&category_id={category_rng.id}&count=200000"
        )
        assert response.status_code == 400
        assert "cannot exceed" in response.get_json()["error"]

    def test_unknown_category_is_404(self, client, branch_hpi, item_payload):
        response = client.post("/api/items", json={"branch_id": branch_hpi.id, "category_id": 999, "item": item_payload})
        assert response.status_code == 404

    def test_bad_count_is_400(self, client, branch_hpi, category_rng, item_payload):
        response = client.post("/api/items", json={
            "branch_id": branch_hpi.id, "category_id": category_rng.id, "count": -2, "item": item_payload,
        })
        assert response.status_code == 400

    def test_out_of_range_weight_is_400(self, client, db_session, branch_hpi, category_rng, item_payload):
        response = client.post("/api/items", json={
            "branch_id": branch_hpi.id, "category_id": category_rng.id, "item": dict(item_payload, weight_g="1e30"),
        })
        assert response.status_code == 400
        assert db_session.query(Item).count() == 0

    def test_conflict_is_409(self, client, branch_hpi, category_rng, item_payload, monkeypatch):
        def _lost_race(*args, **kwargs):
            raise ConflictError("Database is busy; concurrent write could not be serialized")

        monkeypatch.setattr(inventory_service, "create_items", _lost_race)
        response = client.post("/api/items", json={
            "branch_id": branch_hpi.id, "category_id": category_rng.id, "item": item_payload,
        })
        assert response.status_code == 409

    def test_store_unavailable_is_503(self, client, branch_hpi, category_rng, monkeypatch):
        def _down(**kwargs):
            raise StoreUnavailableError("Store call failed: OperationalError")

        monkeypatch.setattr(inventory_service, "list_items", _down)
        assert client.get("/api/items").status_code == 503

    def test_get_patch_delete(self, client, branch_hpi, category_rng, item_payload):
        created = client.post("/api/items", json={
            "branch_id": branch_hpi.id, "category_id": category_rng.id, "item": item_payload,
        }).get_json()["items"][0]

        response = client.get(f"/api/items/{created['id']}")
        assert response.get_json()["item"]["item_code"] == "HPI-rng-1"

        response = client.patch(f"/api/items/{created['id']}", json={"item_code": "HPI-rng-9"})
        assert response.status_code == 400

        response = client.patch(f"/api/items/{created['id']}", json={"title": "Renamed"})
        assert response.get_json()["item"]["title"] == "Renamed"

        response = client.delete(f"/api/items/{created['id']}")
        assert response.get_json()["item"]["status"] == "REMOVED"

        assert client.get("/api/items/99999").status_code == 404

    def test_list(self, client, branch_hpi, category_rng, item_payload):
        client.post("/api/items", json={
            "branch_id": branch_hpi.id, "category_id": category_rng.id, "count": 3, "item": item_payload,
        })
        body = client.get("/api/items?per_page=2").get_json()
        assert body["total"] == 3
        assert len(body["items"]) == 2

    def test_backfill_route(self, app, client, db_session, make_item, branch_hpi, category_rng):
        priced = make_item(branch_id=branch_hpi.id, category_id=category_rng.id, cost=1250)
        make_item(branch_id=branch_hpi.id, category_id=category_rng.id)

        body = client.post("/api/items/backfill").get_json()
        assert body["assigned_count"] == 2
        assert sorted(body["assigned"].values()) == ["HPI-rng-1", "HPI-rng-2"]

        db_session.expire_all()
        assert db_session.get(Item, priced.id).cost_code == "FRC0"

        again = client.post("/api/items/backfill").get_json()
        assert again["assigned_count"] == 0

    def test_backfill_without_default_is_400(self, app, client, make_item, branch_hpi):
        make_item(branch_id=branch_hpi.id)
        response = client.post("/api/items/backfill")
        assert response.status_code == 400


def test_health(client, db_session):
    response = client.get("/api/system/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["details"]["items"] == 0
