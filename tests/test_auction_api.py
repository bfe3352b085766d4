"""
Tests for the auctions HTTP API.
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from auction_service.main import create_app
from auction_service.models import EventOutbox
from auction_service.security import create_access_token
from basecore.db import get_db

AUCTION_BODY = {
    "make": "Ford",
    "model": "GT",
    "year": 2020,
    "color": "White",
    "mileage": 50000,
    "reserve_price": 20000,
    "auction_end": "2030-01-01T00:00:00Z",
}


def auth(username: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(username)}"}


@pytest.fixture
def client(auction_db):
    app = create_app(run_init_db=False)

    def override_get_db():
        yield auction_db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


class TestAuctionsApi:
    """Tests for /api/auctions."""

    def test_create_returns_201_with_seller_from_token(self, client, auction_db):
        response = client.post("/api/auctions", json=AUCTION_BODY, headers=auth("alice"))

        assert response.status_code == 201
        body = response.json()
        assert body["seller"] == "alice"
        assert body["status"] == "Live"
        assert auction_db.query(EventOutbox).count() == 1

    def test_create_without_token_is_401(self, client, auction_db):
        response = client.post("/api/auctions", json=AUCTION_BODY)

        assert response.status_code == 401
        assert auction_db.query(EventOutbox).count() == 0

    def test_create_with_bad_token_is_401(self, client):
        response = client.post(
            "/api/auctions",
            json=AUCTION_BODY,
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    def test_create_invalid_body_is_422(self, client):
        body = dict(AUCTION_BODY, year="old")
        response = client.post("/api/auctions", json=body, headers=auth("alice"))
        assert response.status_code == 422

    def test_get_by_id_and_list(self, client):
        created = client.post("/api/auctions", json=AUCTION_BODY, headers=auth("alice")).json()

        response = client.get(f"/api/auctions/{created['id']}")
        assert response.status_code == 200
        assert response.json()["make"] == "Ford"

        listing = client.get("/api/auctions")
        assert [a["id"] for a in listing.json()] == [created["id"]]

    def test_get_missing_is_404(self, client):
        response = client.get(f"/api/auctions/{uuid4()}")
        assert response.status_code == 404

    def test_update_by_owner(self, client):
        created = client.post("/api/auctions", json=AUCTION_BODY, headers=auth("alice")).json()

        response = client.put(
            f"/api/auctions/{created['id']}",
            json={"color": "Red"},
            headers=auth("alice"),
        )

        assert response.status_code == 200
        assert response.json()["color"] == "Red"

    def test_update_by_non_owner_is_403(self, client):
        created = client.post("/api/auctions", json=AUCTION_BODY, headers=auth("alice")).json()

        response = client.put(
            f"/api/auctions/{created['id']}",
            json={"color": "Red"},
            headers=auth("mallory"),
        )

        assert response.status_code == 403
        assert client.get(f"/api/auctions/{created['id']}").json()["color"] == "White"

    def test_delete_then_get_is_404(self, client):
        created = client.post("/api/auctions", json=AUCTION_BODY, headers=auth("alice")).json()

        response = client.delete(f"/api/auctions/{created['id']}", headers=auth("alice"))
        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "id": created["id"]}

        assert client.get(f"/api/auctions/{created['id']}").status_code == 404

    def test_delete_missing_is_404(self, client):
        response = client.delete(f"/api/auctions/{uuid4()}", headers=auth("alice"))
        assert response.status_code == 404

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_store_unavailable_is_400(self, client, auction_db, monkeypatch):
        created = client.post("/api/auctions", json=AUCTION_BODY, headers=auth("alice")).json()

        def unavailable(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is gone"))

        monkeypatch.setattr(auction_db, "get", unavailable)
        monkeypatch.setattr(auction_db, "query", unavailable)

        assert client.get(f"/api/auctions/{created['id']}").status_code == 400
        assert client.get("/api/auctions").status_code == 400
        response = client.put(f"/api/auctions/{created['id']}", json={"color": "Red"}, headers=auth("alice"))
        assert response.status_code == 400
        assert response.json() == {"detail": "Could not save changes to the DB"}
