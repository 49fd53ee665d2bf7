"""Tests for the HTTP surface: identity, routing and error mapping."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from auction_engine.api.deps import ServiceRegistry, get_bidding_service, get_registry
from auction_engine.core.clock import ManualClock
from auction_engine.core.exceptions import BidInProgress, StoreUnavailable
from auction_engine.main import app
from auction_engine.models.auction import AuctionStatus
from auction_engine.services.auction_store import InMemoryAuctionStore
from tests.conftest import T0


@pytest.fixture
def registry() -> ServiceRegistry:
    return ServiceRegistry(InMemoryAuctionStore(), clock=ManualClock(T0))


@pytest.fixture
def client(registry: ServiceRegistry):
    async def _registry() -> ServiceRegistry:
        return registry

    app.dependency_overrides[get_registry] = _registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(registry, make_auction):
    """An Open auction already in the store."""
    return asyncio.run(registry.store.create(make_auction()))


def _headers(user_id=None, role="user") -> dict:
    return {"X-User-Id": str(user_id or uuid4()), "X-User-Role": role}


class TestIdentity:
    """Test gateway header handling."""

    def test_missing_user_id(self, client):
        response = client.get("/api/v1/auctions")
        assert response.status_code == 401

    def test_malformed_user_id(self, client):
        response = client.get("/api/v1/auctions", headers={"X-User-Id": "not-a-uuid"})
        assert response.status_code == 401

    def test_admin_route_forbidden_for_user(self, client, seeded):
        response = client.post(f"/api/v1/auctions/{seeded.auction_id}/cancel", headers=_headers())
        assert response.status_code == 403


class TestAuctionRoutes:
    """Test auction creation and reads."""

    def test_create_and_get(self, client):
        owner = uuid4()
        payload = {
            "item_ref": str(uuid4()),
            "starting_price": 100,
            "start_time": (T0 + timedelta(minutes=5)).isoformat(),
            "end_time": (T0 + timedelta(hours=1)).isoformat(),
        }

        created = client.post("/api/v1/auctions", json=payload, headers=_headers(owner))
        assert created.status_code == 201
        body = created.json()
        assert body["status"] == "scheduled"
        assert body["owner_id"] == str(owner)
        assert body["current_high_bid"] == 100

        fetched = client.get(f"/api/v1/auctions/{body['auction_id']}", headers=_headers())
        assert fetched.status_code == 200
        assert fetched.json()["version"] == 0

    def test_create_rejects_inverted_window(self, client):
        payload = {
            "item_ref": str(uuid4()),
            "starting_price": 100,
            "start_time": T0.isoformat(),
            "end_time": (T0 - timedelta(minutes=1)).isoformat(),
        }
        response = client.post("/api/v1/auctions", json=payload, headers=_headers())
        assert response.status_code == 422

    def test_list_by_status(self, client, seeded):
        response = client.get("/api/v1/auctions", params={"status": "open"}, headers=_headers())
        assert response.status_code == 200
        assert response.json()["total"] == 1

        response = client.get("/api/v1/auctions", params={"status": "closed"}, headers=_headers())
        assert response.json()["total"] == 0

    def test_unknown_auction(self, client):
        response = client.get(f"/api/v1/auctions/{uuid4()}", headers=_headers())
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "AUCTION_NOT_FOUND"


class TestBidRoutes:
    """Test bid submission and rejection status codes."""

    def test_accepted_bid(self, client, seeded):
        response = client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids",
            json={"amount": 150},
            headers=_headers(),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["accepted"] is True
        assert body["bid"]["sequence_number"] == 1
        assert body["auction"]["current_high_bid"] == 150

    def test_too_low_is_400(self, client, seeded):
        client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids", json={"amount": 150}, headers=_headers()
        )
        response = client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids", json={"amount": 150}, headers=_headers()
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "BID_TOO_LOW"

    def test_owner_is_403(self, client, seeded):
        response = client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids",
            json={"amount": 500},
            headers=_headers(seeded.owner_id),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "OWNER_CANNOT_BID"

    def test_expired_is_403(self, client, seeded, registry):
        registry.clock.set(seeded.end_time)
        response = client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids", json={"amount": 500}, headers=_headers()
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "AUCTION_EXPIRED"

    def test_non_positive_amount_is_422(self, client, seeded):
        response = client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids", json={"amount": 0}, headers=_headers()
        )
        assert response.status_code == 422

    def test_store_unavailable_is_503(self, client, seeded):
        service = MagicMock()
        service.submit_bid = AsyncMock(side_effect=StoreUnavailable("down"))

        async def _service():
            return service

        app.dependency_overrides[get_bidding_service] = _service
        response = client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids", json={"amount": 150}, headers=_headers()
        )

        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "STORE_UNAVAILABLE"

    def test_duplicate_in_flight_is_409(self, client, seeded):
        service = MagicMock()
        service.submit_bid = AsyncMock(side_effect=BidInProgress(seeded.auction_id))

        async def _service():
            return service

        app.dependency_overrides[get_bidding_service] = _service
        response = client.post(
            f"/api/v1/auctions/{seeded.auction_id}/bids",
            json={"amount": 150, "idempotency_key": "k1"},
            headers=_headers(),
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "BID_IN_PROGRESS"

    def test_ledger_and_verify(self, client, seeded):
        for amount in (150, 175):
            client.post(
                f"/api/v1/auctions/{seeded.auction_id}/bids",
                json={"amount": amount},
                headers=_headers(),
            )

        bids = client.get(f"/api/v1/auctions/{seeded.auction_id}/bids", headers=_headers()).json()
        assert [b["amount"] for b in bids["bids"]] == [150, 175]

        report = client.get(
            f"/api/v1/auctions/{seeded.auction_id}/ledger/verify", headers=_headers()
        ).json()
        assert report["consistent"] is True
        assert report["ledger_high_bid"] == 175


class TestAdminRoutes:
    """Test cancel and settle."""

    def test_cancel_then_cancel_again(self, client, seeded):
        admin = _headers(role="admin")

        first = client.post(f"/api/v1/auctions/{seeded.auction_id}/cancel", headers=admin)
        second = client.post(f"/api/v1/auctions/{seeded.auction_id}/cancel", headers=admin)

        assert first.status_code == 200
        assert first.json()["status"] == AuctionStatus.CANCELLED.value
        assert second.status_code == 409
        assert second.json()["detail"]["code"] == "INVALID_TRANSITION"

    def test_settle_closed_auction(self, client, registry, make_auction):
        winner = uuid4()
        auction = asyncio.run(
            registry.store.create(
                make_auction(
                    status=AuctionStatus.CLOSED,
                    current_high_bid=250,
                    current_high_bidder_id=winner,
                )
            )
        )

        response = client.post(
            f"/api/v1/auctions/{auction.auction_id}/settle", headers=_headers(role="admin")
        )

        assert response.status_code == 200
        assert response.json()["winner_id"] == str(winner)
        assert response.json()["final_amount"] == 250


class TestOperationalRoutes:
    """Test health, metrics and tracing."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_trace_id_echoed(self, client):
        response = client.get("/health", headers={"X-Trace-ID": "trace-123"})
        assert response.headers["X-Trace-ID"] == "trace-123"
