"""API tests for the card service endpoints."""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from memorix.infrastructure.container import ServiceContainer
from memorix.infrastructure.messaging.memory_broker import InMemoryMessageBroker
from memorix.main import create_app
from tests._helpers.fakes import FakeExistenceOracle


@pytest.fixture
def deck_id():
    return uuid4()


@pytest.fixture
def client(test_settings, deck_id):
    container = ServiceContainer(
        test_settings,
        role="card",
        broker=InMemoryMessageBroker(),
        existence_oracle=FakeExistenceOracle([deck_id]),
    )
    with TestClient(create_app(test_settings, container=container)) as client:
        yield client


def create_card(client, deck_id, question="Capital of Peru?") -> dict:
    response = client.post(
        f"/api/v2/decks/{deck_id}/cards", json={"question": question, "answer": "Lima"}
    )
    assert response.status_code == 201
    return response.json()


class TestCardEndpoints:
    def test_create_card(self, client, deck_id):
        response = client.post(
            f"/api/v2/decks/{deck_id}/cards",
            json={"question": "Capital of Peru?", "answer": "Lima"},
        )

        assert response.status_code == 201
        body = response.json()
        assert response.headers["location"] == f"/api/v2/cards/{body['id']}"
        assert body["deckId"] == str(deck_id)
        assert body["answer"] == "Lima"

    def test_create_card_for_unknown_deck(self, client):
        response = client.post(
            f"/api/v2/decks/{uuid4()}/cards", json={"question": "q", "answer": "a"}
        )

        assert response.status_code == 404
        assert client.get("/api/v2/cards").json() == []

    @pytest.mark.parametrize(
        "payload",
        [{"question": "", "answer": "a"}, {"question": "q", "answer": "  "}, {"question": "q"}],
    )
    def test_create_card_validation(self, client, deck_id, payload):
        response = client.post(f"/api/v2/decks/{deck_id}/cards", json=payload)

        assert response.status_code == 400

    def test_get_card(self, client, deck_id):
        created = create_card(client, deck_id)

        response = client.get(f"/api/v2/cards/{created['id']}")

        assert response.status_code == 200
        assert response.json()["question"] == "Capital of Peru?"

    def test_get_missing_card(self, client):
        assert client.get(f"/api/v2/cards/{uuid4()}").status_code == 404

    def test_list_cards_of_deck(self, client, deck_id):
        for i in range(3):
            create_card(client, deck_id, question=f"q{i}")

        response = client.get(f"/api/v2/decks/{deck_id}/cards")

        assert response.status_code == 200
        assert len(response.json()) == 3
        assert client.get(f"/api/v2/decks/{uuid4()}/cards").status_code == 404

    def test_update_card(self, client, deck_id):
        created = create_card(client, deck_id)

        response = client.put(
            f"/api/v2/cards/{created['id']}",
            json={"question": "Capital of Chile?", "answer": "Santiago"},
        )

        assert response.status_code == 200
        assert response.json()["answer"] == "Santiago"

    def test_delete_card(self, client, deck_id):
        created = create_card(client, deck_id)

        assert client.delete(f"/api/v2/cards/{created['id']}").status_code == 204
        assert client.get(f"/api/v2/cards/{created['id']}").status_code == 404

    def test_deck_routes_not_served(self, client):
        assert client.get("/api/v2/decks").status_code in (404, 405)
