from unittest.mock import MagicMock

import pytest
import requests
from fastapi.testclient import TestClient

from signup_proxy import main

from conftest import make_response


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("FACEBOOK_APP_ID", "app-1")
    monkeypatch.setenv("FACEBOOK_APP_SECRET", "shh")
    monkeypatch.setenv("GRAPH_API_URL", "https://graph.test/v22.0")
    return TestClient(main.app)


@pytest.fixture
def graph_get(monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr(main.requests, "get", mock)
    return mock


@pytest.fixture
def graph_post(monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr(main.requests, "post", mock)
    return mock


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_token_exchange_returns_platform_body(client, graph_get):
    graph_get.side_effect = [
        make_response(200, {"access_token": "EAAG", "token_type": "bearer"}),
        make_response(200, {"data": {"is_valid": True, "scopes": ["whatsapp_business_management"]}}),
    ]

    response = client.post("/token-exchange", json={"code": "c1"})

    assert response.status_code == 200
    assert response.json()["access_token"] == "EAAG"
    url = graph_get.call_args_list[0].args[0]
    assert url == "https://graph.test/v22.0/oauth/access_token"
    assert graph_get.call_args_list[0].kwargs["params"] == {"client_id": "app-1", "client_secret": "shh", "code": "c1"}


def test_token_debug_failure_does_not_break_exchange(client, graph_get):
    graph_get.side_effect = [
        make_response(200, {"access_token": "EAAG"}),
        requests.ConnectionError("down"),
    ]
    assert client.post("/token-exchange", json={"code": "c1"}).json() == {"access_token": "EAAG"}


def test_token_exchange_requires_code(client, graph_get):
    response = client.post("/token-exchange", json={})
    assert response.status_code == 400
    assert response.json()["detail"] == "Code is required"
    graph_get.assert_not_called()


def test_token_exchange_without_credentials(client, graph_get, monkeypatch):
    monkeypatch.delenv("FACEBOOK_APP_SECRET")
    response = client.post("/token-exchange", json={"code": "c1"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Server configuration error"


def test_token_exchange_platform_error(client, graph_get):
    graph_get.return_value = make_response(400, {"error": {"message": "Code was already used"}})
    response = client.post("/token-exchange", json={"code": "c1"})
    assert response.status_code == 500
    assert response.json()["error"] == "Failed to exchange code"
    assert response.json()["details"]["error"]["message"] == "Code was already used"


def test_register_phone(client, graph_post):
    graph_post.return_value = make_response(200, {"success": True})
    response = client.post(
        "/register-phone",
        json={"phone_number_id": "P1", "pin": "123456", "access_token": "EAAG"},
    )
    assert response.json() == {"success": True}
    assert graph_post.call_args.args[0] == "https://graph.test/v22.0/P1/register"
    assert graph_post.call_args.kwargs["json"] == {"messaging_product": "whatsapp", "pin": "123456", "access_token": "EAAG"}


def test_register_phone_missing_parameters(client, graph_post):
    response = client.post("/register-phone", json={"phone_number_id": "P1"})
    assert response.status_code == 400
    assert response.json()["details"] == {"phone_number_id": True, "pin": False, "access_token": False}
    graph_post.assert_not_called()


def test_register_phone_platform_error_keeps_status(client, graph_post):
    graph_post.return_value = make_response(403, {"error": {"message": "PIN mismatch"}})
    response = client.post(
        "/register-phone",
        json={"phone_number_id": "P1", "pin": "000000", "access_token": "EAAG"},
    )
    assert response.status_code == 403
    assert response.json()["error"] == "Failed to register phone"
    assert response.json()["status"] == 403


def test_token_exchange_survives_odd_debug_payload(client, graph_get):
    graph_get.side_effect = [
        make_response(200, {"access_token": "EAAG"}),
        make_response(200, {"data": ["not", "an", "object"]}),
    ]
    response = client.post("/token-exchange", json={"code": "c1"})
    assert response.status_code == 200
    assert response.json() == {"access_token": "EAAG"}
