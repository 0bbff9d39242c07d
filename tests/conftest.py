import json
from unittest.mock import MagicMock

import pytest
import requests

from channel_onboarding.models import ConsentEvent
from channel_onboarding.repositories.session_repository import SessionRepository
from channel_onboarding.services.backend_api_client import BackendApiClient
from channel_onboarding.services.graph_client import GraphClient
from channel_onboarding.services.provisioning import ProvisioningOrchestrator
from channel_onboarding.services.signup_proxy_client import SignupProxyClient
from channel_onboarding.services.sync_initiator import SyncInitiator

ORG = "org_1"


def make_response(status_code=200, body=None, url="https://example.test/"):
    """Builds a real requests.Response carrying a JSON body."""
    response = requests.Response()
    response.status_code = status_code
    response.url = url
    response.reason = "OK" if status_code < 400 else "Error"
    response.encoding = "utf-8"
    response._content = json.dumps(body if body is not None else {}).encode("utf-8")
    return response


@pytest.fixture
def repository():
    return SessionRepository()


@pytest.fixture
def signup_proxy():
    proxy = MagicMock(spec=SignupProxyClient)
    proxy.exchange_token.return_value = "EAAG-token"
    proxy.register_phone.return_value = {"success": True}
    return proxy


@pytest.fixture
def graph():
    client = MagicMock(spec=GraphClient)
    client.subscribe_app.return_value = {"success": True}
    client.list_phone_numbers.return_value = [
        {"id": "P1", "display_phone_number": "+1 555 0100", "verified_name": "Acme"},
    ]
    client.phone_number_details.return_value = {"display_phone_number": "+234 800 0000", "verified_name": "Shop"}
    client.request_data_sync.side_effect = [
        {"messaging_product": "whatsapp", "request_id": "r1"},
        {"messaging_product": "whatsapp", "request_id": "r2"},
    ]
    return client


@pytest.fixture
def backend():
    client = MagicMock(spec=BackendApiClient)
    client.create_package.return_value = {"id": 7, "phone_number": "15550100"}
    client.create_app_service.return_value = {"id": 11}
    client.list_assistants.return_value = [
        {"id": 1, "assistant_id": "asst_1", "name": "Support", "organization_id": ORG},
        {"id": 2, "assistant_id": "asst_2", "name": "Sales", "organization_id": ORG},
    ]
    return client


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def sync_initiator(graph, sleeps):
    return SyncInitiator(graph, sleep=sleeps.append)


@pytest.fixture
def orchestrator(repository, signup_proxy, graph, backend, sync_initiator):
    return ProvisioningOrchestrator(
        repository,
        signup_proxy,
        graph,
        backend,
        sync_initiator,
        facebook_config_id="cfg_1",
    )


def finish_event(phone_number_id="P1", waba_id="W1"):
    return ConsentEvent(event="FINISH", phone_number_id=phone_number_id, waba_id=waba_id)


def business_app_event(phone_number_id="P2", waba_id="W2"):
    return ConsentEvent(
        event="FINISH_WHATSAPP_BUSINESS_APP_ONBOARDING",
        phone_number_id=phone_number_id,
        waba_id=waba_id,
    )


def login_with_code(orchestrator, code="grant-code"):
    return orchestrator.receive_login_response(ORG, {"authResponse": {"code": code}, "status": "connected"})
