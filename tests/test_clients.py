from unittest.mock import MagicMock

import pytest
import requests

from channel_onboarding.errors import BackendApiError, GraphApiError, SignupProxyError
from channel_onboarding.services.backend_api_client import BackendApiClient
from channel_onboarding.services.graph_client import GraphClient
from channel_onboarding.services.signup_proxy_client import SignupProxyClient

from conftest import make_response


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


class TestGraphClient:
    def test_subscribe_app_posts_with_bearer_token(self, http):
        http.request.return_value = make_response(200, {"success": True})
        client = GraphClient("https://graph.test/v22.0/", session=http, timeout=5)

        assert client.subscribe_app("W1", "tok") == {"success": True}
        args, kwargs = http.request.call_args
        assert args == ("POST", "https://graph.test/v22.0/W1/subscribed_apps")
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["json"] == {"access_token": "tok"}
        assert kwargs["timeout"] == 5

    def test_list_phone_numbers_unwraps_data(self, http):
        http.request.return_value = make_response(200, {"data": [{"id": "P1"}], "paging": {}})
        numbers = GraphClient(session=http).list_phone_numbers("W1", "tok")

        assert numbers == [{"id": "P1"}]
        fields = http.request.call_args.kwargs["params"]["fields"]
        assert "display_phone_number" in fields.split(",")

    def test_data_sync_body(self, http):
        http.request.return_value = make_response(200, {"request_id": "r1"})
        GraphClient(session=http).request_data_sync("P2", "tok", "history")

        args, kwargs = http.request.call_args
        assert args[1].endswith("/P2/smb_app_data")
        assert kwargs["json"] == {"messaging_product": "whatsapp", "sync_type": "history"}

    def test_platform_error_message_is_surfaced(self, http):
        http.request.return_value = make_response(400, {"error": {"message": "Invalid OAuth access token", "code": 190}})
        with pytest.raises(GraphApiError) as excinfo:
            GraphClient(session=http).phone_number_details("P2", "tok")
        assert excinfo.value.message == "Invalid OAuth access token"
        assert excinfo.value.status_code == 400

    def test_transport_error_is_wrapped(self, http):
        http.request.side_effect = requests.ConnectionError("down")
        with pytest.raises(GraphApiError, match="Failed to subscribe app"):
            GraphClient(session=http).subscribe_app("W1", "tok")


class TestBackendApiClient:
    def test_create_package_payload(self, http):
        http.request.return_value = make_response(201, {"id": 7, "phone_number": "15550100"})
        client = BackendApiClient("https://api.test/", auth_token_provider=lambda: "jwt", session=http)

        result = client.create_package(
            organization_id="org_1",
            business_account_id="W1",
            phone_number="15550100",
            phone_number_id="P1",
            access_token="tok",
        )

        assert result["id"] == 7
        args, kwargs = http.request.call_args
        assert args == ("POST", "https://api.test/channels/create")
        assert kwargs["headers"]["Authorization"] == "Bearer jwt"
        assert kwargs["json"]["choice"] == "whatsapp"
        assert kwargs["json"]["organization_id"] == "org_1"
        assert kwargs["json"]["data"]["whatsapp_business_account_id"] == "W1"

    def test_no_auth_header_without_token(self, http):
        http.request.return_value = make_response(200, {"id": 11})
        BackendApiClient("https://api.test", session=http).create_app_service(
            organization_id="org_1", phone_number="15550100", assistant_id="asst_1"
        )
        assert "Authorization" not in http.request.call_args.kwargs["headers"]

    @pytest.mark.parametrize(
        "body, message",
        [
            ({"phone_number": ["already in use"]}, "Phone number error: already in use"),
            ({"phone_number_id": ["invalid", "missing"]}, "Phone number ID error: invalid, missing"),
            ({"error": "Organization not found"}, "Organization not found"),
            ({"detail": {"message": "Quota exceeded"}}, "Quota exceeded"),
            ({}, "Failed to create WhatsApp package (400)"),
        ],
    )
    def test_failure_messages(self, http, body, message):
        http.request.return_value = make_response(400, body)
        client = BackendApiClient("https://api.test", session=http)
        with pytest.raises(BackendApiError) as excinfo:
            client.create_package(
                organization_id="org_1",
                business_account_id="W1",
                phone_number="1",
                phone_number_id="P1",
                access_token="tok",
            )
        assert excinfo.value.message == message

    def test_non_object_create_body_is_an_error(self, http):
        http.request.return_value = make_response(201, [{"id": 7}])
        client = BackendApiClient("https://api.test", session=http)
        with pytest.raises(BackendApiError, match="unexpected response"):
            client.create_package(
                organization_id="org_1",
                business_account_id="W1",
                phone_number="1",
                phone_number_id="P1",
                access_token="tok",
            )

    def test_non_collection_assistant_body_is_an_error(self, http):
        http.request.return_value = make_response(200, "assistants")
        with pytest.raises(BackendApiError):
            BackendApiClient("https://api.test", session=http).list_assistants("org_1")

    @pytest.mark.parametrize(
        "body",
        [
            [{"id": 1, "assistant_id": "a"}],
            {"results": [{"id": 1, "assistant_id": "a"}]},
            {"data": [{"id": 1, "assistant_id": "a"}]},
        ],
    )
    def test_list_assistants_shapes(self, http, body):
        http.request.return_value = make_response(200, body)
        assistants = BackendApiClient("https://api.test", session=http).list_assistants("org_1")

        assert assistants == [{"id": 1, "assistant_id": "a"}]
        assert http.request.call_args.kwargs["params"] == {"organization_id": "org_1"}


class TestSignupProxyClient:
    def test_exchange_token(self, http):
        http.post.return_value = make_response(200, {"access_token": "EAAG", "token_type": "bearer"})
        client = SignupProxyClient("https://proxy.test/", session=http)

        assert client.exchange_token("code-1") == "EAAG"
        http.post.assert_called_once_with("https://proxy.test/token-exchange", json={"code": "code-1"}, timeout=15)

    def test_exchange_without_token_fails(self, http):
        http.post.return_value = make_response(200, {"token_type": "bearer"})
        with pytest.raises(SignupProxyError, match="No access token in response"):
            SignupProxyClient("https://proxy.test", session=http).exchange_token("code-1")

    def test_proxy_error_detail(self, http):
        http.post.return_value = make_response(500, {"error": "Failed to exchange code", "details": {}})
        with pytest.raises(SignupProxyError) as excinfo:
            SignupProxyClient("https://proxy.test", session=http).exchange_token("code-1")
        assert excinfo.value.message == "Failed to exchange code"
        assert excinfo.value.status_code == 500

    def test_register_phone_returns_body(self, http):
        http.post.return_value = make_response(200, {"success": True})
        client = SignupProxyClient("https://proxy.test", session=http)

        assert client.register_phone("P1", "123456", "tok") == {"success": True}
        assert http.post.call_args.kwargs["json"] == {"phone_number_id": "P1", "pin": "123456", "access_token": "tok"}
