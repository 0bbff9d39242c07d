"""Flask application entry point for the channel onboarding service."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, abort, jsonify, request

from channel_onboarding.config import DEFAULT_ALLOWED_ORIGINS, Settings
from channel_onboarding.errors import (
    InvalidInputError,
    InvalidTransitionError,
    TransitionInProgressError,
)
from channel_onboarding.models import SyncKind
from channel_onboarding.repositories.session_repository import SessionRepository
from channel_onboarding.services.backend_api_client import BackendApiClient
from channel_onboarding.services.consent_listener import ConsentListener
from channel_onboarding.services.graph_client import GraphClient
from channel_onboarding.services.provisioning import ProvisioningOrchestrator
from channel_onboarding.services.signup_proxy_client import SignupProxyClient
from channel_onboarding.services.sync_initiator import SyncInitiator

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)

ORGANIZATION_HEADER = "X-Organization-Id"


def _current_auth_token() -> Optional[str]:
    """Bearer credential of the dashboard user, forwarded to the back end."""

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def _organization_id() -> str:
    organization_id = request.headers.get(ORGANIZATION_HEADER, "").strip()
    if not organization_id:
        abort(400, f"{ORGANIZATION_HEADER} header is required")
    return organization_id


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def build_orchestrator(settings: Settings) -> ProvisioningOrchestrator:
    timeout = settings.request_timeout_seconds
    graph_client = GraphClient(settings.graph_api_url, timeout=timeout)
    return ProvisioningOrchestrator(
        SessionRepository(),
        SignupProxyClient(settings.signup_proxy_url, timeout=timeout),
        graph_client,
        BackendApiClient(settings.backend_api_url, auth_token_provider=_current_auth_token, timeout=timeout),
        SyncInitiator(
            graph_client,
            contacts_delay=settings.contacts_sync_delay_seconds,
            history_delay=settings.history_sync_delay_seconds,
            completion_delay=settings.sync_completion_delay_seconds,
        ),
        facebook_config_id=settings.facebook_config_id,
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[ProvisioningOrchestrator] = None,
) -> Flask:
    if orchestrator is None:
        orchestrator = build_orchestrator(settings or Settings.from_env())
    allowed_origins = settings.consent_allowed_origins if settings else DEFAULT_ALLOWED_ORIGINS
    listener = ConsentListener(orchestrator.apply_consent_event, allowed_origins=allowed_origins)

    app = Flask(__name__)

    def _view(session) -> Dict[str, Any]:
        return {"session": session.to_public_dict()}

    @app.errorhandler(InvalidInputError)
    def _invalid_input(exc: InvalidInputError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(400)
    @app.errorhandler(404)
    def _http_error(exc):
        return jsonify({"error": exc.description}), exc.code

    @app.errorhandler(InvalidTransitionError)
    @app.errorhandler(TransitionInProgressError)
    def _conflict(exc: Exception):
        return jsonify({"error": str(exc)}), 409

    @app.route("/health", methods=["GET"])
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.route("/onboarding", methods=["GET"])
    def current_session() -> Dict[str, Any]:
        return _view(orchestrator.current(_organization_id()))

    @app.route("/onboarding/launch", methods=["POST"])
    def launch() -> Dict[str, Any]:
        params = orchestrator.launch_consent(_organization_id())
        return {"widget": params}

    @app.route("/onboarding/login-response", methods=["POST"])
    def login_response() -> Dict[str, Any]:
        return _view(orchestrator.receive_login_response(_organization_id(), _json_body()))

    @app.route("/onboarding/consent-message", methods=["POST"])
    def consent_message() -> Dict[str, Any]:
        organization_id = _organization_id()
        body = _json_body()
        # The dashboard relays MessageEvent.origin from the browser. The request's
        # own Origin header is the dashboard's, so it is not used here.
        origin = body.get("origin")
        event = listener.handle_message(organization_id, origin, body.get("data"))
        return {"accepted": event is not None, **_view(orchestrator.current(organization_id))}

    @app.route("/onboarding/token", methods=["POST"])
    def exchange_token() -> Dict[str, Any]:
        return _view(orchestrator.exchange_token(_organization_id()))

    @app.route("/onboarding/pin", methods=["POST"])
    def submit_pin() -> Dict[str, Any]:
        pin = _json_body().get("pin")
        return _view(orchestrator.submit_pin(_organization_id(), str(pin or "")))

    @app.route("/onboarding/continue", methods=["POST"])
    def continue_after_registration() -> Dict[str, Any]:
        return _view(orchestrator.continue_after_registration(_organization_id()))

    @app.route("/onboarding/phone-numbers", methods=["POST"])
    def fetch_phone_numbers() -> Dict[str, Any]:
        return _view(orchestrator.fetch_phone_numbers(_organization_id()))

    @app.route("/onboarding/phone-number", methods=["POST"])
    def confirm_phone_number() -> Dict[str, Any]:
        phone_number = _json_body().get("phone_number")
        if not phone_number:
            raise InvalidInputError("phone_number is required")
        return _view(orchestrator.confirm_phone_number(_organization_id(), str(phone_number)))

    @app.route("/onboarding/package", methods=["POST"])
    def create_package() -> Dict[str, Any]:
        return _view(orchestrator.create_package(_organization_id()))

    @app.route("/onboarding/assistants", methods=["POST"])
    def load_assistants() -> Dict[str, Any]:
        return _view(orchestrator.load_assistants(_organization_id()))

    @app.route("/onboarding/assistant", methods=["POST"])
    def select_assistant() -> Dict[str, Any]:
        assistant_id = _json_body().get("assistant_id")
        if not assistant_id:
            raise InvalidInputError("assistant_id is required")
        return _view(orchestrator.select_assistant(_organization_id(), str(assistant_id)))

    @app.route("/onboarding/app-service", methods=["POST"])
    def create_app_service() -> Dict[str, Any]:
        return _view(orchestrator.create_app_service(_organization_id()))

    @app.route("/onboarding/sync/<kind>", methods=["POST"])
    def retry_sync(kind: str) -> Dict[str, Any]:
        try:
            sync_kind = SyncKind(kind)
        except ValueError:
            abort(404)
        return _view(orchestrator.retry_sync(_organization_id(), sync_kind))

    @app.route("/onboarding/restart", methods=["POST"])
    def restart() -> Dict[str, Any]:
        session = orchestrator.start_again(_organization_id())
        app.logger.info("Onboarding restarted for organization=%s", session.organization_id)
        return _view(session)

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
