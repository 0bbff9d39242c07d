"""Provisioning state machine that turns signup consent into a working channel."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from ..errors import (
    ExternalCallError,
    InvalidInputError,
    InvalidTransitionError,
    TransitionInProgressError,
)
from ..models import (
    STEP_ORDER,
    Assistant,
    Attempt,
    AppService,
    ConsentEvent,
    ConsentEventKind,
    OnboardingBranch,
    OnboardingSession,
    Package,
    PhoneNumber,
    Step,
    SyncKind,
    sanitize_phone_number,
)
from ..repositories.session_repository import SessionRepository
from .backend_api_client import BackendApiClient
from .graph_client import GraphClient
from .signup_proxy_client import SignupProxyClient
from .sync_initiator import SyncInitiator

LOGGER = logging.getLogger(__name__)


class PreconditionFailed(Exception):
    """Raised inside a step when retrying cannot help until something changes outside the flow."""


class PhoneSource:
    """Supplies the phone number a package is created for."""

    def resolve(self, session: OnboardingSession, graph_client: GraphClient) -> Tuple[OnboardingSession, str]:
        raise NotImplementedError


class FromUserSelection(PhoneSource):
    def resolve(self, session: OnboardingSession, graph_client: GraphClient) -> Tuple[OnboardingSession, str]:
        if not session.selected_phone_number:
            raise PreconditionFailed("No phone number selected")
        return session, session.selected_phone_number


class FromPlatformLookup(PhoneSource):
    def resolve(self, session: OnboardingSession, graph_client: GraphClient) -> Tuple[OnboardingSession, str]:
        details = graph_client.phone_number_details(session.phone_number_id, session.access_token)
        display = details.get("display_phone_number")
        if not display:
            raise PreconditionFailed("No phone number found in response")
        return replace(session, business_app_phone_number=str(display)), str(display)


PHONE_SOURCES: Dict[OnboardingBranch, PhoneSource] = {
    OnboardingBranch.FRESH: FromUserSelection(),
    OnboardingBranch.IMPORTED: FromPlatformLookup(),
}


class ProvisioningOrchestrator:
    """Owns every onboarding session transition.

    Each public method is one trigger from the transition table. It loads the
    organization's session, checks the trigger is legal from the current
    state, performs the external calls in order and saves the result. A
    failing call leaves the session in the state it started from with a
    failed attempt recorded against that state; retrying means calling the
    same trigger again.
    """

    PIN_LENGTH = 6

    def __init__(
        self,
        repository: SessionRepository,
        signup_proxy: SignupProxyClient,
        graph_client: GraphClient,
        backend_api: BackendApiClient,
        sync_initiator: SyncInitiator,
        *,
        facebook_config_id: Optional[str] = None,
    ) -> None:
        self._repository = repository
        self._signup_proxy = signup_proxy
        self._graph_client = graph_client
        self._backend_api = backend_api
        self._sync_initiator = sync_initiator
        self._facebook_config_id = facebook_config_id

    def current(self, organization_id: str) -> OnboardingSession:
        return self._repository.get_or_create(organization_id)

    # Consent

    def launch_consent(self, organization_id: str) -> Dict[str, Any]:
        """Returns the parameters the dashboard passes to the consent widget."""

        session = self._begin(organization_id, Step.INITIAL)
        self._repository.save(replace(session, status_message="Waiting for Facebook login to complete..."))
        return {
            "config_id": self._facebook_config_id,
            "response_type": "code",
            "override_default_response_type": True,
            "extras": {
                "setup": {},
                "version": "v3",
                "featureType": "whatsapp_business_app_onboarding",
                "sessionInfoVersion": "3",
            },
        }

    def receive_login_response(self, organization_id: str, response: Mapping[str, Any]) -> OnboardingSession:
        session = self._begin(organization_id, Step.INITIAL)
        auth_response = response.get("authResponse") if isinstance(response, Mapping) else None
        code = auth_response.get("code") if isinstance(auth_response, Mapping) else None
        if not code:
            LOGGER.info("Login finished without a code for organization=%s", organization_id)
            return self._repository.save(
                replace(session, status_message="Facebook login did not return an authorization code.")
            )
        session = replace(session, grant_code=str(code))
        session = self._enter(session, Step.CODE_RECEIVED, "Code received. Click Continue to exchange for access token.")
        return self._repository.save(session)

    def apply_consent_event(self, organization_id: str, event: ConsentEvent) -> OnboardingSession:
        session = self._repository.get_or_create(organization_id)
        branch = event.branch
        if branch is None:
            return self._repository.save(self._note_widget_status(session, event))
        if session.branch is not None:
            LOGGER.warning(
                "Ignoring %s for organization=%s; branch already decided as %s",
                event.event,
                organization_id,
                session.branch.value,
            )
            return session
        if not event.phone_number_id or not event.waba_id:
            LOGGER.warning("Ignoring %s without account identifiers for organization=%s", event.event, organization_id)
            return session
        session = replace(
            session,
            branch=branch,
            phone_number_id=event.phone_number_id,
            business_account_id=event.waba_id,
        )
        if branch is OnboardingBranch.FRESH:
            session = replace(session, status_message="WhatsApp session finished. Please enter your PIN when ready.")
        else:
            session = replace(
                session,
                status_message="WhatsApp Business App onboarding completed. Proceeding without phone registration...",
            )
            if session.step is Step.TOKEN_RECEIVED and not session.halted:
                session = self._enter(session, Step.REGISTERED)
        return self._repository.save(session)

    def _note_widget_status(self, session: OnboardingSession, event: ConsentEvent) -> OnboardingSession:
        if event.event == ConsentEventKind.CANCEL.value:
            where = f" at {event.current_step}" if event.current_step else ""
            message = f"Signup was cancelled{where}. Start again when you are ready."
        elif event.event == ConsentEventKind.ERROR.value:
            message = f"Signup reported an error: {event.error_message or 'unknown error'}"
        else:
            message = f"Signup widget reported {event.event}."
        halted = session.halted
        if event.event in (ConsentEventKind.CANCEL.value, ConsentEventKind.ERROR.value):
            halted = halted or _position(session.step) < _position(Step.REGISTERED)
        LOGGER.info("Widget status for organization=%s: %s", session.organization_id, message)
        return replace(session, status_message=message, halted=halted)

    # Token and registration

    def exchange_token(self, organization_id: str) -> OnboardingSession:
        session = self._begin(organization_id, Step.CODE_RECEIVED)
        if not session.grant_code:
            return self._fail(session, "No authorization code to exchange", retryable=False)
        session = self._start_attempt(session, "Exchanging code for access token...")
        with self._settling(session):
            try:
                token = self._signup_proxy.exchange_token(session.grant_code)
            except ExternalCallError as exc:
                return self._fail(session, exc.message, status="Error exchanging code. Please try again.")
        session = self._succeed(replace(session, access_token=token, grant_code=None))
        session = self._enter(
            session,
            Step.TOKEN_RECEIVED,
            "Access token acquired. Click Next to continue with WhatsApp registration.",
        )
        if session.branch is OnboardingBranch.IMPORTED:
            session = self._enter(session, Step.REGISTERED, "Business App detected. Phone registration skipped.")
        return self._repository.save(session)

    def submit_pin(self, organization_id: str, pin: str) -> OnboardingSession:
        session = self._begin(organization_id, Step.TOKEN_RECEIVED)
        if session.branch is OnboardingBranch.IMPORTED:
            raise InvalidTransitionError("Business App onboarding does not register the phone with a PIN")
        pin = (pin or "").strip()
        if len(pin) != self.PIN_LENGTH or not pin.isdigit():
            raise InvalidInputError(f"PIN must be exactly {self.PIN_LENGTH} digits")
        if session.branch is None or not session.phone_number_id:
            return self._fail(
                session,
                "Waiting for WhatsApp session info. Please complete the Facebook login process.",
                retryable=False,
            )
        if not session.access_token:
            return self._fail(session, "No access token available", retryable=False)
        session = self._start_attempt(replace(session, pin=pin), "Registering phone with PIN...")
        with self._settling(session):
            try:
                data = self._signup_proxy.register_phone(session.phone_number_id, pin, session.access_token)
            except ExternalCallError as exc:
                return self._fail(session, exc.message, status="Error registering phone. Please try again.")
            if not data.get("success"):
                error = data.get("error")
                if isinstance(error, Mapping) and error.get("message"):
                    reason = f"Registration failed: {error['message']}"
                else:
                    reason = "Registration failed with unknown error"
                return self._fail(session, reason, status="Error registering phone. Please try again.")
            session = self._succeed(session, data)
        session = self._enter(session, Step.REGISTERED, "Phone registered successfully!")
        return self._repository.save(session)

    def continue_after_registration(self, organization_id: str) -> OnboardingSession:
        session = self._begin(organization_id, Step.REGISTERED)
        if not session.business_account_id or not session.access_token or session.branch is None:
            return self._fail(session, "Missing required information", retryable=False)
        session = self._start_attempt(session, "Subscribing app to WhatsApp Business Account...")
        with self._settling(session):
            try:
                data = self._graph_client.subscribe_app(session.business_account_id, session.access_token)
            except ExternalCallError as exc:
                return self._fail(session, exc.message, status="Error subscribing app. Please try again.")
            if data.get("success") is not True:
                return self._fail(session, "Failed to subscribe app", status="Error subscribing app. Please try again.")
            session = self._succeed(session, data)
        if session.branch is OnboardingBranch.FRESH:
            session = self._enter(session, Step.FETCHING_PHONE, "App subscribed successfully. Fetching phone numbers...")
            return self._fetch_phone_numbers(self._repository.save(session))
        session = self._enter(session, Step.CREATING_PACKAGE, "Business App detected. Creating WhatsApp package...")
        return self._create_package(self._repository.save(session))

    # Phone selection (fresh branch)

    def fetch_phone_numbers(self, organization_id: str) -> OnboardingSession:
        return self._fetch_phone_numbers(self._begin(organization_id, Step.FETCHING_PHONE))

    def _fetch_phone_numbers(self, session: OnboardingSession) -> OnboardingSession:
        if not session.business_account_id or not session.access_token:
            return self._fail(session, "Missing required information", retryable=False)
        session = self._start_attempt(session, "Fetching phone numbers from Meta...")
        with self._settling(session):
            try:
                payload = self._graph_client.list_phone_numbers(session.business_account_id, session.access_token)
            except ExternalCallError as exc:
                return self._fail(session, exc.message, status="Error fetching phone numbers. Please try again.")
            numbers = tuple(PhoneNumber.from_payload(item) for item in payload if isinstance(item, Mapping))
            if not numbers:
                return self._fail(
                    session,
                    "No phone numbers found for this WhatsApp Business Account",
                    retryable=False,
                    status="Error fetching phone numbers. Please try again.",
                )
            session = self._succeed(replace(session, phone_numbers=numbers), len(numbers))
        session = self._enter(session, Step.CONFIRMING_PHONE, "Please confirm your phone number")
        return self._repository.save(session)

    def confirm_phone_number(self, organization_id: str, phone_number: str) -> OnboardingSession:
        session = self._begin(organization_id, Step.CONFIRMING_PHONE)
        chosen = next(
            (item for item in session.phone_numbers if phone_number in (item.display_phone_number, item.id)),
            None,
        )
        if chosen is None:
            raise InvalidInputError("Select one of the phone numbers listed for this account")
        session = replace(session, selected_phone_number=chosen.display_phone_number)
        session = self._enter(session, Step.CREATING_PACKAGE, "Creating WhatsApp package...")
        return self._create_package(self._repository.save(session))

    # Package

    def create_package(self, organization_id: str) -> OnboardingSession:
        return self._create_package(self._begin(organization_id, Step.CREATING_PACKAGE))

    def _create_package(self, session: OnboardingSession) -> OnboardingSession:
        if session.package is None:
            if not (session.business_account_id and session.phone_number_id and session.access_token and session.branch):
                return self._fail(session, "Missing required information", retryable=False)
            session = self._start_attempt(session, "Creating WhatsApp package...")
            with self._settling(session):
                try:
                    session, phone_number = PHONE_SOURCES[session.branch].resolve(session, self._graph_client)
                    sanitized = sanitize_phone_number(phone_number)
                    data = self._backend_api.create_package(
                        organization_id=session.organization_id,
                        business_account_id=session.business_account_id,
                        phone_number=sanitized,
                        phone_number_id=session.phone_number_id,
                        access_token=session.access_token,
                    )
                except PreconditionFailed as exc:
                    return self._fail(session, str(exc), retryable=False, status="Error creating package.")
                except ExternalCallError as exc:
                    return self._fail(session, exc.message, status="Error creating package. Please try again.")
                package = Package.from_payload(data)
                if not package.phone_number:
                    package = replace(package, phone_number=sanitized)
                session = self._succeed(replace(session, package=package), package.id)
        session = self._enter(session, Step.SELECTING_ASSISTANT, "Package created. Please select an assistant.")
        return self._load_assistants(self._repository.save(session))

    # Assistant

    def load_assistants(self, organization_id: str) -> OnboardingSession:
        return self._load_assistants(self._begin(organization_id, Step.SELECTING_ASSISTANT))

    def _load_assistants(self, session: OnboardingSession) -> OnboardingSession:
        session = self._start_attempt(session, "Fetching assistants...")
        with self._settling(session):
            try:
                payload = self._backend_api.list_assistants(session.organization_id)
            except ExternalCallError as exc:
                return self._fail(session, exc.message, status="Error fetching assistants. Please try again.")
            assistants = tuple(Assistant.from_payload(item) for item in payload)
            session = replace(session, assistants=assistants)
            if not assistants:
                return self._fail(
                    session,
                    "No assistants found. Please create an assistant first.",
                    retryable=False,
                    status="Create an assistant, then reload the list.",
                )
            session = self._succeed(session, len(assistants))
        return self._repository.save(replace(session, status_message="Package created. Please select an assistant."))

    def select_assistant(self, organization_id: str, assistant_id: str) -> OnboardingSession:
        session = self._begin(organization_id, Step.SELECTING_ASSISTANT)
        chosen = next((item for item in session.assistants if assistant_id in (item.assistant_id, str(item.id))), None)
        if chosen is None:
            raise InvalidInputError("Select one of the assistants listed for this organization")
        session = replace(session, selected_assistant_id=chosen.assistant_id)
        session = self._enter(session, Step.CREATING_APP_SERVICE, "Creating AppService...")
        return self._create_app_service(self._repository.save(session))

    # AppService

    def create_app_service(self, organization_id: str) -> OnboardingSession:
        return self._create_app_service(self._begin(organization_id, Step.CREATING_APP_SERVICE))

    def _create_app_service(self, session: OnboardingSession) -> OnboardingSession:
        if session.app_service is None:
            if session.package is None or not session.selected_assistant_id:
                return self._fail(session, "Missing package or assistant", retryable=False)
            session = self._start_attempt(session, "Creating AppService...")
            with self._settling(session):
                try:
                    data = self._backend_api.create_app_service(
                        organization_id=session.organization_id,
                        phone_number=sanitize_phone_number(session.package.phone_number or ""),
                        assistant_id=session.selected_assistant_id,
                    )
                except ExternalCallError as exc:
                    return self._fail(session, exc.message, status="Error creating AppService. Please try again.")
                app_service = AppService.from_payload(data)
                session = self._succeed(replace(session, app_service=app_service), app_service.id)
        if session.branch is OnboardingBranch.IMPORTED:
            session = self._enter(session, Step.SYNCING_CONTACTS, "AppService created. Starting data synchronization...")
            return self._run_sync_tail(self._repository.save(session))
        session = self._enter(session, Step.COMPLETE, "Setup complete! Your WhatsApp business account is ready.")
        return self._repository.save(session)

    # Sync tail (imported branch)

    def _run_sync_tail(self, session: OnboardingSession) -> OnboardingSession:
        """Runs contacts, then history, then completes.

        The session is re-read after every pause so that changes saved by
        other requests in the meantime are kept. A session discarded or
        moved on by ``start_again`` ends the tail.
        """

        organization_id = session.organization_id
        sync = self._sync_initiator
        sync.pause_before(SyncKind.CONTACTS)
        session = self._resume(session)
        if session is None:
            return self.current(organization_id)
        session = self._repository.save(sync.trigger(session, SyncKind.CONTACTS, on_progress=self._repository.save))
        session = self._enter(session, Step.SYNCING_HISTORY, "Synchronizing message history from WhatsApp Business app...")
        session = self._repository.save(session)
        sync.pause_before(SyncKind.HISTORY)
        session = self._resume(session)
        if session is None:
            return self.current(organization_id)
        session = self._repository.save(sync.trigger(session, SyncKind.HISTORY, on_progress=self._repository.save))
        sync.pause_before(None)
        session = self._resume(session)
        if session is None:
            return self.current(organization_id)
        if session.sync_jobs.contacts.is_failed or session.sync_jobs.history.is_failed:
            message = "Setup complete! Some data synchronization could not be started; retry it from here."
        else:
            message = "Setup complete! Your WhatsApp Business account is ready and data synchronization is in progress."
        return self._repository.save(self._enter(session, Step.COMPLETE, message))

    def _resume(self, session: OnboardingSession) -> Optional[OnboardingSession]:
        latest = self._repository.get(session.organization_id)
        if latest is None or latest.step is not session.step:
            LOGGER.info("Sync tail for organization=%s stopped; the session was restarted", session.organization_id)
            return None
        return latest

    def retry_sync(self, organization_id: str, kind: SyncKind) -> OnboardingSession:
        session = self._repository.get_or_create(organization_id)
        if session.in_flight:
            raise TransitionInProgressError("A request for this onboarding is already in progress")
        if session.branch is not OnboardingBranch.IMPORTED or session.app_service is None:
            raise InvalidTransitionError("Data synchronization only applies to Business App onboarding")
        if session.step is not Step.COMPLETE:
            raise InvalidTransitionError("Data synchronization can be retried once the initial sync has finished")
        if session.sync_jobs.get(kind).is_succeeded:
            raise InvalidTransitionError(f"The {kind.value} sync was already accepted")
        LOGGER.info("Retrying %s sync for organization=%s", kind.value, organization_id)
        session = self._sync_initiator.trigger(session, kind, on_progress=self._repository.save)
        return self._repository.save(session)

    # Restart

    def start_again(self, organization_id: str) -> OnboardingSession:
        """Discards the session from any state, including a stuck in-flight one."""

        self._repository.discard(organization_id)
        LOGGER.info("Onboarding session discarded for organization=%s", organization_id)
        return self._repository.get_or_create(organization_id)

    # Helpers

    def _begin(self, organization_id: str, expected: Step) -> OnboardingSession:
        session = self._repository.get_or_create(organization_id)
        if session.in_flight:
            raise TransitionInProgressError("A request for this onboarding is already in progress")
        if session.halted:
            raise InvalidTransitionError("Signup was cancelled. Start again to retry.")
        if session.step is not expected:
            raise InvalidTransitionError(
                f"Onboarding is at {session.step.value}; this action needs {expected.value}"
            )
        return session

    @staticmethod
    def _enter(session: OnboardingSession, step: Step, message: Optional[str] = None) -> OnboardingSession:
        if _position(step) <= _position(session.step):
            raise InvalidTransitionError(f"Cannot move from {session.step.value} back to {step.value}")
        LOGGER.info("Onboarding organization=%s: %s -> %s", session.organization_id, session.step.value, step.value)
        return replace(
            session,
            step=step,
            visited=session.visited + (step,),
            status_message=message if message is not None else session.status_message,
        )

    def _start_attempt(self, session: OnboardingSession, message: str) -> OnboardingSession:
        attempts = dict(session.attempts)
        attempts[session.step] = Attempt.in_flight()
        return self._repository.save(replace(session, attempts=attempts, status_message=message))

    @contextmanager
    def _settling(self, session: OnboardingSession) -> Iterator[None]:
        """Records an unexpected error against the in-flight step, then re-raises it."""

        try:
            yield
        except Exception as exc:
            LOGGER.exception(
                "Unexpected error for organization=%s at %s",
                session.organization_id,
                session.step.value,
            )
            self._fail(session, f"Unexpected error: {exc}")
            raise

    def _succeed(self, session: OnboardingSession, result: Any = None) -> OnboardingSession:
        attempts = dict(session.attempts)
        attempts[session.step] = Attempt.succeeded(result)
        return replace(session, attempts=attempts)

    def _fail(
        self,
        session: OnboardingSession,
        reason: str,
        *,
        retryable: bool = True,
        status: Optional[str] = None,
    ) -> OnboardingSession:
        LOGGER.warning(
            "Onboarding organization=%s failed at %s: %s",
            session.organization_id,
            session.step.value,
            reason,
        )
        attempts = dict(session.attempts)
        attempts[session.step] = Attempt.failed(reason, retryable=retryable)
        return self._repository.save(replace(session, attempts=attempts, status_message=status or reason))


def _position(step: Step) -> int:
    return STEP_ORDER.index(step)
