"""Data transfer objects for the channel onboarding session and its resources."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

_PHONE_NOISE = re.compile(r"[\s+]")


def sanitize_phone_number(value: str) -> str:
    """Strips ``+`` and whitespace so the back end receives bare digits."""

    return _PHONE_NOISE.sub("", value or "")


class OnboardingBranch(str, Enum):
    FRESH = "fresh"
    IMPORTED = "imported"


class Step(str, Enum):
    INITIAL = "initial"
    CODE_RECEIVED = "codeReceived"
    TOKEN_RECEIVED = "tokenReceived"
    REGISTERED = "registered"
    FETCHING_PHONE = "fetchingPhone"
    CONFIRMING_PHONE = "confirmingPhone"
    CREATING_PACKAGE = "creatingPackage"
    SELECTING_ASSISTANT = "selectingAssistant"
    CREATING_APP_SERVICE = "creatingAppService"
    SYNCING_CONTACTS = "syncingContacts"
    SYNCING_HISTORY = "syncingHistory"
    COMPLETE = "complete"


STEP_ORDER: Tuple[Step, ...] = tuple(Step)


class AttemptStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class Attempt:
    """Outcome of the external work attached to one state."""

    status: AttemptStatus = AttemptStatus.NOT_STARTED
    reason: Optional[str] = None
    retryable: bool = True
    result: Any = None

    @classmethod
    def not_started(cls) -> "Attempt":
        return cls()

    @classmethod
    def in_flight(cls) -> "Attempt":
        return cls(status=AttemptStatus.IN_FLIGHT)

    @classmethod
    def failed(cls, reason: str, *, retryable: bool = True) -> "Attempt":
        return cls(status=AttemptStatus.FAILED, reason=reason, retryable=retryable)

    @classmethod
    def succeeded(cls, result: Any = None) -> "Attempt":
        return cls(status=AttemptStatus.SUCCEEDED, result=result)

    @property
    def is_in_flight(self) -> bool:
        return self.status is AttemptStatus.IN_FLIGHT

    @property
    def is_failed(self) -> bool:
        return self.status is AttemptStatus.FAILED

    @property
    def is_succeeded(self) -> bool:
        return self.status is AttemptStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status.value}
        if self.is_failed:
            payload["reason"] = self.reason
            payload["retryable"] = self.retryable
        return payload


class SyncKind(str, Enum):
    CONTACTS = "contacts"
    HISTORY = "history"

    @property
    def sync_type(self) -> str:
        """Wire discriminator expected by the platform's ``smb_app_data`` edge."""

        if self is SyncKind.CONTACTS:
            return "smb_app_state_sync"
        return "history"


@dataclass(frozen=True)
class SyncJobs:
    contacts: Attempt = field(default_factory=Attempt)
    history: Attempt = field(default_factory=Attempt)

    def get(self, kind: SyncKind) -> Attempt:
        return self.contacts if kind is SyncKind.CONTACTS else self.history

    def with_attempt(self, kind: SyncKind, attempt: Attempt) -> "SyncJobs":
        if kind is SyncKind.CONTACTS:
            return replace(self, contacts=attempt)
        return replace(self, history=attempt)

    def request_id(self, kind: SyncKind) -> Optional[str]:
        attempt = self.get(kind)
        return attempt.result if attempt.is_succeeded else None

    @property
    def in_flight(self) -> bool:
        return self.contacts.is_in_flight or self.history.is_in_flight

    @property
    def started(self) -> bool:
        return self.contacts.status is not AttemptStatus.NOT_STARTED or self.history.status is not AttemptStatus.NOT_STARTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            kind.value: {**self.get(kind).to_dict(), "request_id": self.request_id(kind)}
            for kind in SyncKind
        }


@dataclass(frozen=True)
class PhoneNumber:
    id: str
    display_phone_number: str
    verified_name: Optional[str] = None
    status: Optional[str] = None
    quality_rating: Optional[str] = None
    code_verification_status: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PhoneNumber":
        return cls(
            id=str(payload.get("id", "")),
            display_phone_number=str(payload.get("display_phone_number", "")),
            verified_name=payload.get("verified_name"),
            status=payload.get("status"),
            quality_rating=payload.get("quality_rating"),
            code_verification_status=payload.get("code_verification_status"),
        )


@dataclass(frozen=True)
class Assistant:
    id: Any
    assistant_id: str
    name: str
    organization_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Assistant":
        return cls(
            id=payload.get("id"),
            assistant_id=str(payload.get("assistant_id", "")),
            name=str(payload.get("name", "")),
            organization_id=payload.get("organization_id"),
        )


@dataclass(frozen=True)
class Package:
    id: Any
    phone_number: Optional[str]
    raw: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Package":
        return cls(id=payload.get("id"), phone_number=payload.get("phone_number"), raw=dict(payload))


@dataclass(frozen=True)
class AppService:
    id: Any
    raw: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AppService":
        return cls(id=payload.get("id"), raw=dict(payload))


class ConsentEventKind(str, Enum):
    FINISH = "FINISH"
    FINISH_BUSINESS_APP = "FINISH_WHATSAPP_BUSINESS_APP_ONBOARDING"
    CANCEL = "CANCEL"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ConsentEvent:
    """Typed completion notice posted by the consent widget."""

    event: str
    phone_number_id: Optional[str] = None
    waba_id: Optional[str] = None
    current_step: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def branch(self) -> Optional[OnboardingBranch]:
        if self.event == ConsentEventKind.FINISH.value:
            return OnboardingBranch.FRESH
        if self.event == ConsentEventKind.FINISH_BUSINESS_APP.value:
            return OnboardingBranch.IMPORTED
        return None


@dataclass(frozen=True)
class OnboardingSession:
    organization_id: str
    step: Step = Step.INITIAL
    branch: Optional[OnboardingBranch] = None
    grant_code: Optional[str] = None
    access_token: Optional[str] = None
    phone_number_id: Optional[str] = None
    business_account_id: Optional[str] = None
    pin: Optional[str] = None
    phone_numbers: Tuple[PhoneNumber, ...] = ()
    selected_phone_number: Optional[str] = None
    business_app_phone_number: Optional[str] = None
    assistants: Tuple[Assistant, ...] = ()
    selected_assistant_id: Optional[str] = None
    package: Optional[Package] = None
    app_service: Optional[AppService] = None
    sync_jobs: SyncJobs = field(default_factory=SyncJobs)
    attempts: Dict[Step, Attempt] = field(default_factory=dict)
    visited: Tuple[Step, ...] = (Step.INITIAL,)
    status_message: str = ""
    halted: bool = False

    @property
    def package_id(self) -> Any:
        return self.package.id if self.package else None

    @property
    def app_service_id(self) -> Any:
        return self.app_service.id if self.app_service else None

    @property
    def in_flight(self) -> bool:
        return any(attempt.is_in_flight for attempt in self.attempts.values()) or self.sync_jobs.in_flight

    @property
    def error(self) -> Optional[str]:
        attempt = self.attempt(self.step)
        return attempt.reason if attempt.is_failed else None

    def attempt(self, step: Step) -> Attempt:
        return self.attempts.get(step, Attempt.not_started())

    def to_public_dict(self) -> Dict[str, Any]:
        """Session view for the dashboard; credentials are never echoed back."""

        phone_numbers: List[Dict[str, Any]] = [
            {"id": item.id, "display_phone_number": item.display_phone_number, "verified_name": item.verified_name}
            for item in self.phone_numbers
        ]
        return {
            "organization_id": self.organization_id,
            "step": self.step.value,
            "branch": self.branch.value if self.branch else None,
            "has_grant_code": self.grant_code is not None,
            "has_access_token": self.access_token is not None,
            "phone_number_id": self.phone_number_id,
            "business_account_id": self.business_account_id,
            "pin_entered": bool(self.pin),
            "phone_numbers": phone_numbers,
            "selected_phone_number": self.selected_phone_number,
            "business_app_phone_number": self.business_app_phone_number,
            "assistants": [
                {"id": item.id, "assistant_id": item.assistant_id, "name": item.name}
                for item in self.assistants
            ],
            "selected_assistant_id": self.selected_assistant_id,
            "package_id": self.package_id,
            "app_service_id": self.app_service_id,
            "sync_jobs": self.sync_jobs.to_dict(),
            "attempts": {step.value: attempt.to_dict() for step, attempt in self.attempts.items()},
            "visited": [step.value for step in self.visited],
            "status_message": self.status_message,
            "error": self.error,
            "in_flight": self.in_flight,
            "halted": self.halted,
        }
