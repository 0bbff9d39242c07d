"""Turns messages posted by the consent widget into typed onboarding events."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from ..config import DEFAULT_ALLOWED_ORIGINS
from ..models import ConsentEvent

LOGGER = logging.getLogger(__name__)

MESSAGE_TYPE = "WA_EMBEDDED_SIGNUP"

EventSink = Callable[[str, ConsentEvent], Any]


class ConsentListener:
    """Validates widget messages and forwards them to the orchestrator."""

    def __init__(self, sink: EventSink, *, allowed_origins: Iterable[str] = DEFAULT_ALLOWED_ORIGINS) -> None:
        self._sink = sink
        self._allowed_origins = frozenset(allowed_origins)

    def handle_message(self, organization_id: str, origin: Optional[str], payload: Any) -> Optional[ConsentEvent]:
        """Returns the forwarded event, or None when the message was dropped."""

        if origin not in self._allowed_origins:
            LOGGER.warning("Dropping consent message from untrusted origin=%s", origin)
            return None
        event = self.parse(payload)
        if event is None:
            LOGGER.debug("Ignoring unrecognised consent message for organization=%s", organization_id)
            return None
        LOGGER.info("Consent widget reported %s for organization=%s", event.event, organization_id)
        self._sink(organization_id, event)
        return event

    @staticmethod
    def parse(payload: Any) -> Optional[ConsentEvent]:
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError:
                return None
        if not isinstance(payload, Mapping):
            return None
        if payload.get("type") != MESSAGE_TYPE:
            return None
        event = payload.get("event")
        if not isinstance(event, str) or not event:
            return None
        data = payload.get("data")
        if not isinstance(data, Mapping):
            data = {}
        return ConsentEvent(
            event=event,
            phone_number_id=_optional_str(data.get("phone_number_id")),
            waba_id=_optional_str(data.get("waba_id")),
            current_step=_optional_str(data.get("current_step")),
            error_message=_optional_str(data.get("error_message")),
        )


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
