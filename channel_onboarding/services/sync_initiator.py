"""Best-effort Business App data synchronisation (contacts, then message history)."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, Optional

from ..errors import ExternalCallError
from ..models import Attempt, OnboardingSession, SyncKind
from .graph_client import GraphClient

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[OnboardingSession], OnboardingSession]


class SyncInitiator:
    """Starts platform sync jobs and records their request ids.

    The jobs finish out of band (the platform reports progress through
    webhooks), so only request acceptance is tracked here. A failed job is
    logged and left for a manual retry; it never stops the onboarding from
    completing.
    """

    def __init__(
        self,
        graph_client: GraphClient,
        *,
        contacts_delay: float = 1.0,
        history_delay: float = 1.0,
        completion_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._graph_client = graph_client
        self._delays: Dict[Optional[SyncKind], float] = {
            SyncKind.CONTACTS: contacts_delay,
            SyncKind.HISTORY: history_delay,
            None: completion_delay,
        }
        self._sleep = sleep

    def pause_before(self, kind: Optional[SyncKind]) -> None:
        """Waits the fixed delay that precedes ``kind`` (None: completion)."""

        delay = self._delays[kind]
        if delay > 0:
            self._sleep(delay)

    def trigger(
        self,
        session: OnboardingSession,
        kind: SyncKind,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OnboardingSession:
        if not session.phone_number_id or not session.access_token:
            reason = f"Missing required information for {kind.value} sync"
            LOGGER.error("%s (organization=%s)", reason, session.organization_id)
            return self._record(session, kind, Attempt.failed(reason, retryable=False))
        session = self._record(session, kind, Attempt.in_flight())
        if on_progress:
            session = on_progress(session)
        try:
            data = self._graph_client.request_data_sync(session.phone_number_id, session.access_token, kind.sync_type)
            request_id = data.get("request_id")
        except ExternalCallError as exc:
            LOGGER.exception("Error initiating %s sync for organization=%s", kind.value, session.organization_id)
            return self._record(session, kind, Attempt.failed(exc.message))
        except Exception:
            # Do not leave the job in flight; the caller still sees the error.
            failed = self._record(session, kind, Attempt.failed(f"Failed to initiate {kind.value} synchronization"))
            if on_progress:
                on_progress(failed)
            raise
        if not request_id:
            LOGGER.error("Sync response without request_id for %s: %s", kind.value, data)
            return self._record(session, kind, Attempt.failed(f"Failed to initiate {kind.value} synchronization"))
        LOGGER.info(
            "%s sync accepted for organization=%s request_id=%s",
            kind.value.capitalize(),
            session.organization_id,
            request_id,
        )
        return self._record(session, kind, Attempt.succeeded(str(request_id)))

    @staticmethod
    def _record(session: OnboardingSession, kind: SyncKind, attempt: Attempt) -> OnboardingSession:
        return replace(session, sync_jobs=session.sync_jobs.with_attempt(kind, attempt))
