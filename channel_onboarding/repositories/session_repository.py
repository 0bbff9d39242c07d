"""In-memory store for onboarding sessions, one per organization."""

from __future__ import annotations

from typing import Dict, Optional

from ..models import OnboardingSession


class SessionRepository:
    """Holds volatile signup state; nothing survives a process restart."""

    def __init__(self) -> None:
        self._sessions: Dict[str, OnboardingSession] = {}

    def get(self, organization_id: str) -> Optional[OnboardingSession]:
        return self._sessions.get(organization_id)

    def get_or_create(self, organization_id: str) -> OnboardingSession:
        session = self._sessions.get(organization_id)
        if session is None:
            session = OnboardingSession(organization_id=organization_id)
            self._sessions[organization_id] = session
        return session

    def save(self, session: OnboardingSession) -> OnboardingSession:
        self._sessions[session.organization_id] = session
        return session

    def discard(self, organization_id: str) -> None:
        self._sessions.pop(organization_id, None)
