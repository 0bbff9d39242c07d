"""Client for the server-side signup proxy that holds the OAuth client secret."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from ..errors import SignupProxyError

LOGGER = logging.getLogger(__name__)


class SignupProxyClient:
    """Exchanges grant codes and registers phone numbers through the proxy."""

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def exchange_token(self, code: str) -> str:
        """Returns the platform access token for a one-time grant code."""

        data = self._post("token-exchange", {"code": code}, failure="Failed to exchange code")
        token = data.get("access_token")
        if not token:
            raise SignupProxyError("No access token in response")
        return str(token)

    def register_phone(self, phone_number_id: str, pin: str, access_token: str) -> Dict[str, Any]:
        payload = {"phone_number_id": phone_number_id, "pin": pin, "access_token": access_token}
        return self._post("register-phone", payload, failure="Error registering phone")

    def _post(self, path: str, payload: Dict[str, Any], *, failure: str) -> Dict[str, Any]:
        url = f"{self._base_url}/{path}"
        try:
            response = self._session.post(url, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            LOGGER.error("Signup proxy unreachable: %s | %s", url, exc)
            raise SignupProxyError(f"{failure}: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            LOGGER.error("Signup proxy error: %s | Response: %s", exc, response.text)
            detail = body.get("error") or body.get("detail") or failure
            if isinstance(detail, dict):
                detail = detail.get("error") or failure
            raise SignupProxyError(str(detail), response.status_code) from exc
        return body
