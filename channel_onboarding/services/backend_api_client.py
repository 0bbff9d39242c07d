"""HTTP client for the dashboard back end (channels, app services, assistants)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from ..errors import BackendApiError

LOGGER = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

# Per-field validation errors the channel endpoint reports as lists.
_FIELD_ERROR_LABELS = (
    ("phone_number", "Phone number error"),
    ("phone_number_id", "Phone number ID error"),
)


def _describe_failure(body: Any, fallback: str) -> str:
    if not isinstance(body, dict):
        return fallback
    for key, label in _FIELD_ERROR_LABELS:
        value = body.get(key)
        if isinstance(value, list) and value:
            return f"{label}: {', '.join(str(item) for item in value)}"
    for key in ("error", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict) and value.get("message"):
            return str(value["message"])
    return fallback


class BackendApiClient:
    """Small helper around the persistence API that owns packages and app services."""

    def __init__(
        self,
        base_url: str,
        *,
        auth_token_provider: Optional[TokenProvider] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth_token_provider = auth_token_provider
        self._session = session or requests.Session()
        self._timeout = timeout

    def _url(self, *parts: str) -> str:
        suffix = "/".join(part.strip("/") for part in parts if part)
        return f"{self._base_url}/{suffix}" if suffix else self._base_url

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._auth_token_provider() if self._auth_token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        url: str,
        *,
        failure: str,
        expect: Tuple[type, ...] = (dict,),
        **kwargs: Any,
    ) -> Any:
        try:
            response = self._session.request(method, url, headers=self._headers(), timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            LOGGER.error("Backend API unreachable: %s %s | %s", method, url, exc)
            raise BackendApiError(f"{failure}: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = None
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            LOGGER.error("Backend API request failed: %s %s | Response: %s", method, url, response.text)
            message = _describe_failure(body, f"{failure} ({response.status_code})")
            raise BackendApiError(message, response.status_code) from exc
        if body is None:
            raise BackendApiError(f"{failure}: response was not JSON", response.status_code)
        if not isinstance(body, expect):
            LOGGER.error("Backend API returned an unexpected body: %s %s | Response: %s", method, url, response.text)
            raise BackendApiError(f"{failure}: unexpected response", response.status_code)
        return body

    def create_package(
        self,
        *,
        organization_id: str,
        business_account_id: str,
        phone_number: str,
        phone_number_id: str,
        access_token: str,
    ) -> Dict[str, Any]:
        payload = {
            "choice": "whatsapp",
            "data": {
                "whatsapp_business_account_id": business_account_id,
                "phone_number": phone_number,
                "phone_number_id": phone_number_id,
                "access_token": access_token,
            },
            "organization_id": organization_id,
        }
        LOGGER.info(
            "Creating WhatsApp package for organization=%s phone_number_id=%s",
            organization_id,
            phone_number_id,
        )
        return self._request("POST", self._url("channels", "create"), json=payload, failure="Failed to create WhatsApp package")

    def create_app_service(self, *, organization_id: str, phone_number: str, assistant_id: str) -> Dict[str, Any]:
        payload = {
            "organization_id": organization_id,
            "phone_number": phone_number,
            "assistant_id": assistant_id,
        }
        LOGGER.info("Creating AppService with data: %s", payload)
        return self._request("POST", self._url("appservice", "create"), json=payload, failure="Failed to create AppService")

    def list_assistants(self, organization_id: str) -> List[Dict[str, Any]]:
        data = self._request(
            "GET",
            self._url("assistants"),
            params={"organization_id": organization_id},
            failure="Failed to fetch assistants",
            expect=(dict, list),
        )
        if isinstance(data, dict):
            data = data.get("results") or data.get("data") or []
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]
