"""WhatsApp Cloud (Graph) API client used during channel provisioning."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ..config import DEFAULT_GRAPH_API_URL
from ..errors import GraphApiError

LOGGER = logging.getLogger(__name__)

PHONE_NUMBER_FIELDS = (
    "id",
    "cc",
    "country_dial_code",
    "display_phone_number",
    "verified_name",
    "status",
    "quality_rating",
    "search_visibility",
    "platform_type",
    "code_verification_status",
)
PHONE_DETAIL_FIELDS = ("display_phone_number", "verified_name")


def _error_message(response: requests.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return fallback


class GraphClient:
    """Small wrapper around the Graph resources touched by embedded signup."""

    def __init__(
        self,
        base_url: str = DEFAULT_GRAPH_API_URL,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def subscribe_app(self, waba_id: str, access_token: str) -> Dict[str, Any]:
        """Subscribes this application to the business account's webhook feed."""

        return self._request(
            "POST",
            f"{waba_id}/subscribed_apps",
            access_token,
            json={"access_token": access_token},
            failure="Failed to subscribe app",
        )

    def list_phone_numbers(self, waba_id: str, access_token: str) -> List[Dict[str, Any]]:
        data = self._request(
            "GET",
            f"{waba_id}/phone_numbers",
            access_token,
            params={"fields": ",".join(PHONE_NUMBER_FIELDS)},
            failure="Failed to fetch phone numbers",
        )
        numbers = data.get("data")
        return list(numbers) if isinstance(numbers, list) else []

    def phone_number_details(self, phone_number_id: str, access_token: str) -> Dict[str, Any]:
        return self._request(
            "GET",
            phone_number_id,
            access_token,
            params={"fields": ",".join(PHONE_DETAIL_FIELDS)},
            failure="Failed to fetch phone number details",
        )

    def request_data_sync(self, phone_number_id: str, access_token: str, sync_type: str) -> Dict[str, Any]:
        """Asks the platform to start a Business App data sync job."""

        payload = {"messaging_product": "whatsapp", "sync_type": sync_type}
        return self._request(
            "POST",
            f"{phone_number_id}/smb_app_data",
            access_token,
            json=payload,
            failure=f"Failed to initiate {sync_type} synchronization",
        )

    def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        failure: str,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        LOGGER.debug("Graph request %s %s", method, url)
        try:
            response = self._session.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            LOGGER.error("Graph API unreachable: %s %s | %s", method, url, exc)
            raise GraphApiError(f"{failure}: {exc}") from exc
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            LOGGER.error("Graph API error: %s | Response: %s", exc, response.text)
            raise GraphApiError(_error_message(response, failure), response.status_code) from exc
        try:
            body = response.json()
        except ValueError as exc:
            raise GraphApiError(f"{failure}: response was not JSON", response.status_code) from exc
        return body if isinstance(body, dict) else {}
