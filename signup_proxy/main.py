import logging
import os

import requests
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

LOGGER = logging.getLogger(__name__)

DEFAULT_GRAPH_API_URL = "https://graph.facebook.com/v22.0"
REQUEST_TIMEOUT = 15

#Start API
app = FastAPI(title="Signup Proxy")


#Models
class TokenExchangeIn(BaseModel):
    code: str | None = None


class RegisterPhoneIn(BaseModel):
    phone_number_id: str | None = None
    pin: str | None = None
    access_token: str | None = None


def _graph_url(*parts: str) -> str:
    base = os.getenv("GRAPH_API_URL", DEFAULT_GRAPH_API_URL).rstrip("/")
    return "/".join([base, *parts])


def _app_credentials() -> tuple[str | None, str | None]:
    return os.getenv("FACEBOOK_APP_ID"), os.getenv("FACEBOOK_APP_SECRET")


def _json_or_text(response: requests.Response):
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def _log_token_details(access_token: str, app_id: str, app_secret: str) -> None:
    # Diagnostics only; the exchange result does not depend on it.
    try:
        response = requests.get(
            _graph_url("debug_token"),
            params={"input_token": access_token, "access_token": f"{app_id}|{app_secret}"},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException:
        LOGGER.exception("Error debugging token")
        return
    body = _json_or_text(response)
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        LOGGER.warning("Unexpected debug_token response: %s", body)
        return
    LOGGER.info(
        "Token debug info: valid=%s scopes=%s app_id=%s expires_at=%s",
        data.get("is_valid"),
        data.get("scopes"),
        data.get("app_id"),
        data.get("expires_at"),
    )


#Endpoints
@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/token-exchange")
def exchange_token(data: TokenExchangeIn):
    if not data.code:
        raise HTTPException(status_code=400, detail="Code is required")
    app_id, app_secret = _app_credentials()
    if not app_id or not app_secret:
        LOGGER.error("Missing Facebook app credentials")
        raise HTTPException(status_code=500, detail="Server configuration error")

    LOGGER.info("Exchanging code for token...")
    try:
        response = requests.get(
            _graph_url("oauth", "access_token"),
            params={"client_id": app_id, "client_secret": app_secret, "code": data.code},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        LOGGER.exception("Token exchange request failed")
        raise HTTPException(status_code=502, detail="Could not reach Facebook") from exc
    body = _json_or_text(response)
    LOGGER.info(
        "Token exchange response: status=%s has_access_token=%s",
        response.status_code,
        bool(isinstance(body, dict) and body.get("access_token")),
    )
    if not response.ok:
        LOGGER.error("Facebook API error: %s", body)
        return JSONResponse(status_code=500, content={"error": "Failed to exchange code", "details": body})

    if isinstance(body, dict) and body.get("access_token"):
        _log_token_details(body["access_token"], app_id, app_secret)
    return body


@app.post("/register-phone")
def register_phone(data: RegisterPhoneIn):
    LOGGER.debug("Register phone request for phone_number_id=%s", data.phone_number_id)
    if not data.phone_number_id or not data.pin or not data.access_token:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Missing required parameters",
                "details": {
                    "phone_number_id": bool(data.phone_number_id),
                    "pin": bool(data.pin),
                    "access_token": bool(data.access_token),
                },
            },
        )

    payload = {"messaging_product": "whatsapp", "pin": data.pin, "access_token": data.access_token}
    try:
        response = requests.post(
            _graph_url(data.phone_number_id, "register"),
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        LOGGER.exception("Server error during phone registration")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})
    body = _json_or_text(response)
    if not response.ok:
        LOGGER.error("Facebook API error during phone registration: %s", body)
        return JSONResponse(
            status_code=response.status_code,
            content={
                "error": "Failed to register phone",
                "details": body,
                "status": response.status_code,
                "statusText": response.reason,
            },
        )
    return body
