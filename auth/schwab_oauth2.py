from __future__ import annotations

import base64
from dataclasses import dataclass, field

import httpx

from auth.urls import append_query_params
from autoauth.constants import LOGGER, SCHWAB_API_BASE_URL
from autoauth.http import mask_token

AUTHORIZE_PATH = "/v1/oauth/authorize"
TOKEN_PATH = "/v1/oauth/token"


class AuthExchangeError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    payload: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")

        if not isinstance(access_token, str) or not access_token:
            raise AuthExchangeError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise AuthExchangeError("Token response refresh_token must be a string.")
        if not isinstance(expires_in, int):
            expires_in = None

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=expires_in,
            payload=payload,
        )


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    *,
    scope: str = "readonly",
    base_url: str = SCHWAB_API_BASE_URL,
) -> str:
    return append_query_params(
        f"{base_url.rstrip('/')}{AUTHORIZE_PATH}",
        {
            "response_type": "code",
            "client_id": client_id,
            "scope": scope,
            "redirect_uri": redirect_uri,
        },
    )


def basic_auth_header(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(credentials).decode("ascii")


async def _token_request(
    payload: dict[str, str],
    *,
    client_id: str,
    client_secret: str,
    base_url: str,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            f"{base_url.rstrip('/')}{TOKEN_PATH}",
            data=payload,
            headers={"Authorization": basic_auth_header(client_id, client_secret)},
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise AuthExchangeError(
            f"Token request failed with status {error.response.status_code}: {detail}",
            status_code=error.response.status_code,
            detail=detail,
        ) from error
    except httpx.HTTPError as error:
        raise AuthExchangeError(f"Token request failed: {error}", detail=str(error)) from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        body = response.json()
    except ValueError as error:
        raise AuthExchangeError(
            "Token endpoint returned a non-JSON body.", detail=response.text
        ) from error
    if not isinstance(body, dict):
        raise AuthExchangeError("Token endpoint returned an unexpected payload.", detail=response.text)
    return TokenResponse.from_payload(body)


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    *,
    base_url: str = SCHWAB_API_BASE_URL,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    tokens = await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        },
        client_id=client_id,
        client_secret=client_secret,
        base_url=base_url,
        client=client,
    )
    LOGGER.info("*** GOT NEW AUTH TOKEN ***")
    LOGGER.info("Access token: %s", mask_token(tokens.access_token))
    LOGGER.info("Refresh token: %s", mask_token(tokens.refresh_token))
    return tokens


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    base_url: str = SCHWAB_API_BASE_URL,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    LOGGER.info("*** REFRESHING ACCESS TOKEN ***")
    tokens = await _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        client_id=client_id,
        client_secret=client_secret,
        base_url=base_url,
        client=client,
    )
    LOGGER.info("New access token: %s", mask_token(tokens.access_token))
    LOGGER.info("New refresh token: %s", mask_token(tokens.refresh_token))
    return tokens
