from __future__ import annotations

import httpx

from .constants import LOGGER

ACCOUNTS_PATH = "/trader/v1/accounts"


class UpstreamAPIError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


def _friendly_error_message(status_code: int) -> str:
    if status_code == 401:
        return "Authentication failed. The access token was rejected."
    if status_code == 403:
        return "The access token does not grant access to this resource."
    if status_code == 404:
        return "The requested resource was not found on the Schwab API."
    if status_code == 429:
        return "Rate limit exceeded on the Schwab API."
    if status_code >= 500:
        return "Schwab API is experiencing issues. Please try again later."
    return f"Schwab API request failed with status {status_code}."


def mask_token(token: str | None, *, visible: int = 6) -> str:
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}...({len(token)} chars)"


async def log_request(request: httpx.Request) -> None:
    LOGGER.info("Schwab API request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.info(
        "Schwab API response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        LOGGER.warning("Schwab API error body: %s", text)


def build_api_client(*, base_url: str, timeout: float, debug_enabled: bool = True) -> httpx.AsyncClient:
    event_hooks: dict[str, list] = {"request": [], "response": []}
    if debug_enabled:
        event_hooks["request"].append(log_request)
        event_hooks["response"].append(log_response)

    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        event_hooks=event_hooks,
    )


async def fetch_accounts(
    client: httpx.AsyncClient,
    access_token: str,
    *,
    fields: str = "positions",
) -> list | dict:
    """Smoke-test an access token against the account listing endpoint."""
    LOGGER.info("*** API TEST CALL: ACCOUNTS ***")
    try:
        response = await client.get(
            ACCOUNTS_PATH,
            params={"fields": fields},
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {access_token}",
            },
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        status_code = error.response.status_code
        raise UpstreamAPIError(
            _friendly_error_message(status_code),
            status_code=status_code,
            detail=error.response.text,
        ) from error
    except httpx.HTTPError as error:
        raise UpstreamAPIError(f"Schwab API request failed: {error}") from error

    payload = response.json()
    count = len(payload) if isinstance(payload, list) else 1
    LOGGER.info("Account listing returned %s account(s)", count)
    return payload
