import asyncio
import socket

import httpx
import pytest
import trustme

from auth.callback_listener import SUCCESS_MESSAGE, CallbackListener, ListenerBindError
from auth.models import AuthorizationSession
from auth.schwab_oauth2 import AuthExchangeError, TokenResponse
from auth.urls import HTTPS_DEFAULT_PORT
from tests.oauth_helpers import free_port, port_is_free, send_redirect


class ExchangeRecorder:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.codes: list[str] = []
        self.error = error

    async def __call__(self, code: str) -> TokenResponse:
        self.codes.append(code)
        if self.error is not None:
            raise self.error
        return TokenResponse.from_payload({"access_token": "AT1", "refresh_token": "RT1"})


def _build_listener(session: AuthorizationSession, exchange, *, timeout: float = 10.0):
    return CallbackListener(
        exchange_code_fn=exchange,
        accept_code=session.accept_code,
        host="127.0.0.1",
        port=free_port(),
        timeout_seconds=timeout,
    )


@pytest.mark.asyncio
async def test_missing_code_is_rejected(session) -> None:
    exchange = ExchangeRecorder()
    listener = _build_listener(session, exchange)

    response = await send_redirect(listener.app)

    assert response.status_code == 400
    assert response.text == "Missing authorization code"
    assert session.authorization_code is None
    assert exchange.codes == []


@pytest.mark.asyncio
async def test_empty_code_is_rejected(session) -> None:
    exchange = ExchangeRecorder()
    listener = _build_listener(session, exchange)

    response = await send_redirect(listener.app, {"code": ""})

    assert response.status_code == 400
    assert session.authorization_code is None
    assert exchange.codes == []


@pytest.mark.asyncio
async def test_provider_error_is_rejected_and_listener_keeps_waiting(session) -> None:
    exchange = ExchangeRecorder()
    listener = _build_listener(session, exchange)

    rejected = await send_redirect(listener.app, {"error": "access_denied"})
    accepted = await send_redirect(listener.app, {"code": "abc123"})

    assert rejected.status_code == 400
    assert accepted.status_code == 200
    assert exchange.codes == ["abc123"]


@pytest.mark.asyncio
async def test_valid_code_is_exchanged_once(session) -> None:
    exchange = ExchangeRecorder()
    listener = _build_listener(session, exchange)

    response = await send_redirect(listener.app, {"code": "abc123"})

    assert response.status_code == 200
    assert response.text == SUCCESS_MESSAGE
    assert session.authorization_code == "abc123"
    assert exchange.codes == ["abc123"]
    assert listener.exchange_count == 1


@pytest.mark.asyncio
async def test_second_redirect_does_not_exchange_again(session) -> None:
    exchange = ExchangeRecorder()
    listener = _build_listener(session, exchange)

    first = await send_redirect(listener.app, {"code": "abc123"})
    second = await send_redirect(listener.app, {"code": "other"})

    assert first.status_code == 200
    assert second.status_code == 409
    assert session.authorization_code == "abc123"
    assert exchange.codes == ["abc123"]


@pytest.mark.asyncio
async def test_wait_for_tokens_resolves_with_payload(session) -> None:
    exchange = ExchangeRecorder()
    listener = _build_listener(session, exchange)

    waiter = asyncio.create_task(listener.wait_for_tokens())
    await send_redirect(listener.app, {"code": "abc123"})
    tokens = await waiter

    assert tokens.payload == {"access_token": "AT1", "refresh_token": "RT1"}
    assert port_is_free(listener.port)


@pytest.mark.asyncio
async def test_wait_for_tokens_propagates_exchange_error(session) -> None:
    exchange = ExchangeRecorder(error=AuthExchangeError("Token request failed with status 400"))
    listener = _build_listener(session, exchange)

    waiter = asyncio.create_task(listener.wait_for_tokens())
    response = await send_redirect(listener.app, {"code": "abc123"})

    assert response.status_code == 502
    with pytest.raises(AuthExchangeError):
        await waiter
    assert port_is_free(listener.port)


@pytest.mark.asyncio
async def test_timeout_resolves_none_and_releases_port(session) -> None:
    exchange = ExchangeRecorder()
    listener = _build_listener(session, exchange, timeout=0.5)

    tokens = await listener.wait_for_tokens()

    assert tokens is None
    assert exchange.codes == []
    assert port_is_free(listener.port)


@pytest.mark.asyncio
async def test_close_resolves_none_without_waiting_for_timeout(session) -> None:
    listener = _build_listener(session, ExchangeRecorder(), timeout=30.0)

    waiter = asyncio.create_task(listener.wait_for_tokens())
    await asyncio.sleep(0.2)
    listener.close()

    assert await asyncio.wait_for(waiter, timeout=5) is None
    assert port_is_free(listener.port)


@pytest.mark.asyncio
async def test_busy_port_raises_bind_error(session) -> None:
    with socket.create_server(("127.0.0.1", 0)) as occupied:
        port = occupied.getsockname()[1]
        listener = CallbackListener(
            exchange_code_fn=ExchangeRecorder(),
            accept_code=session.accept_code,
            host="127.0.0.1",
            port=port,
            timeout_seconds=10.0,
        )

        with pytest.raises(ListenerBindError) as excinfo:
            await listener.wait_for_tokens()

    assert excinfo.value.port == port
    assert f"127.0.0.1:{port}" in str(excinfo.value)


@pytest.mark.asyncio
async def test_serves_redirect_over_tls(session, tmp_path) -> None:
    ca = trustme.CA()
    server_cert = ca.issue_cert("127.0.0.1")
    keyfile = tmp_path / "server-key.pem"
    certfile = tmp_path / "server-cert.pem"
    server_cert.private_key_pem.write_to_path(str(keyfile))
    server_cert.cert_chain_pems[0].write_to_path(str(certfile))

    exchange = ExchangeRecorder()
    listener = CallbackListener(
        exchange_code_fn=exchange,
        accept_code=session.accept_code,
        host="127.0.0.1",
        port=0,
        ssl_keyfile=keyfile,
        ssl_certfile=certfile,
        timeout_seconds=10.0,
    )
    listener.bind()
    waiter = asyncio.create_task(listener.wait_for_tokens())

    async with httpx.AsyncClient(verify=False) as client:
        response = await client.get(
            f"https://127.0.0.1:{listener.port}/", params={"code": "abc123"}
        )
    tokens = await waiter

    assert listener.scheme == "https"
    assert response.status_code == 200
    assert response.text == SUCCESS_MESSAGE
    assert tokens.access_token == "AT1"
    assert exchange.codes == ["abc123"]
    assert port_is_free(listener.port)


def test_listener_defaults_to_https_port(session) -> None:
    listener = CallbackListener(exchange_code_fn=ExchangeRecorder(), accept_code=session.accept_code)

    assert listener.port == HTTPS_DEFAULT_PORT
    assert listener.scheme == "http"
