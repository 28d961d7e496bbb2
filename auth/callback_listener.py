from __future__ import annotations

import asyncio
import socket
from pathlib import Path
from typing import Awaitable, Callable

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route

from auth.schwab_oauth2 import TokenResponse
from auth.urls import HTTPS_DEFAULT_PORT
from autoauth.constants import DEFAULT_CALLBACK_TIMEOUT_SECONDS, LOGGER

SUCCESS_MESSAGE = "Authorization process completed. Check the logs for details."


class ListenerBindError(RuntimeError):
    def __init__(self, host: str, port: int, error: OSError) -> None:
        super().__init__(f"Cannot listen on {host}:{port}: {error.strerror or error}")
        self.host = host
        self.port = port


ExchangeCodeFn = Callable[[str], Awaitable[TokenResponse]]
AcceptCodeFn = Callable[[str], bool]


class CallbackListener:
    """Short-lived HTTPS endpoint that turns one authorization redirect into tokens.

    The first request carrying a ``code`` is handed to ``accept_code`` and, when
    accepted, exchanged through ``exchange_code_fn``. The outcome of
    :meth:`wait_for_tokens` is the resulting :class:`TokenResponse`, ``None`` when
    no code arrived in time, or the exchange error.
    """

    def __init__(
        self,
        *,
        exchange_code_fn: ExchangeCodeFn,
        accept_code: AcceptCodeFn,
        host: str = "127.0.0.1",
        port: int = HTTPS_DEFAULT_PORT,
        path: str = "/",
        ssl_keyfile: str | Path | None = None,
        ssl_certfile: str | Path | None = None,
        timeout_seconds: float = DEFAULT_CALLBACK_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.port = port
        self.path = path or "/"
        self.ssl_keyfile = ssl_keyfile
        self.ssl_certfile = ssl_certfile
        self.timeout_seconds = timeout_seconds

        self._exchange_code_fn = exchange_code_fn
        self._accept_code = accept_code
        self._outcome: asyncio.Future | None = None
        self._socket: socket.socket | None = None
        self.exchange_count = 0

        self.app = Starlette(
            routes=[Route(self.path, self._handle_callback, methods=["GET"])],
        )

    @property
    def scheme(self) -> str:
        return "https" if self.ssl_certfile else "http"

    # -- outcome ---------------------------------------------------------------

    def _outcome_future(self) -> asyncio.Future:
        if self._outcome is None:
            self._outcome = asyncio.get_running_loop().create_future()
        return self._outcome

    def _resolve(self, tokens: TokenResponse | None) -> None:
        outcome = self._outcome_future()
        if not outcome.done():
            outcome.set_result(tokens)

    def _reject(self, error: BaseException) -> None:
        outcome = self._outcome_future()
        if not outcome.done():
            outcome.set_exception(error)

    def close(self) -> None:
        """Stop waiting for a redirect; a pending outcome resolves to ``None``."""
        LOGGER.info("Closing callback listener without an authorization code.")
        self._resolve(None)

    # -- route -----------------------------------------------------------------

    async def _handle_callback(self, request: Request) -> Response:
        error = request.query_params.get("error")
        if error:
            description = request.query_params.get("error_description", "")
            LOGGER.warning("Authorization redirect carried an error: %s %s", error, description)
            return PlainTextResponse(f"Authorization failed: {error}", status_code=400)

        code = request.query_params.get("code")
        if not code:
            LOGGER.warning("Rejected callback request without an authorization code.")
            return PlainTextResponse("Missing authorization code", status_code=400)

        if not self._accept_code(code):
            LOGGER.warning("Ignoring repeated authorization redirect; a code was already accepted.")
            return PlainTextResponse("Authorization code already received.", status_code=409)

        LOGGER.info("Received authorization code; exchanging it for tokens.")
        self.exchange_count += 1
        try:
            tokens = await self._exchange_code_fn(code)
        except Exception as error:
            LOGGER.error("Error fetching auth token: %s", error)
            self._reject(error)
            return PlainTextResponse(
                f"Failed to exchange authorization code: {error}", status_code=502
            )

        self._resolve(tokens)
        return PlainTextResponse(SUCCESS_MESSAGE)

    # -- serving ---------------------------------------------------------------

    def bind(self) -> socket.socket:
        """Claim the listening socket; safe to call before :meth:`wait_for_tokens`."""
        if self._socket is None:
            family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
            try:
                self._socket = socket.create_server((self.host, self.port), family=family)
            except OSError as error:
                raise ListenerBindError(self.host, self.port, error) from error
            self.port = self._socket.getsockname()[1]
            LOGGER.info(
                "Callback listener is listening on %s://%s:%s%s",
                self.scheme,
                self.host,
                self.port,
                self.path,
            )
        return self._socket

    def build_server(self) -> uvicorn.Server:
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            ssl_keyfile=str(self.ssl_keyfile) if self.ssl_keyfile else None,
            ssl_certfile=str(self.ssl_certfile) if self.ssl_certfile else None,
            lifespan="off",
            log_level="warning",
        )
        return uvicorn.Server(config)

    async def wait_for_tokens(self) -> TokenResponse | None:
        sock = self.bind()
        outcome = self._outcome_future()
        server = self.build_server()
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))

        try:
            done, _ = await asyncio.wait(
                {outcome, serve_task},
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if outcome in done:
                return outcome.result()
            if serve_task in done:
                serve_task.result()
                raise RuntimeError("Callback listener stopped before an authorization code arrived.")
            if self.exchange_count:
                # A code arrived in time; the exchange is still in flight.
                return await outcome

            LOGGER.warning(
                "Timeout: no authorization code received within %ss. Shutting down the listener.",
                self.timeout_seconds,
            )
            self._resolve(None)
            return None
        finally:
            # uvicorn skips its socket shutdown when asked to exit mid-startup.
            while not server.started and not serve_task.done():
                await asyncio.sleep(0.05)
            server.should_exit = True
            if not serve_task.done():
                await serve_task
            self._socket = None
            sock.close()
            LOGGER.info("Callback listener on port %s stopped.", self.port)
