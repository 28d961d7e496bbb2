from __future__ import annotations

import asyncio
import sys

import httpx

from auth import schwab_oauth2
from auth.callback_listener import CallbackListener, ListenerBindError
from auth.models import AuthorizationSession
from auth.schwab_oauth2 import AuthExchangeError, TokenResponse
from autoauth.constants import LOGGER
from autoauth.env import ConfigError, Settings, load_env, load_settings, setup_logging
from autoauth.http import UpstreamAPIError, build_api_client, fetch_accounts
from consent.driver import ConsentFlowDriver
from consent.screenshots import ScreenshotRecorder


def create_listener(
    settings: Settings,
    session: AuthorizationSession,
    client: httpx.AsyncClient,
) -> CallbackListener:
    async def exchange(code: str) -> TokenResponse:
        return await schwab_oauth2.exchange_code(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            code=code,
            redirect_uri=settings.redirect_uri,
            base_url=settings.api_base_url,
            client=client,
        )

    return CallbackListener(
        exchange_code_fn=exchange,
        accept_code=session.accept_code,
        host=settings.callback_host,
        port=settings.callback_port,
        path=settings.callback_path,
        ssl_keyfile=settings.tls_key_file,
        ssl_certfile=settings.tls_cert_file,
        timeout_seconds=settings.callback_timeout,
    )


def create_driver(settings: Settings) -> ConsentFlowDriver:
    authorize_url = schwab_oauth2.build_authorization_url(
        settings.client_id,
        settings.redirect_uri,
        scope=settings.scope,
        base_url=settings.api_base_url,
    )
    return ConsentFlowDriver(
        authorize_url=authorize_url,
        login_id=settings.login_id,
        password=settings.password,
        screenshots=ScreenshotRecorder(
            settings.screenshot_dir, enabled=settings.take_screenshots
        ),
        headless=settings.headless,
        page_timeout=settings.page_timeout,
        settle_timeout=settings.settle_timeout,
        flow_timeout=settings.flow_timeout,
    )


async def verify_tokens(
    session: AuthorizationSession,
    settings: Settings,
    client: httpx.AsyncClient,
) -> bool:
    """Smoke-test the fresh tokens: accounts, refresh, accounts again."""
    try:
        await fetch_accounts(client, session.access_token)

        refreshed = await schwab_oauth2.refresh_token(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            refresh_token=session.refresh_token,
            base_url=settings.api_base_url,
            client=client,
        )
        session.apply(refreshed)

        await fetch_accounts(client, session.access_token)
    except (UpstreamAPIError, AuthExchangeError) as error:
        LOGGER.error("Token verification failed: %s", error)
        return False

    LOGGER.info("Token verification succeeded.")
    return True


async def run_authorization(
    settings: Settings,
    *,
    session: AuthorizationSession | None = None,
    listener: CallbackListener | None = None,
    driver: ConsentFlowDriver | None = None,
    client: httpx.AsyncClient | None = None,
) -> AuthorizationSession:
    session = session or AuthorizationSession()
    own_client = client is None
    http_client = client or build_api_client(
        base_url=settings.api_base_url,
        timeout=settings.http_timeout,
        debug_enabled=settings.debug,
    )
    listener = listener or create_listener(settings, session, http_client)
    driver = driver or create_driver(settings)

    listener_task: asyncio.Task | None = None
    try:
        # Fail before opening a browser when the callback port is unavailable.
        listener.bind()
        listener_task = asyncio.create_task(listener.wait_for_tokens())
        flow = await driver.run()
        if flow.failed:
            LOGGER.error(
                "Consent flow failed at stage %s: %s",
                flow.stage.value if flow.stage else "start",
                flow.error,
            )
            if session.authorization_code is None:
                listener.close()

        tokens = await listener_task
        if tokens is None:
            LOGGER.warning("No tokens received within the timeout period.")
            return session

        session.apply(tokens)
        LOGGER.info("Authorization process completed successfully.")
        await verify_tokens(session, settings, http_client)
        return session
    finally:
        if listener_task is not None and not listener_task.done():
            listener.close()
            await asyncio.gather(listener_task, return_exceptions=True)
        if own_client:
            await http_client.aclose()


def main() -> int:
    load_env()
    setup_logging()
    try:
        settings = load_settings()
    except ConfigError as error:
        LOGGER.error("Configuration error: %s", error)
        return 2

    try:
        asyncio.run(run_authorization(settings))
    except ListenerBindError as error:
        LOGGER.error("Callback listener error: %s", error)
        return 3
    except AuthExchangeError as error:
        LOGGER.error("Authorization failed: %s", error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
