import socket

import httpx

API_BASE_URL = "https://api.schwabapi.com"
TOKEN_URL = f"{API_BASE_URL}/v1/oauth/token"
ACCOUNTS_URL = f"{API_BASE_URL}/trader/v1/accounts?fields=positions"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


async def send_redirect(app, params: dict[str, str] | None = None) -> httpx.Response:
    """Deliver a browser redirect to the listener app in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="https://127.0.0.1") as client:
        return await client.get("/", params=params or {})


def form_of(request: httpx.Request) -> dict[str, str]:
    return dict(httpx.QueryParams(request.content.decode("utf-8")))
