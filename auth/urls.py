from __future__ import annotations

import urllib.parse

HTTPS_DEFAULT_PORT = 443


def is_https_uri(uri: str) -> bool:
    parsed = urllib.parse.urlparse(uri)
    return parsed.scheme == "https" and bool(parsed.hostname)


def callback_address(redirect_uri: str) -> tuple[str, int, str]:
    """Split a redirect URI into the (host, port, path) the listener binds to."""
    parsed = urllib.parse.urlparse(redirect_uri)
    host = parsed.hostname or "127.0.0.1"
    port = parsed.port or HTTPS_DEFAULT_PORT
    path = parsed.path or "/"
    return host, port, path


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))
