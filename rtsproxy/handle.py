"""Accepting an HTTP request for a stream and starting its relay session."""

from __future__ import annotations

import re
import socket

from rtsproxy import logger
from rtsproxy.buffer_pool import BufferPool
from rtsproxy.config import ServerConfig
from rtsproxy.event_loop import EventLoop
from rtsproxy.rtsp_client import RTSPClient

_PREFIX = "/rtp/"
_REQUEST_SIZE = 4095
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


def parse_http_url(url: str) -> tuple[str, int, str]:
    """Split ``/rtp/host:port/path`` into (host, port, path); raise ValueError otherwise."""
    if not url.startswith(_PREFIX):
        raise ValueError(f"URL does not start with {_PREFIX}: {url!r}")
    rest = url[len(_PREFIX):]
    colon = rest.find(":")
    slash = rest.find("/")
    if colon < 0 or slash < 0:
        raise ValueError(f"URL has no host:port/path: {url!r}")
    host = rest[:colon]
    port_text = rest[colon + 1:slash] if slash > colon else rest[colon + 1:]
    match = _LEADING_INT_RE.match(port_text)
    if match is None:
        raise ValueError(f"URL has no numeric port: {url!r}")
    return host, int(match.group(1)), rest[slash + 1:]


def request_target(request: bytes | str) -> str:
    """Return the target of a GET request line, or an empty string."""
    if isinstance(request, bytes):
        request = request.decode("latin-1")
    request = request.split("\0", 1)[0]
    if not request.startswith("GET "):
        return ""
    end = request.find(" ", 4)
    return request[4:end] if end >= 0 else ""


def handle_http_request(
    client_sock: socket.socket,
    client_addr: tuple[str, int],
    loop: EventLoop,
    pool: BufferPool,
    config: ServerConfig | None = None,
) -> RTSPClient | None:
    """Read one request from ``client_sock`` and start relaying the stream it names.

    Returns the new session, or None after closing the socket when the request
    cannot be served.
    """
    try:
        data = client_sock.recv(_REQUEST_SIZE)
    except BlockingIOError:
        logger.debug("Resource temporarily unavailable: No data to read, retrying later.")
        client_sock.close()
        return None
    except OSError as exc:
        logger.debug(f"Client request receive failed: {exc}")
        client_sock.close()
        return None
    if not data:
        logger.debug("Client disconnected gracefully (EOF).")
        client_sock.close()
        return None

    url = request_target(data)
    try:
        host, port, path = parse_http_url(url)
    except ValueError:
        logger.error(f"Failed to parse http url: {url}")
        client_sock.close()
        return None

    rtsp_url = f"rtsp://{host}:{port}/{path}"
    client_host = f"{client_addr[0]}:{client_addr[1]}"
    logger.info(f"New http client request: {client_host} -> {rtsp_url}")

    try:
        client = RTSPClient(rtsp_url, client_sock, client_addr, loop, pool, config)
    except (OSError, ValueError) as exc:
        logger.error(f"Failed to start session for {client_host}: {exc}")
        if client_sock.fileno() >= 0:
            client_sock.close()
        return None

    def on_closed() -> None:
        logger.info(f"Client disconnect: {client_host}")
        loop.add_task(client.close)

    client.set_on_closed(on_closed)
    return client