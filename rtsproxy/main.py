"""Command-line entry point: serve RTSP streams to HTTP clients."""

from __future__ import annotations

import getopt
import re
import socket
import sys

from rtsproxy import logger
from rtsproxy.buffer_pool import BufferPool
from rtsproxy.config import ServerConfig
from rtsproxy.event_loop import Event, EventLoop
from rtsproxy.handle import handle_http_request

PROGRAM_NAME = "rtsproxy"
LISTEN_BACKLOG = 5

_SHORT_OPTIONS = "p:nr:u:"
_LONG_OPTIONS = [
    "port=",
    "enable-nat",
    "set-rtp-buffer-size=",
    "set-max-udp-packet-size=",
    "set-stun-port=",
    "set-stun-host=",
]
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


def _to_int(text: str) -> int:
    """Read a leading integer the lenient way: no digits gives 0."""
    match = _LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else 0


def parse_args(argv: list[str]) -> ServerConfig:
    """Build the server settings from command-line arguments (without the program name).

    Raises getopt.GetoptError on an unknown option or a missing value.
    """
    options, _ = getopt.gnu_getopt(list(argv), _SHORT_OPTIONS, _LONG_OPTIONS)
    config = ServerConfig()
    for name, value in options:
        if name in ("-p", "--port"):
            config.port = _to_int(value)
        elif name in ("-n", "--enable-nat"):
            config.enable_nat = True
        elif name in ("-r", "--set-rtp-buffer-size"):
            config.rtp_buffer_size = _to_int(value)
        elif name in ("-u", "--set-max-udp-packet-size"):
            config.udp_packet_size = _to_int(value)
        elif name == "--set-stun-port":
            config.stun_port = _to_int(value)
        elif name == "--set-stun-host":
            config.stun_host = value
    return config


def create_listen_socket(port: int) -> socket.socket:
    """Open a non-blocking TCP socket listening on all interfaces at ``port``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", port))
        sock.listen(LISTEN_BACKLOG)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


def _accept_all(
    listener: socket.socket, loop: EventLoop, pool: BufferPool, config: ServerConfig
) -> None:
    while True:
        try:
            client_sock, client_addr = listener.accept()
        except BlockingIOError:
            return
        except OSError as exc:
            logger.error(f"accept failed: {exc}")
            return
        client_sock.setblocking(False)
        handle_http_request(client_sock, client_addr, loop, pool, config)


def main(argv: list[str] | None = None) -> int:
    """Run the proxy until interrupted; return the process exit status."""
    logger.set_log_level(logger.LogLevel.INFO)
    args = sys.argv[1:] if argv is None else argv
    try:
        config = parse_args(args)
    except getopt.GetoptError as exc:
        print(f"{PROGRAM_NAME}: {exc}", file=sys.stderr)
        sys.stdout.write(config_usage())
        return 1

    try:
        listener = create_listen_socket(config.port)
    except OSError as exc:
        logger.error(f"cannot listen on port {config.port}: {exc}")
        return 1

    pool = BufferPool(config.udp_packet_size, config.rtp_buffer_size)
    with EventLoop() as loop:
        loop.set(
            listener,
            Event.IN,
            lambda _events: _accept_all(listener, loop, pool, config),
        )
        logger.info(f"HTTP server listening on port {config.port}")
        try:
            loop.run()
        except KeyboardInterrupt:
            pass
        finally:
            listener.close()
    return 0


def config_usage() -> str:
    """Return the usage text with the built-in defaults."""
    return ServerConfig().usage(PROGRAM_NAME)


if __name__ == "__main__":
    sys.exit(main())