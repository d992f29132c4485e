"""Per-viewer session: pulls an RTSP stream over UDP and relays it to an HTTP client."""

from __future__ import annotations

import errno
import socket
import threading
from collections import deque
from typing import Callable

from rtsproxy import logger, stun
from rtsproxy.buffer_pool import BufferPool, Packet
from rtsproxy.config import ServerConfig
from rtsproxy.event_loop import Event, EventLoop
from rtsproxy.rtsp_protocol import (
    RtspRequest,
    RtspState,
    parse_rtsp_url,
    parse_sdp_tracks,
    parse_server_ports,
    parse_session,
    parse_status_code,
    random_rtp_port,
    rtp_payload_offset,
    transport_header,
)

HTTP_RESPONSE_HEADER = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: video/mp2t\r\n"
    b"Connection: close\r\n"
    b"\r\n"
)

_MAX_DATAGRAM = 1500
_CONTROL_RECV_SIZE = 2048
_CLIENT_WATCH = Event.RDHUP | Event.HUP | Event.ERR


class _IntervalTimer:
    """A pollable descriptor that becomes readable every ``interval`` seconds."""

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self._reader, self._writer = socket.socketpair()
        self._reader.setblocking(False)
        self._writer.setblocking(False)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._writer.send(b"\0")
            except BlockingIOError:
                continue
            except OSError:
                return

    def fileno(self) -> int:
        return self._reader.fileno()

    def drain(self) -> int:
        """Consume pending expirations and return how many there were."""
        count = 0
        while True:
            try:
                data = self._reader.recv(64)
            except (BlockingIOError, OSError):
                return count
            if not data:
                return count
            count += len(data)

    def close(self) -> None:
        self._stop.set()
        self._writer.close()
        self._reader.close()


class RTSPClient:
    """Drives one RTSP session upstream and relays RTP payloads to one HTTP client."""

    KEEPALIVE_INTERVAL = 20.0

    def __init__(
        self,
        rtsp_url: str,
        client_sock: socket.socket,
        client_addr: tuple[str, int],
        loop: EventLoop,
        pool: BufferPool,
        config: ServerConfig | None = None,
        rtp_port: int | None = None,
    ) -> None:
        self.rtsp_url = rtsp_url
        self.client_addr = client_addr
        self.loop = loop
        self.pool = pool
        self.config = config if config is not None else ServerConfig()
        self.server_ip, self.server_port, self.path = parse_rtsp_url(rtsp_url)

        self.state = RtspState.DISCONNECTED
        self.session_id = ""
        self.track = ""
        self.server_rtp_port = 0
        self.server_rtcp_port = 0
        self.nat_wan_ip = ""
        self.nat_wan_port = 0
        self.is_init_ok = False
        self.current_request: RtspRequest | None = None

        self._seq = 1
        self._requests: deque[RtspRequest] = deque()
        self._send_queue: deque[Packet] = deque()
        self._req_buf = b""
        self._tcp_send_offset = 0
        self._resp_buf = bytearray()
        self._on_closed: Callable[[], None] | None = None
        self._closed = False

        self._client_sock: socket.socket | None = client_sock
        self._rtsp_sock: socket.socket | None = None
        self._rtp_sock: socket.socket | None = None
        self._rtcp_sock: socket.socket | None = None
        self._timer: _IntervalTimer | None = None

        try:
            self.loop.set(client_sock, _CLIENT_WATCH, self._on_client_event)
            self._queue_http_response()
            self.rtp_port = rtp_port if rtp_port is not None else random_rtp_port()
            self._open_rtp_sockets()
            if self.config.enable_nat:
                try:
                    stun.send_mapping_request(
                        self._rtp_sock, self.config.stun_host, self.config.stun_port
                    )
                except stun.StunError as exc:
                    logger.error(f"NAT punching request failed: {exc}")
                logger.debug("Nat punching request send success.")
            else:
                self.is_init_ok = True
                self._connect_server()
                self.push_request("OPTIONS")
        except Exception:
            self.close()
            raise

    def set_on_closed(self, callback: Callable[[], None]) -> None:
        """Set the function called when the session has to end."""
        self._on_closed = callback

    def _notify_closed(self) -> None:
        if self._on_closed is not None:
            self._on_closed()

    # --- setup -----------------------------------------------------------

    def _queue_http_response(self) -> None:
        buf = self.pool.acquire()
        size = len(HTTP_RESPONSE_HEADER)
        buf[:size] = HTTP_RESPONSE_HEADER
        self._send_queue.append(Packet(buf, size, 0))

    def _open_rtp_sockets(self) -> None:
        self._rtp_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._rtp_sock.bind(("", self.rtp_port))
        self._rtp_sock.setblocking(False)
        self._rtcp_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._rtcp_sock.bind(("", self.rtp_port + 1))
        self._rtcp_sock.setblocking(False)
        self.loop.set(self._rtp_sock, Event.IN, self._on_rtp_event)
        self.loop.set(self._rtcp_sock, Event.IN, self._on_rtcp_event)

    def _connect_server(self) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        try:
            result = sock.connect_ex((self.server_ip, self.server_port))
        except OSError as exc:
            result = exc.errno if exc.errno is not None else -1
        if result not in (0, errno.EINPROGRESS):
            logger.error("Connect to upstream failed.")
            sock.close()
            return False
        self._rtsp_sock = sock
        self.loop.set(sock, Event.OUT, self._on_rtsp_event)
        self.state = RtspState.CONNECTING
        return True

    # --- RTSP requests ---------------------------------------------------

    def build_uri(self, method: str) -> str:
        """Return the request URI used for ``method``."""
        base = f"rtsp://{self.server_ip}:{self.server_port}{self.path}"
        if method == "SETUP":
            return base + self.track
        return base

    def push_request(self, method: str, extra_headers: str = "", body: str = "") -> None:
        """Queue a request and start sending the next one."""
        request = RtspRequest(method, self.build_uri(method), extra_headers, body, self._seq)
        self._seq += 1
        self._requests.append(request)
        self._send_next_request()

    def _send_next_request(self) -> None:
        if not self._requests:
            return
        self.current_request = self._requests.popleft()
        self._req_buf = self.current_request.encode(self.session_id or None)
        self._tcp_send_offset = 0
        if self._rtsp_sock is not None:
            self.loop.set(self._rtsp_sock, Event.OUT)

    def process_response(self, resp: str) -> None:
        """Advance the OPTIONS, DESCRIBE, SETUP, PLAY sequence on a response."""
        code = parse_status_code(resp)
        session = parse_session(resp)
        if session is not None:
            self.session_id = session

        if code != 200:
            logger.error(f"Error: {code}")
            self.state = RtspState.IDLE
            return

        method = self.current_request.method if self.current_request else ""
        if method == "OPTIONS":
            self.push_request("DESCRIBE", "Accept: application/sdp\r\n")
        elif method == "DESCRIBE":
            for track in parse_sdp_tracks(resp):
                if track.startswith("rtsp://"):
                    self.track = track
                else:
                    self.track = (
                        f"rtsp://{self.server_ip}:{self.server_port}{self.path}/{track}"
                    )
            self.push_request("SETUP", transport_header(self.nat_wan_port or self.rtp_port))
        elif method == "SETUP":
            ports = parse_server_ports(resp)
            if ports is not None:
                self.server_rtp_port, self.server_rtcp_port = ports
            if not self.config.enable_nat:
                self._send_rtp_trigger()
            logger.debug(
                "Setup done, ready to PLAY, server port: "
                f"{self.server_rtp_port}-{self.server_rtcp_port}"
            )
            self.push_request("PLAY", "Range: npt=0.000-\r\n")
        elif method == "PLAY":
            ip, port = self.client_addr
            logger.info(f"Streaming Start:{self.rtsp_url} -> {ip}:{port}")
            self._start_keepalive()

    def _send_rtp_trigger(self) -> None:
        if self._rtp_sock is None:
            return
        try:
            self._rtp_sock.sendto(b"\0", (self.server_ip, self.server_rtp_port))
        except OSError:
            logger.error("send_rtp_trigger failed")

    def _start_keepalive(self) -> None:
        if self._timer is not None:
            return
        try:
            self._timer = _IntervalTimer(self.KEEPALIVE_INTERVAL)
        except OSError:
            logger.error("keepalive timer creation failed")
            return
        self.loop.set(self._timer, Event.IN, self._on_timer_event)

    def _on_timer_event(self, events: Event) -> None:
        if events & Event.IN and self._timer is not None:
            self._timer.drain()
            self.push_request("GET_PARAMETER")

    # --- upstream control connection -------------------------------------

    def _on_rtsp_event(self, events: Event) -> None:
        if events & Event.IN:
            self._on_rtsp_readable()
        if events & Event.OUT and self._rtsp_sock is not None:
            self._on_rtsp_writable()

    def _on_rtsp_writable(self) -> None:
        sock = self._rtsp_sock
        if self.state == RtspState.CONNECTING:
            err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
            if err != 0:
                logger.error("Connect to upstream failed.")
                self._notify_closed()
                return
            logger.info("Connection to upstream established.")
            self.state = RtspState.IDLE
            return

        try:
            sent = sock.send(self._req_buf[self._tcp_send_offset:])
        except BlockingIOError:
            return
        except OSError:
            sent = 0
        if sent <= 0:
            logger.error("RTSP control message send failed.")
            self._notify_closed()
            return
        self._tcp_send_offset += sent
        if self._tcp_send_offset == len(self._req_buf):
            self.loop.set(sock, Event.IN)
            self._tcp_send_offset = 0

    def _on_rtsp_readable(self) -> None:
        while self._rtsp_sock is not None:
            try:
                data = self._rtsp_sock.recv(_CONTROL_RECV_SIZE)
            except BlockingIOError:
                return
            except OSError:
                logger.error("recv failed")
                return
            if not data:
                logger.info("Server closed connection")
                self.loop.remove(self._rtsp_sock)
                self._rtsp_sock.close()
                self._rtsp_sock = None
                self.state = RtspState.DISCONNECTED
                return
            self._resp_buf += data
            if b"\r\n\r\n" in self._resp_buf:
                text = self._resp_buf.decode("latin-1")
                self._resp_buf.clear()
                self.process_response(text)

    # --- media -----------------------------------------------------------

    def _on_rtp_event(self, events: Event) -> None:
        if events & Event.IN:
            self._on_rtp_readable()

    def _on_rtp_readable(self) -> None:
        buf = self.pool.acquire()
        try:
            size = self._rtp_sock.recv_into(buf, min(_MAX_DATAGRAM, len(buf)))
        except OSError:
            self.pool.release(buf)
            return
        if size <= 0:
            self.pool.release(buf)
            return

        offset = rtp_payload_offset(memoryview(buf)[:size])
        if offset is not None:
            self._send_queue.append(Packet(buf, size, offset))
        elif not self.is_init_ok:
            if self.config.enable_nat:
                try:
                    self.nat_wan_ip, self.nat_wan_port = stun.parse_mapping(bytes(buf[:size]))
                except stun.StunError as exc:
                    logger.debug(f"STUN response not usable: {exc}")
                self.loop.set(self._rtp_sock, Event.IN)
            self.pool.release(buf)
            self.is_init_ok = True
            self._connect_server()
            self.push_request("OPTIONS")
        else:
            self.pool.release(buf)

        if self._client_sock is not None:
            self.loop.set(self._client_sock, _CLIENT_WATCH | Event.OUT)

    def _on_rtcp_event(self, events: Event) -> None:
        if events & Event.IN and self._rtcp_sock is not None:
            while True:
                try:
                    self._rtcp_sock.recv(_MAX_DATAGRAM)
                except OSError:
                    return

    # --- downstream HTTP client ------------------------------------------

    def _on_client_event(self, events: Event) -> None:
        if events & _CLIENT_WATCH:
            self._notify_closed()
            return
        if events & Event.IN:
            self._on_client_readable()
        if events & Event.OUT:
            self._on_client_writable()

    def _on_client_readable(self) -> None:
        while self._client_sock is not None:
            try:
                data = self._client_sock.recv(4096)
            except BlockingIOError:
                return
            except OSError:
                self._notify_closed()
                return
            if not data:
                self._notify_closed()
                return

    def _on_client_writable(self) -> None:
        sock = self._client_sock
        if sock is None:
            return
        while self._send_queue:
            packet = self._send_queue[0]
            try:
                sent = sock.send(packet.remaining())
            except BlockingIOError:
                break
            except OSError:
                self._notify_closed()
                return
            packet.advance(sent)
            if not packet.done():
                break
            self.pool.release(packet.data)
            self._send_queue.popleft()
        if not self._send_queue:
            self.loop.set(sock, _CLIENT_WATCH | Event.IN)

    # --- teardown --------------------------------------------------------

    def close(self) -> None:
        """Release every socket, timer and queued buffer; safe to call twice."""
        if self._closed:
            return
        self._closed = True
        for name in ("_client_sock", "_rtsp_sock", "_rtp_sock", "_rtcp_sock"):
            sock = getattr(self, name)
            if sock is None:
                continue
            if sock.fileno() >= 0:
                self.loop.remove(sock)
            sock.close()
            setattr(self, name, None)
        if self._timer is not None:
            self.loop.remove(self._timer)
            self._timer.close()
            self._timer = None
        while self._send_queue:
            self.pool.release(self._send_queue.popleft().data)