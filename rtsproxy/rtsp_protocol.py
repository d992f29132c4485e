"""RTSP request building, response parsing and RTP header inspection."""

from __future__ import annotations

import random
import re
import struct
from dataclasses import dataclass
from enum import Enum, auto

from rtsproxy import logger

DEFAULT_RTSP_PORT = 554
RTP_HEADER_SIZE = 12
RTP_PORT_BASE = 10000
RTP_PORT_PAIRS = 25000

_STATUS_RE = re.compile(r"RTSP/\S+\s+([+-]?\d+)")
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


class RtspState(Enum):
    """Progress of an RTSP session with the upstream server."""

    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    IDLE = auto()
    WAIT_RESPONSE = auto()
    STREAMING = auto()


@dataclass
class RtspRequest:
    """One RTSP request; ``headers`` holds extra CRLF-terminated header lines."""

    method: str
    uri: str
    headers: str = ""
    body: str = ""
    cseq: int = 0

    def encode(self, session_id: str | None = None) -> bytes:
        """Serialise the request, adding a Session header when one is known."""
        text = f"{self.method} {self.uri} RTSP/1.0\r\nCSeq: {self.cseq}\r\n"
        if session_id:
            text += f"Session: {session_id}\r\n"
        text += self.headers
        head = text.encode()
        if self.body:
            body = self.body.encode()
            return head + f"Content-Length: {len(body)}\r\n\r\n".encode() + body
        return head + b"\r\n"


def _leading_int(text: str) -> int:
    match = _LEADING_INT_RE.match(text)
    if match is None:
        raise ValueError(f"no integer at start of {text!r}")
    return int(match.group(1))


def parse_rtsp_url(url: str) -> tuple[str, int, str]:
    """Split an ``rtsp://host[:port][/path]`` URL into (host, port, path)."""
    prefix = "rtsp://"
    if not url.startswith(prefix):
        raise ValueError(f"not an rtsp URL: {url!r}")
    slash = url.find("/", len(prefix))
    hostport = url[len(prefix):] if slash < 0 else url[len(prefix):slash]
    host, sep, port_text = hostport.partition(":")
    port = _leading_int(port_text) if sep else DEFAULT_RTSP_PORT
    path = url[slash:] if slash >= 0 else "/"
    return host, port, path


def parse_status_code(resp: str) -> int:
    """Return the status code of an RTSP response, or -1 if there is none."""
    match = _STATUS_RE.match(resp)
    return int(match.group(1)) if match else -1


def parse_session(resp: str) -> str | None:
    """Return the session id from a Session header, without its parameters."""
    pos = resp.find("Session:")
    if pos < 0:
        return None
    rest = resp[pos + len("Session:"):].lstrip(" \t")
    return re.split(r"[;\r\n]", rest, maxsplit=1)[0]


def parse_sdp_tracks(sdp: str) -> list[str]:
    """Return the ``trackID...`` control values found in an SDP body."""
    marker = "a=control:"
    tracks = []
    for line in sdp.split("\n"):
        line = line.rstrip("\r")
        if line.startswith(marker + "trackID"):
            tracks.append(line[len(marker):])
    return tracks


def parse_server_ports(resp: str) -> tuple[int, int] | None:
    """Return the (RTP, RTCP) server ports of a Transport header.

    Returns None when the header or its server_port range is missing, and
    (0, 0) when the range is present but not numeric.
    """
    pos = resp.find("Transport:")
    if pos < 0:
        return None
    end = resp.find("\r\n", pos)
    transport = resp[pos:] if end < 0 else resp[pos:end]
    key = "server_port="
    start = transport.find(key)
    if start < 0:
        return None
    start += len(key)
    dash = transport.find("-", start)
    if dash < 0:
        return None
    try:
        return _leading_int(transport[start:dash]), _leading_int(transport[dash + 1:])
    except ValueError:
        return 0, 0


def transport_header(rtp_port: int) -> str:
    """Build the SETUP Transport header asking for UDP on ``rtp_port`` and the next port."""
    return f"Transport: RTP/AVP;unicast;client_port={rtp_port}-{rtp_port + 1}\r\n"


def rtp_payload_offset(packet: bytes) -> int | None:
    """Return where the payload of an RTP packet starts, or None if it is not valid RTP."""
    length = len(packet)
    if length < RTP_HEADER_SIZE or (packet[0] & 0xC0) != 0x80:
        return None
    flags = packet[0]
    start = RTP_HEADER_SIZE + (flags & 0x0F) * 4
    if flags & 0x10:
        if start + 4 > length:
            logger.error("Malformed RTP packet: extension header truncated")
            return None
        (ext_len,) = struct.unpack_from("!H", packet, start + 2)
        start += 4 + 4 * ext_len
    payload_len = length - start
    if flags & 0x20:
        payload_len -= packet[length - 1]
    if payload_len <= 0 or start + payload_len > length:
        logger.error("Malformed RTP packet: invalid payload length")
        return None
    return length - payload_len


def random_rtp_port() -> int:
    """Pick an even local port for RTP; the next port is used for RTCP."""
    return RTP_PORT_BASE + random.randrange(RTP_PORT_PAIRS) * 2