"""Minimal STUN binding client for discovering a socket's public address."""

from __future__ import annotations

import ipaddress
import os
import select
import socket
import struct

STUN_BINDING_REQUEST = 0x0001
STUN_ATTR_MAPPED_ADDRESS = 0x0001
STUN_ATTR_XOR_MAPPED_ADDRESS = 0x0020
STUN_MAGIC_COOKIE = 0x2112A442
HEADER_SIZE = 20
TRANSACTION_ID_SIZE = 12

_FAMILY_IPV4 = 0x01
_MAX_RESPONSE = 1500
_HEADER = struct.Struct("!HHI")
_ATTR = struct.Struct("!HH")
_ADDRESS = struct.Struct("!xBHI")


class StunError(Exception):
    """Raised when a STUN exchange or response fails."""


def generate_transaction_id() -> bytes:
    """Return a fresh random 12-byte transaction id."""
    return os.urandom(TRANSACTION_ID_SIZE)


def build_binding_request(transaction_id: bytes) -> bytes:
    """Build a 20-byte Binding Request with no attributes."""
    if len(transaction_id) != TRANSACTION_ID_SIZE:
        raise ValueError("transaction id must be 12 bytes")
    return _HEADER.pack(STUN_BINDING_REQUEST, 0, STUN_MAGIC_COOKIE) + bytes(transaction_id)


def parse_mapping(response: bytes, transaction_id: bytes | None = None) -> tuple[str, int]:
    """Extract the IPv4 (address, port) from a STUN response.

    XOR-MAPPED-ADDRESS and MAPPED-ADDRESS are both accepted; the first IPv4
    one found wins. When ``transaction_id`` is given it must match.
    """
    data = bytes(response)
    if len(data) < HEADER_SIZE:
        raise StunError("STUN response too short")
    _, msg_len, cookie = _HEADER.unpack_from(data)
    if cookie != STUN_MAGIC_COOKIE:
        raise StunError("STUN response has a bad magic cookie")
    if transaction_id is not None and data[8:HEADER_SIZE] != bytes(transaction_id):
        raise StunError("STUN response transaction id does not match")

    end = HEADER_SIZE + msg_len
    offset = HEADER_SIZE
    while offset + 4 <= end and offset + 4 <= len(data):
        attr_type, attr_len = _ATTR.unpack_from(data, offset)
        value_start = offset + 4
        if value_start + attr_len > len(data):
            break
        if attr_type in (STUN_ATTR_XOR_MAPPED_ADDRESS, STUN_ATTR_MAPPED_ADDRESS) and attr_len >= 8:
            family, port, address = _ADDRESS.unpack_from(data, value_start)
            if family == _FAMILY_IPV4:
                if attr_type == STUN_ATTR_XOR_MAPPED_ADDRESS:
                    port ^= STUN_MAGIC_COOKIE >> 16
                    address ^= STUN_MAGIC_COOKIE
                return str(ipaddress.IPv4Address(address)), port
        offset += 4 + attr_len + (-attr_len % 4)
    raise StunError("no IPv4 mapped address in STUN response")


def resolve_server(host: str, port: int) -> tuple[str, int]:
    """Resolve a STUN server to an IPv4 (address, port)."""
    try:
        infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
    except socket.gaierror as exc:
        raise StunError(f"cannot resolve STUN server {host}:{port}: {exc}") from exc
    if not infos:
        raise StunError(f"cannot resolve STUN server {host}:{port}")
    address = infos[0][4]
    return address[0], address[1]


def _check_socket(sock: socket.socket) -> None:
    if sock.fileno() < 0:
        raise StunError("socket is closed")


def send_mapping_request(sock: socket.socket, host: str, port: int) -> bytes:
    """Send one Binding Request from ``sock``; return its transaction id."""
    _check_socket(sock)
    server = resolve_server(host, port)
    transaction_id = generate_transaction_id()
    request = build_binding_request(transaction_id)
    try:
        sent = sock.sendto(request, server)
    except OSError as exc:
        raise StunError(f"sending STUN request failed: {exc}") from exc
    if sent != len(request):
        raise StunError("STUN request was sent only in part")
    return transaction_id


def get_mapping(
    sock: socket.socket, host: str, port: int, tries: int = 2, timeout: float = 2.0
) -> tuple[str, int]:
    """Ask the STUN server for the public (address, port) of ``sock``."""
    _check_socket(sock)
    server = resolve_server(host, port)
    transaction_id = generate_transaction_id()
    request = build_binding_request(transaction_id)

    for _ in range(tries):
        try:
            if sock.sendto(request, server) != len(request):
                continue
        except OSError:
            continue
        readable, _, _ = select.select([sock], [], [], timeout)
        if not readable:
            continue
        try:
            response, _ = sock.recvfrom(_MAX_RESPONSE)
        except OSError:
            continue
        if len(response) < HEADER_SIZE:
            continue
        try:
            return parse_mapping(response, transaction_id)
        except StunError:
            continue
    raise StunError("no usable STUN response")


def get_wan_port(sock: socket.socket, host: str, port: int) -> int:
    """Return the public port that the STUN server sees for ``sock``."""
    return get_mapping(sock, host, port)[1]