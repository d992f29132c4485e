import socket
import struct
import threading

import pytest

from rtsproxy import stun
from rtsproxy.stun import StunError

RFC_TID = bytes.fromhex("b7e7a701bc34d686fa87dfae")


def _response(tid, attributes, cookie=stun.STUN_MAGIC_COOKIE):
    return struct.pack("!HHI", 0x0101, len(attributes), cookie) + tid + attributes


def _mapped_attr(ip, port, family=1):
    return struct.pack("!HHBBH4s", stun.STUN_ATTR_MAPPED_ADDRESS, 8, 0, family, port, socket.inet_aton(ip))


@pytest.fixture
def udp_pair():
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(5)
    client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client.bind(("127.0.0.1", 0))
    yield server, client
    server.close()
    client.close()


def _serve_once(server):
    data, addr = server.recvfrom(1500)
    server.sendto(_response(data[8:20], _mapped_attr(addr[0], addr[1])), addr)


def test_build_binding_request_bytes():
    request = stun.build_binding_request(RFC_TID)
    assert request[:8] == b"\x00\x01\x00\x00\x21\x12\xa4\x42"
    assert request[8:] == RFC_TID
    assert len(request) == stun.HEADER_SIZE


def test_build_binding_request_rejects_bad_tid():
    with pytest.raises(ValueError):
        stun.build_binding_request(b"short")


def test_transaction_ids_are_fresh():
    first = stun.generate_transaction_id()
    assert len(first) == stun.TRANSACTION_ID_SIZE
    assert stun.generate_transaction_id() != first


def test_parse_rfc5769_xor_mapped_address():
    attr = bytes.fromhex("0020000800 01a147e112a643".replace(" ", ""))
    assert stun.parse_mapping(_response(RFC_TID, attr), RFC_TID) == ("192.0.2.1", 32853)


def test_parse_plain_mapped_address():
    response = _response(RFC_TID, _mapped_attr("198.51.100.7", 3478))
    assert stun.parse_mapping(response) == ("198.51.100.7", 3478)


def test_parse_skips_padded_and_ipv6_attributes():
    software = struct.pack("!HH", 0x8022, 3) + b"abc\x00"
    ipv6_like = _mapped_attr("0.0.0.0", 1, family=2)
    wanted = _mapped_attr("203.0.113.9", 4000)
    response = _response(RFC_TID, software + ipv6_like + wanted)
    assert stun.parse_mapping(response, RFC_TID) == ("203.0.113.9", 4000)


def test_parse_short_response():
    with pytest.raises(StunError):
        stun.parse_mapping(b"\x01\x01\x00\x00")


def test_parse_bad_cookie():
    with pytest.raises(StunError):
        stun.parse_mapping(_response(RFC_TID, _mapped_attr("192.0.2.1", 1), cookie=0))


def test_parse_tid_mismatch():
    response = _response(RFC_TID, _mapped_attr("192.0.2.1", 1))
    with pytest.raises(StunError):
        stun.parse_mapping(response, bytes(12))


def test_parse_without_attributes():
    with pytest.raises(StunError):
        stun.parse_mapping(_response(RFC_TID, b""))


def test_parse_truncated_attribute():
    response = _response(RFC_TID, _mapped_attr("192.0.2.1", 1))[:-2]
    with pytest.raises(StunError):
        stun.parse_mapping(response)


def test_resolve_numeric_address():
    assert stun.resolve_server("127.0.0.1", 3478) == ("127.0.0.1", 3478)


def test_send_mapping_request(udp_pair):
    server, client = udp_pair
    host, port = server.getsockname()
    tid = stun.send_mapping_request(client, host, port)
    data, _ = server.recvfrom(1500)
    assert data == stun.build_binding_request(tid)


def test_get_mapping_round_trip(udp_pair):
    server, client = udp_pair
    worker = threading.Thread(target=_serve_once, args=(server,))
    worker.start()
    host, port = server.getsockname()
    result = stun.get_mapping(client, host, port)
    worker.join(5)
    assert result == client.getsockname()


def test_get_wan_port(udp_pair):
    server, client = udp_pair
    worker = threading.Thread(target=_serve_once, args=(server,))
    worker.start()
    host, port = server.getsockname()
    wan_port = stun.get_wan_port(client, host, port)
    worker.join(5)
    assert wan_port == client.getsockname()[1]


def test_get_mapping_times_out(udp_pair):
    server, client = udp_pair
    host, port = server.getsockname()
    with pytest.raises(StunError):
        stun.get_mapping(client, host, port, tries=1, timeout=0.1)


def test_closed_socket_rejected():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.close()
    with pytest.raises(StunError):
        stun.send_mapping_request(sock, "127.0.0.1", 3478)