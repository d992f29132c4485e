import getopt
import socket

import pytest

from rtsproxy.config import ServerConfig
from rtsproxy.main import create_listen_socket, main, parse_args


def test_parse_args_defaults():
    config = parse_args([])
    assert config == ServerConfig()
    assert config.port == 8554
    assert config.stun_host == "stun.l.google.com"


def test_parse_args_short_options():
    config = parse_args(["-p", "9000", "-n", "-r", "128", "-u", "1400"])
    assert config.port == 9000
    assert config.enable_nat is True
    assert config.rtp_buffer_size == 128
    assert config.udp_packet_size == 1400


def test_parse_args_long_options():
    config = parse_args(
        [
            "--port=7000",
            "--enable-nat",
            "--set-rtp-buffer-size",
            "64",
            "--set-max-udp-packet-size=1200",
            "--set-stun-port",
            "3478",
            "--set-stun-host=stun.example.com",
        ]
    )
    assert config.port == 7000
    assert config.enable_nat is True
    assert config.rtp_buffer_size == 64
    assert config.udp_packet_size == 1200
    assert config.stun_port == 3478
    assert config.stun_host == "stun.example.com"


def test_parse_args_lenient_numbers():
    assert parse_args(["-p", "12abc"]).port == 12
    assert parse_args(["-p", "abc"]).port == 0


def test_parse_args_unknown_option():
    with pytest.raises(getopt.GetoptError):
        parse_args(["-x"])


def test_parse_args_missing_value():
    with pytest.raises(getopt.GetoptError):
        parse_args(["-p"])


def test_create_listen_socket_accepts_connections():
    listener = create_listen_socket(0)
    try:
        port = listener.getsockname()[1]
        assert port > 0
        assert listener.gettimeout() == 0.0
        with socket.create_connection(("127.0.0.1", port), timeout=2):
            listener.settimeout(2)
            conn, _ = listener.accept()
            conn.close()
    finally:
        listener.close()


def test_create_listen_socket_port_in_use():
    first = create_listen_socket(0)
    try:
        port = first.getsockname()[1]
        with pytest.raises(OSError):
            create_listen_socket(port)
    finally:
        first.close()


def test_main_bad_option_prints_usage(capsys):
    assert main(["--no-such-option"]) == 1
    out = capsys.readouterr().out
    assert out.startswith("Usage: rtsproxy [options]")
    assert "default: 8554" in out


def test_main_fails_when_port_taken():
    taken = create_listen_socket(0)
    try:
        port = taken.getsockname()[1]
        assert main(["-p", str(port)]) == 1
    finally:
        taken.close()