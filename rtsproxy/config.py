"""Server settings and their usage text."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ServerConfig:
    """Settings for the HTTP-to-RTSP proxy."""

    port: int = 8554
    enable_nat: bool = False
    rtp_buffer_size: int = 4096
    udp_packet_size: int = 1500
    stun_port: int = 19302
    stun_host: str = "stun.l.google.com"

    def usage(self, program_name: str) -> str:
        """Return the command-line help text, showing the current values as defaults."""
        nat = "enabled" if self.enable_nat else "disabled"
        lines = [
            f"Usage: {program_name} [options]",
            "Options:",
            f"  -p, --port <port>            Set server port (default: {self.port})",
            f"  -n, --enable-nat            Enable NAT (default: {nat})",
            f"  -r, --rtp-buffer-size <size> Set RTP buffer size (default: {self.rtp_buffer_size})",
            f"  -u, --udp-packet-size <size> Set UDP packet size (default: {self.udp_packet_size})",
            f"  --set-stun-host, <port> Set STUN server host (default: {self.stun_host})",
            f"  --set-stun-port, <port> Set STUN server port (default: {self.stun_port})",
        ]
        return "\n".join(lines) + "\n"