"""HTTP proxy that pulls RTSP/RTP streams and relays them to HTTP clients."""

__version__ = "0.1.0"