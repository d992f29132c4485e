[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rtsproxy"
version = "0.1.0"
description = "HTTP proxy that pulls unicast RTSP/RTP streams and relays them to HTTP clients, with optional STUN NAT traversal"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtsp", "rtp", "proxy", "iptv", "stun", "streaming", "mpeg-ts"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
    "Topic :: Internet :: Proxy Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rtsproxy = "rtsproxy.main:main"

[tool.hatch.build.targets.wheel]
packages = ["rtsproxy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
