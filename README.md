# rtsproxy

A small single-threaded proxy that turns unicast RTSP/RTP streams (such as
IPTV channels) into plain HTTP streams that a media player can open.

A client requests

    http://<proxy-host>:<port>/rtp/<rtsp-host>:<rtsp-port>/<path>

and the proxy opens `rtsp://<rtsp-host>:<rtsp-port>/<path>`. It then runs
OPTIONS → DESCRIBE → SETUP → PLAY over the RTSP control connection and
receives RTP over UDP on a random even local port (RTCP on the next one).
The client first gets the reply `HTTP/1.1 200 OK` with
`Content-Type: video/mp2t`. After that, each RTP packet is written to the
client starting after its RTP header (CSRC list and extension included),
which is normally MPEG-TS. While the stream is playing, a GET_PARAMETER
request goes to the RTSP server every 20 seconds as a keep-alive.

## Installation

    pip install .

Tests:

    pip install .[test]
    pytest

## Running

    rtsproxy [options]

| Option | Meaning | Default |
| --- | --- | --- |
| `-p`, `--port <port>` | HTTP listening port | 8554 |
| `-n`, `--enable-nat` | Learn the public RTP address through STUN before SETUP | disabled |
| `-r`, `--set-rtp-buffer-size <n>` | Number of packet buffers allocated up front | 4096 |
| `-u`, `--set-max-udp-packet-size <n>` | Size of each packet buffer | 1500 |
| `--set-stun-host <host>` | STUN server host | stun.l.google.com |
| `--set-stun-port <port>` | STUN server port | 19302 |

If an option is unknown or is missing its value, the command prints the usage
text and exits with status 1. It also exits with status 1 when it cannot
listen on the port. Ctrl-C stops the server. Log lines go to standard output
as `[YYYY-mm-dd HH:MM:SS] [LEVEL] message`.

Example:

    rtsproxy --port 8080

Then open `http://localhost:8080/rtp/192.0.2.10:554/channel1` in a player.

## Behind NAT

With `--enable-nat`, the proxy sends a STUN Binding Request from its RTP
socket and waits. It opens the RTSP connection only after the first datagram
arrives on that socket that is not an RTP packet. If that datagram holds a
mapped IPv4 address, the mapped public port goes into the SETUP `Transport`
header. In this mode the proxy does not send the one-byte "trigger" datagram
to the server's RTP port after SETUP.

## Library use

The modules can also be used on their own:

- `rtsproxy.rtsp_protocol`: `parse_rtsp_url`, `parse_status_code`,
  `parse_session`, `parse_sdp_tracks`, `parse_server_ports`,
  `transport_header`, `rtp_payload_offset`, `random_rtp_port`, and
  `RtspRequest.encode`.
- `rtsproxy.stun`: `build_binding_request`, `parse_mapping`,
  `send_mapping_request`, `get_mapping` and `get_wan_port`. Failures raise
  `StunError`.
- `rtsproxy.event_loop`: `EventLoop`, a `poll()`-based loop with a queue of
  deferred tasks, and the `Event` flags.
- `rtsproxy.buffer_pool`: `BufferPool` and `Packet`.
- `rtsproxy.handle`: `parse_http_url`, `request_target` and
  `handle_http_request`.
- `rtsproxy.rtsp_client`: `RTSPClient`, one relay session.
- `rtsproxy.config`: `ServerConfig`, the settings dataclass.
- `rtsproxy.logger`: level-filtered console logging.

## Limitations

- The only requests served are `GET /rtp/host:port/path`. For any other
  request the connection is closed with no reply.
- RTP is received over UDP only. Interleaved RTP over the RTSP TCP connection
  is not supported.
- Only one SETUP is sent, for the last `trackID` control line in the SDP.
- IPv4 only. RTCP packets are read and discarded. No TEARDOWN is sent when a
  client goes away.
- If the server answers with a status other than 200, the session stays idle
  until the client disconnects.
- Runs on POSIX systems (it uses `select.poll`).