#!/usr/bin/env python3
"""
Simple SNTP client to check a running server
Decodes the reply fields; no offset or delay estimation
"""

import argparse
import logging
import socket
import sys
import time

from sntp_protocol import (
    LI_NO_WARNING,
    MODE_CLIENT,
    NtpTimestamp,
    SNTPError,
    SntpPacket,
)

logger = logging.getLogger(__name__)


def build_request(version=4, clock=time.time_ns):
    """48-byte client request with the transmit timestamp set from `clock`."""
    li_vn_mode = (LI_NO_WARNING << 6) | (version << 3) | MODE_CLIENT
    transmit = NtpTimestamp.from_unix_ns(clock()).to_bytes()
    return bytes([li_vn_mode]) + b'\x00' * 39 + transmit


def query(server='127.0.0.1', port=123, timeout=5.0, version=4):
    """Send one request and return the decoded SntpPacket reply."""
    request = build_request(version)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.settimeout(timeout)
        logger.debug("Sending SNTP request to %s:%s", server, port)
        sock.sendto(request, (server, port))
        response, _addr = sock.recvfrom(1024)
    return SntpPacket.unpack(response)


def main(argv=None):
    p = argparse.ArgumentParser(description="Query an SNTP server once")
    p.add_argument('server', nargs='?', default='127.0.0.1')
    p.add_argument('--port', type=int, default=123)
    p.add_argument('--timeout', type=float, default=5.0)
    args = p.parse_args(argv)

    try:
        reply = query(args.server, args.port, args.timeout)
    except socket.timeout:
        print("Request timed out")
        return 1
    except SNTPError as e:
        print(f"Invalid response received: {e}")
        return 1
    except OSError as e:
        print(f"Error: {e}")
        return 1

    server_time = NtpTimestamp.from_bytes(reply.transmit_timestamp).to_unix()
    local_time = time.time()
    print(f"Response from {args.server}:{args.port}")
    print(f"Stratum {reply.stratum}, version {reply.version}, "
          f"reference {reply.reference_id.decode('ascii', errors='replace')}")
    print(f"Server time: {time.ctime(server_time)}")
    print(f"Local time:  {time.ctime(local_time)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
