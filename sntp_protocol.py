"""
SNTP request validation and response construction.
Pure functions only: no sockets, no shared state. The server loop in
sntp_server.py calls validate_and_build() once per datagram.
"""

import struct
import time
from dataclasses import dataclass

# NTP epoch starts Jan 1, 1900, Unix epoch starts Jan 1, 1970
# Difference is 70 years = 2208988800 seconds
NTP_EPOCH_OFFSET = 2208988800

PACKET_SIZE = 48
PACKET_FORMAT = '!B B B b I I 4s 8s 8s 8s 8s'

# Byte 0 layout: LI (2 bits) | VN (3 bits) | Mode (3 bits)
LI_MASK = 0b11
VN_MASK = 0b111
MODE_MASK = 0b111

LI_NO_WARNING = 0
LI_ALARM_CONDITION = 3
VN_FIRST = 1
VN_LAST = 4
MODE_CLIENT = 3
MODE_SERVER = 4

STRATUM_PRIMARY = 1
POLL_INTERVAL = 4          # 2**4 seconds
PRECISION = -127
REFERENCE_ID = b'LOCL'     # uncalibrated local clock

# Transmit timestamp of the request, echoed back as our originate timestamp
TRANSMIT_SLICE = slice(40, 48)


class SNTPError(Exception):
    """Request rejected by the protocol layer."""


class MalformedRequest(SNTPError):
    """Request too short to hold an SNTP header."""


class InvalidFormat(SNTPError):
    """Header field outside the range accepted from a client."""


@dataclass(frozen=True)
class NtpTimestamp:
    """64-bit NTP timestamp: 32-bit seconds since 1900 and a 32-bit fraction."""
    seconds: int
    fraction: int

    @classmethod
    def from_unix_ns(cls, unix_ns: int) -> 'NtpTimestamp':
        """
        Convert nanoseconds since the Unix epoch.

        Seconds wrap modulo 2**32 at the NTP era boundary (Feb 2036), which
        is what every 32-bit NTP field does on the wire.
        """
        secs, nanos = divmod(unix_ns, 1_000_000_000)
        seconds = (secs + NTP_EPOCH_OFFSET) & 0xFFFFFFFF
        fraction = (nanos << 32) // 1_000_000_000
        return cls(seconds, fraction)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'NtpTimestamp':
        seconds, fraction = struct.unpack('!II', data)
        return cls(seconds, fraction)

    def to_bytes(self) -> bytes:
        return struct.pack('!II', self.seconds, self.fraction)

    def to_unix(self) -> float:
        return (self.seconds - NTP_EPOCH_OFFSET) + self.fraction / 2**32


@dataclass(frozen=True)
class SntpPacket:
    """Decoded view of a 48-byte SNTP packet. Timestamps stay as raw bytes."""
    leap_indicator: int
    version: int
    mode: int
    stratum: int
    poll: int
    precision: int
    root_delay: int
    root_dispersion: int
    reference_id: bytes
    reference_timestamp: bytes
    originate_timestamp: bytes
    receive_timestamp: bytes
    transmit_timestamp: bytes

    def pack(self) -> bytes:
        li_vn_mode = (self.leap_indicator << 6) | (self.version << 3) | self.mode
        return struct.pack(PACKET_FORMAT,
            li_vn_mode,
            self.stratum,
            self.poll,
            self.precision,
            self.root_delay,
            self.root_dispersion,
            self.reference_id,
            self.reference_timestamp,
            self.originate_timestamp,
            self.receive_timestamp,
            self.transmit_timestamp,
        )

    @classmethod
    def unpack(cls, data: bytes) -> 'SntpPacket':
        if len(data) < PACKET_SIZE:
            raise MalformedRequest(f"packet is {len(data)} bytes, need {PACKET_SIZE}")
        fields = struct.unpack(PACKET_FORMAT, data[:PACKET_SIZE])
        leap_indicator, version, mode = split_header(fields[0])
        return cls(leap_indicator, version, mode, *fields[1:])


def split_header(li_vn_mode: int):
    """Return (leap_indicator, version, mode) from the first header byte."""
    return (
        (li_vn_mode >> 6) & LI_MASK,
        (li_vn_mode >> 3) & VN_MASK,
        li_vn_mode & MODE_MASK,
    )


def check_request(request: bytes) -> None:
    """
    Raise unless `request` is an acceptable client request.

    Leap Indicator - must be 0 (no warning) or 3 (alarm, clock not synchronized)
    Version Number - must be between 1 (oldest) and 4 (newest)
    Mode           - must be 3 (client)
    """
    if len(request) < PACKET_SIZE:
        raise MalformedRequest(f"request is {len(request)} bytes, need {PACKET_SIZE}")

    leap_indicator, version, mode = split_header(request[0])

    if leap_indicator not in (LI_NO_WARNING, LI_ALARM_CONDITION):
        raise InvalidFormat(f"leap indicator {leap_indicator} not accepted")
    if not VN_FIRST <= version <= VN_LAST:
        raise InvalidFormat(f"version {version} outside {VN_FIRST}..{VN_LAST}")
    if mode != MODE_CLIENT:
        raise InvalidFormat(f"mode {mode} is not client mode")


def validate(request: bytes) -> bool:
    try:
        check_request(request)
    except SNTPError:
        return False
    return True


def now_as_ntp(clock=time.time_ns) -> NtpTimestamp:
    """Current time from `clock` (nanoseconds since the Unix epoch) as an NTP timestamp."""
    return NtpTimestamp.from_unix_ns(clock())


def build_response(request: bytes, now: NtpTimestamp) -> bytes:
    """Build the 48-byte server reply for a request that passed check_request()."""
    # Version is copied from the request so the client gets the dialect it asked for
    _, version, _ = split_header(request[0])
    stamp = now.to_bytes()

    response = SntpPacket(
        leap_indicator=LI_NO_WARNING,
        version=version,
        mode=MODE_SERVER,
        stratum=STRATUM_PRIMARY,
        poll=POLL_INTERVAL,
        precision=PRECISION,
        root_delay=0,           # not available
        root_dispersion=0,      # not available
        reference_id=REFERENCE_ID,
        reference_timestamp=stamp,
        originate_timestamp=bytes(request[TRANSMIT_SLICE]),
        receive_timestamp=stamp,
        transmit_timestamp=stamp,
    )
    return response.pack()


def validate_and_build(request: bytes, clock=time.time_ns) -> bytes:
    """Validate a client request and return the reply bytes, or raise SNTPError."""
    check_request(request)
    return build_response(request, now_as_ntp(clock))
