# test_sntp_protocol.py
import struct

import pytest

from sntp_protocol import (
    InvalidFormat,
    MalformedRequest,
    NtpTimestamp,
    SntpPacket,
    build_response,
    check_request,
    now_as_ntp,
    validate,
    validate_and_build,
)

FIXED_NS = 1_700_000_000_123_456_789
CLIENT_TRANSMIT = bytes.fromhex('e8f1c2a3 0badf00d'.replace(' ', ''))


def fixed_clock():
    return FIXED_NS


def make_request(li=0, vn=3, mode=3, size=48):
    req = bytearray(size)
    if size:
        req[0] = (li << 6) | (vn << 3) | mode
    if size >= 48:
        req[40:48] = CLIENT_TRANSMIT
    return bytes(req)


def test_ntp_timestamp_from_unix_ns():
    ts = NtpTimestamp.from_unix_ns(FIXED_NS)
    assert ts.seconds == 1_700_000_000 + 2_208_988_800
    assert ts.fraction == (123_456_789 * 2**32) // 10**9
    assert ts.to_bytes() == struct.pack('!II', ts.seconds, ts.fraction)


def test_ntp_timestamp_unix_epoch_and_half_second():
    assert NtpTimestamp.from_unix_ns(0) == NtpTimestamp(2_208_988_800, 0)
    assert NtpTimestamp.from_unix_ns(500_000_000).fraction == 2**31


def test_ntp_timestamp_wraps_at_era_boundary():
    # 2036-02-07 06:28:16 UTC is the first second of NTP era 1
    era_end_unix = 2**32 - 2_208_988_800
    ts = NtpTimestamp.from_unix_ns((era_end_unix + 5) * 10**9)
    assert ts.seconds == 5


def test_ntp_timestamp_to_unix():
    ts = NtpTimestamp.from_bytes(NtpTimestamp.from_unix_ns(FIXED_NS).to_bytes())
    assert abs(ts.to_unix() - FIXED_NS / 1e9) < 1e-6


def test_now_as_ntp_uses_injected_clock():
    assert now_as_ntp(fixed_clock) == NtpTimestamp.from_unix_ns(FIXED_NS)


@pytest.mark.parametrize("li", [0, 3])
@pytest.mark.parametrize("vn", [1, 2, 3, 4])
def test_accepted_requests_get_48_byte_reply(li, vn):
    req = make_request(li=li, vn=vn)
    assert validate(req)
    assert len(validate_and_build(req, fixed_clock)) == 48


@pytest.mark.parametrize("mode", [0, 1, 2, 4, 5, 6, 7])
def test_non_client_mode_rejected(mode):
    req = make_request(mode=mode)
    assert not validate(req)
    with pytest.raises(InvalidFormat):
        validate_and_build(req, fixed_clock)


@pytest.mark.parametrize("li", [1, 2])
def test_leap_indicator_warning_values_rejected(li):
    with pytest.raises(InvalidFormat):
        check_request(make_request(li=li))


@pytest.mark.parametrize("vn", [0, 5, 6, 7])
def test_version_out_of_range_rejected(vn):
    with pytest.raises(InvalidFormat):
        check_request(make_request(vn=vn))


@pytest.mark.parametrize("size", [0, 1, 40, 47])
def test_short_request_is_malformed(size):
    req = make_request(size=size)
    assert not validate(req)
    with pytest.raises(MalformedRequest):
        validate_and_build(req, fixed_clock)


def test_short_request_does_not_read_clock():
    def exploding_clock():
        raise AssertionError("clock read for a rejected request")

    with pytest.raises(MalformedRequest):
        validate_and_build(b'\x1b' * 10, exploding_clock)


def test_longer_request_is_accepted_and_trailing_bytes_ignored():
    req = make_request() + b'\xff' * 20
    reply = validate_and_build(req, fixed_clock)
    assert len(reply) == 48
    assert reply[24:32] == CLIENT_TRANSMIT


def test_scenario_version_3_client():
    reply = validate_and_build(make_request(li=0, vn=3, mode=3), fixed_clock)
    assert make_request()[0] == 0x1B
    assert reply[0] == 0x1C


def test_alarm_leap_indicator_cleared_in_reply():
    reply = validate_and_build(make_request(li=3, vn=4), fixed_clock)
    assert reply[0] == (4 << 3) | 4


def test_version_zero_rejected():
    req = bytearray(48)
    req[0] = 0b00_000_011
    with pytest.raises(InvalidFormat):
        validate_and_build(bytes(req), fixed_clock)


def test_all_zero_request_rejected():
    with pytest.raises(InvalidFormat):
        validate_and_build(bytes(48), fixed_clock)


def test_reply_fields():
    now = NtpTimestamp.from_unix_ns(FIXED_NS)
    reply = build_response(make_request(vn=4), now)
    packet = SntpPacket.unpack(reply)

    assert packet.leap_indicator == 0
    assert packet.version == 4
    assert packet.mode == 4
    assert packet.stratum == 1
    assert packet.poll == 4
    assert packet.precision == -127
    assert reply[3] == 0x81
    assert packet.root_delay == 0
    assert packet.root_dispersion == 0
    assert packet.reference_id == b'LOCL'
    assert packet.reference_timestamp == now.to_bytes()
    assert packet.originate_timestamp == CLIENT_TRANSMIT
    assert packet.receive_timestamp == now.to_bytes()
    assert packet.transmit_timestamp == now.to_bytes()


def test_reference_id_is_locl_regardless_of_request():
    req = bytearray(b'\xaa' * 48)
    req[0] = 0x23
    reply = validate_and_build(bytes(req), fixed_clock)
    assert reply[12:16] == b'LOCL'


def test_echo_and_transmit_equals_receive():
    req = bytearray(range(48))
    req[0] = 0x1B
    reply = validate_and_build(bytes(req), fixed_clock)
    assert reply[24:32] == bytes(req[40:48])
    assert reply[40:48] == reply[32:40]


def test_deterministic_for_fixed_clock():
    req = make_request(vn=2)
    assert validate_and_build(req, fixed_clock) == validate_and_build(req, fixed_clock)


def test_packet_unpack_rejects_short_data():
    with pytest.raises(MalformedRequest):
        SntpPacket.unpack(b'\x00' * 12)
