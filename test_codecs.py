import zlib

import pytest

from ethernet_sim.core.addressing import DeviceID, Ipv4Address, Ipv4Prefix, MacAddress
from ethernet_sim.core.bits import divide, limit, pad_to_32bit_words, spread
from ethernet_sim.core.enums import EtherType, IpProtocol
from ethernet_sim.core.frame import Frame, calculate_fcs
from ethernet_sim.protocols.arp import ArpOp, ArpPacket
from ethernet_sim.protocols.dhcp import (
    DhcpMessageType,
    DhcpOp,
    DhcpOption,
    DhcpPayload,
    mask_to_prefix,
)
from ethernet_sim.protocols.icmp import IcmpDatagram, IcmpType, IcmpUnreachableCode
from ethernet_sim.protocols.ipv4 import Ipv4Packet, calculate_checksum
from ethernet_sim.protocols.udp import UdpDatagram

MAC_A = MacAddress.parse("02:00:00:00:00:0a")
MAC_B = MacAddress.parse("02:00:00:00:00:0b")


def addr(text):
    return Ipv4Address.parse(text)


def test_spread_divide_round_trip():
    fields = [(5, 3), (1, 1), (300, 12), (0xABCDEF, 24), (0, 8)]
    packed = spread(*fields)
    assert len(packed) == 6
    assert divide(packed, [w for _, w in fields]) == [v for v, _ in fields]


def test_spread_pads_last_byte_on_the_right():
    assert spread((1, 1)) == b"\x80"
    assert spread((0xF, 4), (0x3, 2)) == b"\xfc"


def test_divide_splits_leftover_bits():
    assert divide(b"\xab\xcd", [4]) == [0xA, 0xBC, 0xD]


def test_spread_rejects_values_that_do_not_fit():
    with pytest.raises(ValueError):
        spread((16, 4))
    with pytest.raises(ValueError):
        spread((1, 0))


def test_divide_rejects_widths_beyond_data():
    with pytest.raises(ValueError):
        divide(b"\x00", [4, 8])


def test_limit_and_padding():
    assert limit(0x1FF, 8) == 0xFF
    assert pad_to_32bit_words(b"\x01\x02") == b"\x00\x00\x01\x02"
    assert pad_to_32bit_words(b"", 4, 4) == bytes(4)
    with pytest.raises(ValueError):
        pad_to_32bit_words(b"\x01", 0, 0)


def test_address_parsing_and_formatting():
    assert str(addr("192.168.0.10")) == "192.168.0.10"
    assert str(MAC_A) == "02:00:00:00:00:0a"
    assert MAC_A < MAC_B
    assert MacAddress.broadcast.is_broadcast()
    assert MacAddress.loopback.is_loopback()
    with pytest.raises(ValueError):
        Ipv4Address.parse("10.0.0.256")
    with pytest.raises(ValueError):
        MacAddress.parse("02:00:00")


def test_prefix_mask_and_subnet_math():
    assert Ipv4Prefix(24).mask == addr("255.255.255.0")
    assert Ipv4Prefix(0).mask == addr("0.0.0.0")
    assert Ipv4Prefix(40).mask == Ipv4Address.broadcast
    assert Ipv4Prefix(64).length == 0
    host = addr("10.1.2.3")
    assert host & Ipv4Prefix(16) == addr("10.1.0.0")
    assert host.broadcast_address(Ipv4Prefix(24)) == addr("10.1.2.255")
    assert host.in_subnet(addr("10.1.0.0"), Ipv4Prefix(16))
    assert not host.in_subnet(addr("10.2.0.0"), Ipv4Prefix(16))


def test_increment_saturates_at_broadcast():
    assert Ipv4Address.broadcast.inc() == Ipv4Address.broadcast
    assert addr("10.0.0.255").inc() == addr("10.0.1.0")


def test_device_id_is_clamped():
    assert DeviceID(0).value == DeviceID.MIN
    assert DeviceID(10**6).value == DeviceID.MAX
    assert DeviceID(5) < DeviceID(7)


def test_fcs_matches_standard_crc32():
    assert calculate_fcs(b"123456789") == 0xCBF43926
    payload = bytes(range(60))
    assert calculate_fcs(payload) == zlib.crc32(payload)


def test_frame_layout_and_parse():
    frame = Frame(MAC_B, MAC_A, EtherType.ARP, b"\x01\x02\x03")
    data = frame.to_bytes()
    assert len(data) == len(frame) == 14 + 3 + 4
    assert data[:6] == bytes(MAC_B)
    assert data[12:14] == b"\x08\x06"
    assert int.from_bytes(data[-4:], "big") == zlib.crc32(data[:-4])
    parsed = Frame.parse(data)
    assert parsed == frame
    assert parsed.ethertype is EtherType.ARP


def test_frame_parse_keeps_unknown_ethertype():
    frame = Frame(MAC_B, MAC_A, 0x1234, b"")
    assert Frame.parse(frame.to_bytes()).ethertype == 0x1234


def make_packet(**overrides):
    fields = dict(
        dscp=0,
        ecn=0,
        ttl=64,
        protocol=IpProtocol.UDP,
        src=addr("10.0.0.1"),
        dest=addr("10.0.0.2"),
        data=b"hello",
    )
    fields.update(overrides)
    return Ipv4Packet(**fields)


def test_ipv4_header_checksum_detects_single_bit_flips():
    header = bytearray(make_packet().header)
    assert calculate_checksum(bytes(header)) == 0
    for bit in range(len(header) * 8):
        if 80 <= bit < 96:
            continue
        flipped = bytearray(header)
        flipped[bit // 8] ^= 0x80 >> (bit % 8)
        assert calculate_checksum(bytes(flipped)) != 0, bit


def test_ipv4_parse_round_trip():
    packet = make_packet(dscp=10, ecn=1)
    data = packet.to_bytes()
    assert len(data) == packet.total_length == 25
    parsed = Ipv4Packet.parse(data)
    assert parsed == packet
    assert parsed.verify_checksum()


def test_ipv4_parse_keeps_wire_checksum():
    data = bytearray(make_packet().to_bytes())
    data[10] ^= 0xFF
    parsed = Ipv4Packet.parse(bytes(data))
    assert not parsed.verify_checksum()


def test_ipv4_parse_rejects_malformed_headers():
    with pytest.raises(ValueError):
        Ipv4Packet.parse(b"\x45" + bytes(10))
    data = bytearray(make_packet().to_bytes())
    data[0] = 0x65
    with pytest.raises(ValueError):
        Ipv4Packet.parse(bytes(data))


def test_copy_and_decrement_leaves_original_untouched():
    packet = make_packet()
    copy = packet.copy_and_decrement()
    assert packet.ttl == 64
    assert copy.ttl == 63
    assert copy.verify_checksum()
    assert make_packet(ttl=0).copy_and_decrement().ttl == 0


def test_icmp_echo_request_is_padded_and_checksummed():
    request = IcmpDatagram.echo_request(7, 3, b"ping")
    data = request.to_bytes()
    assert len(data) == 64
    assert data[8:12] == b"ping"
    assert request.identifier == 7
    assert request.sequence == 3
    assert request.verify_checksum()
    assert IcmpDatagram.parse(data) == request


def test_icmp_reply_matches_only_its_request():
    request = IcmpDatagram.echo_request(7, 3)
    reply = IcmpDatagram.parse(IcmpDatagram.echo_reply(request).to_bytes())
    assert reply.is_echo_reply
    assert reply.data == request.data
    assert reply.matches_request(request)
    assert not reply.matches_request(IcmpDatagram.echo_request(7, 4))
    assert not request.matches_request(request)


def test_icmp_error_embeds_offending_packet():
    request = IcmpDatagram.echo_request(1, 1)
    packet = make_packet(protocol=IpProtocol.ICMP, data=request.to_bytes())
    error = IcmpDatagram.net_unreachable(packet)
    assert error.type == IcmpType.UNREACHABLE
    assert error.code == IcmpUnreachableCode.NET
    assert error.data[:20] == packet.header
    assert error.embeds(request)
    assert not error.embeds(IcmpDatagram.echo_request(1, 2))
    assert error.describe() == "destination network unreachable"
    assert IcmpDatagram.time_exceeded(packet).describe() == "time exceeded"
    assert IcmpDatagram.host_unreachable(packet).describe() == "destination host unreachable"


def test_udp_checksum_covers_pseudo_header():
    src, dest = addr("10.0.0.1"), addr("10.0.0.2")
    datagram = UdpDatagram.build(src, dest, 1234, 53, b"query")
    assert datagram.length == 13
    parsed = UdpDatagram.parse(datagram.to_bytes())
    assert parsed == datagram
    assert parsed.verify_checksum(src, dest)
    assert not parsed.verify_checksum(src, addr("10.0.0.3"))


def test_udp_zero_checksum_is_valid():
    datagram = UdpDatagram(1, 2, b"x", 0)
    assert datagram.verify_checksum(addr("1.1.1.1"), addr("2.2.2.2"))


def test_udp_parse_rejects_bad_length():
    data = bytearray(UdpDatagram(1, 2, b"abc", 0).to_bytes())
    data[5] = 40
    with pytest.raises(ValueError):
        UdpDatagram.parse(bytes(data))


def test_arp_layout_and_reply():
    request = ArpPacket.request(MAC_A, addr("10.0.0.1"), addr("10.0.0.2"))
    data = request.to_bytes()
    assert len(data) == 28
    assert data[:8] == b"\x00\x01\x08\x00\x06\x04\x00\x01"
    assert ArpPacket.parse(data) == request

    reply = request.make_reply(MAC_B)
    assert reply.op == ArpOp.REPLY
    assert reply.src_ha == MAC_B
    assert reply.src_pa == addr("10.0.0.2")
    assert reply.dest_ha == MAC_A
    assert reply.dest_pa == addr("10.0.0.1")


def test_arp_parse_rejects_short_packets():
    with pytest.raises(ValueError):
        ArpPacket.parse(bytes(20))


def test_dhcp_payload_round_trip():
    offer = DhcpPayload.reply(
        DhcpMessageType.ACK,
        0xDEADBEEF,
        MAC_A,
        addr("192.168.1.2"),
        addr("192.168.1.1"),
        mask=addr("255.255.255.0"),
        router=addr("192.168.1.1"),
        lease_time=86400,
    )
    data = offer.to_bytes()
    assert data[236:240] == bytes([99, 130, 83, 99])
    assert data[240:243] == bytes([DhcpOption.MESSAGE_TYPE, 1, DhcpMessageType.ACK])
    assert data[-1] == DhcpOption.END
    parsed = DhcpPayload.parse(data)
    assert parsed == offer
    assert parsed.op == DhcpOp.BOOTREPLY
    assert parsed.subnet_mask == addr("255.255.255.0")
    assert parsed.router == addr("192.168.1.1")
    assert parsed.lease_time == 86400


def test_dhcp_parse_skips_padding_between_options():
    data = DhcpPayload.discover(1, MAC_A).to_bytes()
    padded = data[:243] + bytes(3) + data[243:]
    parsed = DhcpPayload.parse(padded)
    assert parsed.message_type == DhcpMessageType.DISCOVER
    assert parsed.options[DhcpOption.PARAMETER_REQUEST_LIST] == bytes(
        [DhcpOption.SUBNET_MASK, DhcpOption.ROUTER]
    )


def test_dhcp_parse_rejects_missing_cookie():
    data = bytearray(DhcpPayload.discover(1, MAC_A).to_bytes())
    data[236] = 0
    with pytest.raises(ValueError):
        DhcpPayload.parse(bytes(data))


def test_mask_to_prefix():
    assert mask_to_prefix(addr("255.255.255.0")).length == 24
    assert mask_to_prefix(addr("255.255.240.0")).length == 20
    assert mask_to_prefix(addr("255.255.255.255")).length == 32
    assert mask_to_prefix(addr("0.0.0.0")).length == 0
    assert mask_to_prefix(addr("255.0.255.0")).length == 32
