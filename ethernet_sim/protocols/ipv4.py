"""IPv4 packet codec (RFC 791, RFC 2474).

Only the fixed 20-byte header is interpreted. Fragmentation is not supported,
so identification, flags and fragment offset are always zero.
"""

from dataclasses import dataclass, field
from typing import ClassVar, List, Optional

from ethernet_sim.core.addressing import Ipv4Address
from ethernet_sim.core.bits import divide, limit, pad_to_32bit_words, spread
from ethernet_sim.core.enums import IpProtocol

HEADER_LENGTH = 20
CHECKSUM_OFFSET = 10
MAX_OPTIONS_LENGTH = 40


def calculate_checksum(data: bytes) -> int:
    """Compute the Internet checksum of `data`.

    The one's-complement sum of all 16-bit words (odd-length data is padded
    with a zero byte), folded to 16 bits and complemented.

    Args:
        data: Bytes to sum, with any checksum field either zeroed or filled in.

    Returns:
        The checksum. Recomputing over data that already carries a correct
        checksum yields zero.
    """
    if len(data) % 2:
        data = data + b"\x00"
    total = sum(divide(data, [16] * (len(data) // 2)))
    while total >> 16:
        total = (total >> 16) + (total & 0xFFFF)
    return ~total & 0xFFFF


@dataclass(frozen=True)
class Ipv4Packet:
    """Represents an IPv4 packet.

    Attributes:
        dscp: Differentiated services code point.
        ecn: Explicit congestion notification bits.
        ttl: Time-to-live.
        protocol: Protocol number of the payload.
        src: Source address.
        dest: Destination address.
        data: Payload bytes.
        options: Header options, padded to 32-bit words.
        checksum: Header checksum; computed when not supplied.
    """

    dscp: int
    ecn: int
    ttl: int
    protocol: int
    src: Ipv4Address
    dest: Ipv4Address
    data: bytes = b""
    options: bytes = b""
    checksum: Optional[int] = None
    version: int = field(default=4, init=False)
    identification: int = field(default=0, init=False)
    flags: int = field(default=0, init=False)
    fragment_offset: int = field(default=0, init=False)

    _lengths: ClassVar[List[int]] = [4, 4, 6, 2, 16, 16, 3, 13, 8, 8, 16, 32, 32]

    def __post_init__(self):
        object.__setattr__(self, "dscp", limit(self.dscp, self._lengths[2]))
        object.__setattr__(self, "ecn", limit(self.ecn, self._lengths[3]))
        object.__setattr__(self, "ttl", limit(max(self.ttl, 0), self._lengths[8]))
        object.__setattr__(self, "protocol", limit(self.protocol, self._lengths[9]))
        object.__setattr__(self, "data", bytes(self.data))
        object.__setattr__(
            self, "options", pad_to_32bit_words(self.options, 0, MAX_OPTIONS_LENGTH)
        )
        if self.checksum is None:
            object.__setattr__(
                self, "checksum", calculate_checksum(self._header_with_checksum(0))
            )

    @property
    def ihl(self) -> int:
        """Header length in 32-bit words."""
        return 5 + len(self.options) // 4

    @property
    def total_length(self) -> int:
        return self.ihl * 4 + len(self.data)

    def _header_with_checksum(self, checksum: int) -> bytes:
        return (
            spread(
                (self.version, self._lengths[0]),
                (self.ihl, self._lengths[1]),
                (self.dscp, self._lengths[2]),
                (self.ecn, self._lengths[3]),
                (self.total_length, self._lengths[4]),
                (self.identification, self._lengths[5]),
                (self.flags, self._lengths[6]),
                (self.fragment_offset, self._lengths[7]),
                (self.ttl, self._lengths[8]),
                (self.protocol, self._lengths[9]),
                (checksum, self._lengths[10]),
            )
            + bytes(self.src)
            + bytes(self.dest)
            + self.options
        )

    @property
    def header(self) -> bytes:
        return self._header_with_checksum(self.checksum)

    def to_bytes(self) -> bytes:
        return self.header + self.data

    def verify_checksum(self) -> bool:
        return calculate_checksum(self.header) == 0

    @classmethod
    def parse(cls, packet: bytes) -> "Ipv4Packet":
        """Decode an IPv4 packet, keeping the checksum found on the wire.

        Args:
            packet: Packet bytes.

        Returns:
            The decoded packet.

        Raises:
            ValueError: If the bytes cannot hold the header they describe.
        """
        if len(packet) < HEADER_LENGTH:
            raise ValueError(f"IPv4 packet too short: {len(packet)} bytes")
        fields = divide(packet[:HEADER_LENGTH], cls._lengths)
        version, ihl = fields[0], fields[1]
        if version != 4 or ihl < 5 or len(packet) < ihl * 4:
            raise ValueError(f"Malformed IPv4 header (version={version}, ihl={ihl})")
        total_length = fields[4]
        if total_length < ihl * 4 or total_length > len(packet):
            raise ValueError(f"Inconsistent IPv4 total length {total_length}")
        return cls(
            dscp=fields[2],
            ecn=fields[3],
            ttl=fields[8],
            protocol=fields[9],
            src=Ipv4Address.from_int(fields[11]),
            dest=Ipv4Address.from_int(fields[12]),
            data=packet[ihl * 4:total_length],
            options=packet[HEADER_LENGTH:ihl * 4],
            checksum=fields[10],
        )

    def copy_and_decrement(self, ttl_decrement: int = 1) -> "Ipv4Packet":
        """Return a copy with TTL reduced (never below zero) and a fresh checksum."""
        return Ipv4Packet(
            self.dscp,
            self.ecn,
            self.ttl - ttl_decrement,
            self.protocol,
            self.src,
            self.dest,
            self.data,
            self.options,
        )

    @property
    def protocol_name(self) -> str:
        try:
            return IpProtocol(self.protocol).name
        except ValueError:
            return str(self.protocol)

    def __repr__(self) -> str:
        return (
            f"Ipv4Packet({self.src}->{self.dest}, {self.protocol_name}, "
            f"ttl={self.ttl}, {len(self.data)}B)"
        )
