"""UDP datagram codec (RFC 768)."""

from dataclasses import dataclass
from typing import ClassVar, List, NamedTuple, Optional

from ethernet_sim.core.addressing import Ipv4Address, MacAddress
from ethernet_sim.core.bits import divide, limit, spread
from ethernet_sim.core.enums import IpProtocol
from ethernet_sim.protocols.ipv4 import calculate_checksum

HEADER_LENGTH = 8


@dataclass(frozen=True)
class UdpDatagram:
    """Represents a UDP datagram.

    The checksum covers a pseudo-header built from the enclosing packet's
    addresses, so both addresses are needed to build or verify a datagram.

    Attributes:
        src_port: Source port.
        dest_port: Destination port.
        data: Payload bytes.
        checksum: Checksum; computed from `src_address`/`dest_address` when
            not supplied. Zero means "not computed" and is always valid.
    """

    src_port: int
    dest_port: int
    data: bytes = b""
    checksum: Optional[int] = None

    _lengths: ClassVar[List[int]] = [16, 16, 16, 16]

    def __post_init__(self):
        object.__setattr__(self, "src_port", limit(self.src_port, self._lengths[0]))
        object.__setattr__(self, "dest_port", limit(self.dest_port, self._lengths[1]))
        object.__setattr__(self, "data", bytes(self.data))

    @classmethod
    def build(
        cls,
        src_address: Ipv4Address,
        dest_address: Ipv4Address,
        src_port: int,
        dest_port: int,
        data: bytes,
    ) -> "UdpDatagram":
        """Create a datagram with its checksum filled in."""
        datagram = cls(src_port, dest_port, data, 0)
        checksum = calculate_checksum(datagram.pseudo_header(src_address, dest_address))
        # an all-zero result is sent as all ones, zero being reserved
        return cls(src_port, dest_port, data, checksum or 0xFFFF)

    @property
    def length(self) -> int:
        return HEADER_LENGTH + len(self.data)

    @property
    def header(self) -> bytes:
        return spread(
            (self.src_port, self._lengths[0]),
            (self.dest_port, self._lengths[1]),
            (self.length, self._lengths[2]),
            (self.checksum or 0, self._lengths[3]),
        )

    def to_bytes(self) -> bytes:
        return self.header + self.data

    def pseudo_header(self, src_address: Ipv4Address, dest_address: Ipv4Address) -> bytes:
        """Pseudo-header, real header and data as summed by the checksum."""
        return (
            bytes(src_address)
            + bytes(dest_address)
            + spread((0, 8), (IpProtocol.UDP, 8), (self.length, 16))
            + self.to_bytes()
        )

    def verify_checksum(self, src_address: Ipv4Address, dest_address: Ipv4Address) -> bool:
        if not self.checksum:
            return True
        return calculate_checksum(self.pseudo_header(src_address, dest_address)) == 0

    @classmethod
    def parse(cls, datagram: bytes) -> "UdpDatagram":
        """Decode a UDP datagram.

        Raises:
            ValueError: If the length field disagrees with the bytes given.
        """
        if len(datagram) < HEADER_LENGTH:
            raise ValueError(f"UDP datagram too short: {len(datagram)} bytes")
        src_port, dest_port, length, checksum = divide(datagram[:HEADER_LENGTH], cls._lengths)
        if length < HEADER_LENGTH or length > len(datagram):
            raise ValueError(f"Invalid UDP length {length}")
        return cls(src_port, dest_port, datagram[HEADER_LENGTH:length], checksum)


class UdpMessage(NamedTuple):
    """What a datagram socket receives: the payload and where it came from.

    Attributes:
        data: UDP payload.
        src: Source address of the enclosing packet.
        src_port: Source port.
        ingress: Link address of the interface the frame arrived on.
    """

    data: bytes
    src: Ipv4Address
    src_port: int
    ingress: MacAddress
