"""ICMP datagram codec (RFC 792)."""

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, List, Optional

from ethernet_sim.core.bits import divide, limit, pad_to_32bit_words, spread
from ethernet_sim.protocols.ipv4 import Ipv4Packet, calculate_checksum

HEADER_LENGTH = 8
MIN_DATAGRAM_LENGTH = 64
EMBEDDED_DATA_LENGTH = 64


class IcmpType(IntEnum):
    ECHO_REPLY = 0
    UNREACHABLE = 3
    ECHO_REQUEST = 8
    TIME_EXCEEDED = 11


class IcmpUnreachableCode(IntEnum):
    NET = 0
    HOST = 1


def _filler(length: int) -> bytes:
    return bytes((16 + i) & 0xFF for i in range(max(0, length)))


@dataclass(frozen=True)
class IcmpDatagram:
    """Represents an ICMP datagram.

    Data shorter than the 64-byte minimum is padded with a fixed filler
    pattern when a datagram is built; parsed datagrams keep their data as-is.

    Attributes:
        type: Message type.
        code: Message code.
        extra_space: The 4 type-specific header bytes (identifier and
            sequence number for echo messages).
        data: Message data.
        checksum: Checksum over the whole datagram; computed when not supplied.
    """

    type: int
    code: int
    extra_space: bytes = bytes(4)
    data: bytes = b""
    checksum: Optional[int] = None

    _lengths: ClassVar[List[int]] = [8, 8, 16, 32]

    def __post_init__(self):
        object.__setattr__(self, "type", limit(self.type, self._lengths[0]))
        object.__setattr__(self, "code", limit(self.code, self._lengths[1]))
        object.__setattr__(self, "extra_space", pad_to_32bit_words(self.extra_space, 4, 4))
        if self.checksum is None:
            data = bytes(self.data)
            data += _filler(MIN_DATAGRAM_LENGTH - HEADER_LENGTH - len(data))
            object.__setattr__(self, "data", data)
            object.__setattr__(self, "checksum", calculate_checksum(self._encode(0)))
        else:
            object.__setattr__(self, "data", bytes(self.data))

    def _encode(self, checksum: int) -> bytes:
        return (
            spread(
                (self.type, self._lengths[0]),
                (self.code, self._lengths[1]),
                (checksum, self._lengths[2]),
            )
            + self.extra_space
            + self.data
        )

    def to_bytes(self) -> bytes:
        return self._encode(self.checksum)

    def verify_checksum(self) -> bool:
        return calculate_checksum(self.to_bytes()) == 0

    @property
    def is_echo_request(self) -> bool:
        return self.type == IcmpType.ECHO_REQUEST

    @property
    def is_echo_reply(self) -> bool:
        return self.type == IcmpType.ECHO_REPLY

    @property
    def is_error(self) -> bool:
        return self.type in (IcmpType.UNREACHABLE, IcmpType.TIME_EXCEEDED)

    @property
    def identifier(self) -> int:
        return int.from_bytes(self.extra_space[:2], "big")

    @property
    def sequence(self) -> int:
        return int.from_bytes(self.extra_space[2:], "big")

    def matches_request(self, request: "IcmpDatagram") -> bool:
        """Whether this datagram is the echo reply to `request`."""
        return (
            self.is_echo_reply
            and request.is_echo_request
            and self.extra_space == request.extra_space
        )

    def embeds(self, request: "IcmpDatagram") -> bool:
        """Whether this error datagram reports on the packet carrying `request`.

        The embedded IPv4 header may differ from the one originally sent (TTL
        and checksum change in transit), so only the embedded ICMP header is
        compared.
        """
        if not self.is_error or not self.data:
            return False
        ihl = (self.data[0] & 0x0F) * 4
        embedded = self.data[ihl:ihl + HEADER_LENGTH]
        return len(embedded) == HEADER_LENGTH and embedded == request.to_bytes()[:HEADER_LENGTH]

    @classmethod
    def echo_request(cls, identifier: int, sequence: int, data: bytes = b"") -> "IcmpDatagram":
        return cls(
            IcmpType.ECHO_REQUEST,
            0,
            spread((limit(identifier, 16), 16), (limit(sequence, 16), 16)),
            data,
        )

    @classmethod
    def echo_reply(cls, request: "IcmpDatagram") -> "IcmpDatagram":
        return cls(IcmpType.ECHO_REPLY, 0, request.extra_space, request.data)

    @classmethod
    def _error(cls, type_: IcmpType, code: int, packet: Ipv4Packet) -> "IcmpDatagram":
        return cls(type_, code, bytes(4), packet.header + packet.data[:EMBEDDED_DATA_LENGTH])

    @classmethod
    def host_unreachable(cls, packet: Ipv4Packet) -> "IcmpDatagram":
        return cls._error(IcmpType.UNREACHABLE, IcmpUnreachableCode.HOST, packet)

    @classmethod
    def net_unreachable(cls, packet: Ipv4Packet) -> "IcmpDatagram":
        return cls._error(IcmpType.UNREACHABLE, IcmpUnreachableCode.NET, packet)

    @classmethod
    def time_exceeded(cls, packet: Ipv4Packet) -> "IcmpDatagram":
        return cls._error(IcmpType.TIME_EXCEEDED, 0, packet)

    @classmethod
    def parse(cls, datagram: bytes) -> "IcmpDatagram":
        """Decode an ICMP datagram.

        Raises:
            ValueError: If the datagram is shorter than its header.
        """
        if len(datagram) < HEADER_LENGTH:
            raise ValueError(f"ICMP datagram too short: {len(datagram)} bytes")
        type_, code, checksum, _ = divide(datagram[:HEADER_LENGTH], cls._lengths)
        return cls(type_, code, datagram[4:HEADER_LENGTH], datagram[HEADER_LENGTH:], checksum)

    def describe(self) -> str:
        """Human readable summary used in ping output."""
        if self.is_echo_reply:
            return "response"
        if self.type == IcmpType.TIME_EXCEEDED:
            return "time exceeded"
        if self.type == IcmpType.UNREACHABLE:
            if self.code == IcmpUnreachableCode.HOST:
                return "destination host unreachable"
            if self.code == IcmpUnreachableCode.NET:
                return "destination network unreachable"
        return f"ICMP type {self.type} code {self.code}"
