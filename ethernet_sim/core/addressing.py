"""Address value types.

Link addresses, IPv4 addresses and prefixes, and device identifiers. All of
them are immutable and totally ordered so they can key dicts and sorted
registries.
"""

from dataclasses import dataclass
from typing import ClassVar, Union

from ethernet_sim.core.bits import limit, to_binary


@dataclass(frozen=True, order=True)
class MacAddress:
    """A 6-byte link address.

    Attributes:
        value: The raw address bytes.
    """

    value: bytes

    byte_length: ClassVar[int] = 6
    broadcast: ClassVar["MacAddress"]
    loopback: ClassVar["MacAddress"]

    def __post_init__(self):
        value = bytes(self.value)
        if len(value) != self.byte_length:
            raise ValueError(f"MAC address needs 6 bytes, got {len(value)}")
        object.__setattr__(self, "value", value)

    @classmethod
    def parse(cls, text: str) -> "MacAddress":
        """Parse the colon-separated hex form, e.g. ``9c:00:cd:61:39:48``."""
        parts = text.strip().split(":")
        if len(parts) != cls.byte_length:
            raise ValueError(f"Invalid MAC address: {text!r}")
        return cls(bytes(int(part, 16) for part in parts))

    def is_broadcast(self) -> bool:
        return self.value == b"\xff" * 6

    def is_loopback(self) -> bool:
        return self.value == bytes(6)

    def to_binary(self) -> str:
        return to_binary(self.value)

    def __bytes__(self) -> bytes:
        return self.value

    def __str__(self) -> str:
        return ":".join(f"{byte:02x}" for byte in self.value)


MacAddress.broadcast = MacAddress(b"\xff" * 6)
MacAddress.loopback = MacAddress(bytes(6))


@dataclass(frozen=True, order=True)
class Ipv4Prefix:
    """A network prefix length.

    The length is masked to 6 bits; lengths above 32 behave like /32.

    Attributes:
        length: Number of leading one-bits in the mask.
    """

    length: int

    def __post_init__(self):
        object.__setattr__(self, "length", limit(self.length, 6))

    @property
    def mask(self) -> "Ipv4Address":
        """The 4-byte mask with `length` leading one-bits."""
        bits = min(self.length, 32)
        return Ipv4Address.from_int(((1 << bits) - 1) << (32 - bits))

    def __str__(self) -> str:
        return f"/{self.length}"


@dataclass(frozen=True, order=True)
class Ipv4Address:
    """A 4-byte IPv4 address.

    Attributes:
        value: The raw address bytes.
    """

    value: bytes

    byte_length: ClassVar[int] = 4
    broadcast: ClassVar["Ipv4Address"]
    unspecified: ClassVar["Ipv4Address"]
    loopback: ClassVar["Ipv4Address"]

    def __post_init__(self):
        value = bytes(self.value)
        if len(value) != self.byte_length:
            raise ValueError(f"IPv4 address needs 4 bytes, got {len(value)}")
        object.__setattr__(self, "value", value)

    @classmethod
    def parse(cls, text: str) -> "Ipv4Address":
        """Parse dotted-quad notation, e.g. ``192.168.0.10``."""
        parts = text.strip().split(".")
        if len(parts) != cls.byte_length or not all(p.isdigit() for p in parts):
            raise ValueError(f"Invalid IPv4 address: {text!r}")
        octets = [int(part) for part in parts]
        if any(octet > 255 for octet in octets):
            raise ValueError(f"Invalid IPv4 address: {text!r}")
        return cls(bytes(octets))

    @classmethod
    def from_int(cls, number: int) -> "Ipv4Address":
        return cls(limit(number, 32).to_bytes(4, "big"))

    def __int__(self) -> int:
        return int.from_bytes(self.value, "big")

    def __and__(self, other: Union[Ipv4Prefix, "Ipv4Address"]) -> "Ipv4Address":
        mask = other.mask if isinstance(other, Ipv4Prefix) else other
        return Ipv4Address.from_int(int(self) & int(mask))

    def __or__(self, other: "Ipv4Address") -> "Ipv4Address":
        return Ipv4Address.from_int(int(self) | int(other))

    def network(self, prefix: Ipv4Prefix) -> "Ipv4Address":
        return self & prefix

    def broadcast_address(self, prefix: Ipv4Prefix) -> "Ipv4Address":
        """The directed broadcast address of this address's subnet."""
        host_bits = Ipv4Address.from_int(~int(prefix.mask))
        return (self & prefix) | host_bits

    def inc(self) -> "Ipv4Address":
        """The next address, saturating at 255.255.255.255."""
        return Ipv4Address.from_int(min(int(self) + 1, 0xFFFFFFFF))

    def in_subnet(self, network: "Ipv4Address", prefix: Ipv4Prefix) -> bool:
        return (self & prefix) == (network & prefix)

    def is_unspecified(self) -> bool:
        return self.value == bytes(4)

    def is_broadcast(self) -> bool:
        return self.value == b"\xff" * 4

    def to_binary(self) -> str:
        return to_binary(self.value)

    def __bytes__(self) -> bytes:
        return self.value

    def __str__(self) -> str:
        return ".".join(str(octet) for octet in self.value)


Ipv4Address.broadcast = Ipv4Address(b"\xff" * 4)
Ipv4Address.unspecified = Ipv4Address(bytes(4))
Ipv4Address.loopback = Ipv4Address(bytes([127, 0, 0, 1]))


@dataclass(frozen=True, order=True)
class DeviceID:
    """Numeric device identifier, clamped into [MIN, MAX].

    Attributes:
        value: The identifier.
    """

    value: int

    MIN: ClassVar[int] = 1
    MAX: ClassVar[int] = 99999

    def __post_init__(self):
        object.__setattr__(self, "value", max(self.MIN, min(self.MAX, int(self.value))))

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)
