"""Frame class for network simulation.

This module defines the Frame class, an Ethernet-style link-layer frame:
destination, source, 16-bit type field, payload and a trailing CRC-32
frame-check-sequence.
"""

from dataclasses import dataclass, field
from typing import Union

from ethernet_sim.core.addressing import MacAddress
from ethernet_sim.core.bits import spread
from ethernet_sim.core.enums import EtherType

CRC32_POLYNOMIAL = 0xEDB88320
HEADER_LENGTH = 14
FCS_LENGTH = 4


def calculate_fcs(data: bytes) -> int:
    """Compute the reflected CRC-32 of `data`.

    Args:
        data: Every frame byte preceding the frame-check-sequence.

    Returns:
        The CRC as an unsigned 32-bit integer.
    """
    crc = 0xFFFFFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = (crc >> 1) ^ CRC32_POLYNOMIAL if crc & 1 else crc >> 1
    return crc ^ 0xFFFFFFFF


@dataclass(frozen=True)
class Frame:
    """Represents a link-layer frame.

    Attributes:
        dest_mac: Destination link address.
        src_mac: Source link address.
        ethertype: Type of the payload.
        payload: Encapsulated packet bytes.
        fcs: Frame-check-sequence over header and payload.
    """

    dest_mac: MacAddress
    src_mac: MacAddress
    ethertype: Union[EtherType, int]
    payload: bytes
    fcs: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "payload", bytes(self.payload))
        object.__setattr__(self, "fcs", calculate_fcs(self.header + self.payload))

    @property
    def header(self) -> bytes:
        return (
            bytes(self.dest_mac)
            + bytes(self.src_mac)
            + spread((int(self.ethertype), 16))
        )

    def to_bytes(self) -> bytes:
        """Serialize the frame including its frame-check-sequence."""
        return self.header + self.payload + spread((self.fcs, 32))

    def __len__(self) -> int:
        return HEADER_LENGTH + len(self.payload) + FCS_LENGTH

    @classmethod
    def parse(cls, data: bytes) -> "Frame":
        """Decode a serialized frame.

        The trailing frame-check-sequence is not verified; frames handed over
        in memory are trusted.

        Args:
            data: Serialized frame bytes.

        Returns:
            The decoded frame.

        Raises:
            ValueError: If the data is too short to be a frame.
        """
        if len(data) < HEADER_LENGTH + FCS_LENGTH:
            raise ValueError(f"Frame too short: {len(data)} bytes")
        ethertype = int.from_bytes(data[12:14], "big")
        if ethertype in {member.value for member in EtherType}:
            ethertype = EtherType(ethertype)
        return cls(
            MacAddress(data[0:6]),
            MacAddress(data[6:12]),
            ethertype,
            data[HEADER_LENGTH:-FCS_LENGTH],
        )

    def __repr__(self) -> str:
        name = getattr(self.ethertype, "name", hex(int(self.ethertype)))
        return f"Frame({self.src_mac}->{self.dest_mac}, {name}, {len(self.payload)}B)"
