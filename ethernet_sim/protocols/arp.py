"""Address Resolution Protocol (RFC 826): packet codec and ARP table."""

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, ClassVar, Dict, Iterable, List, NamedTuple, Optional, Tuple

from loguru import logger

from ethernet_sim.core.addressing import Ipv4Address, MacAddress
from ethernet_sim.core.bits import divide, spread
from ethernet_sim.core.enums import EtherType

PACKET_LENGTH = 28


class HardwareType(IntEnum):
    ETHERNET = 1


class ArpOp(IntEnum):
    REQUEST = 1
    REPLY = 2


@dataclass(frozen=True)
class ArpPacket:
    """Represents an ARP packet for Ethernet/IPv4.

    Attributes:
        op: REQUEST or REPLY.
        src_ha: Sender hardware address.
        src_pa: Sender protocol address.
        dest_ha: Target hardware address.
        dest_pa: Target protocol address.
    """

    op: int
    src_ha: MacAddress
    src_pa: Ipv4Address
    dest_ha: MacAddress
    dest_pa: Ipv4Address
    htype: int = HardwareType.ETHERNET
    ptype: int = EtherType.IPV4

    _lengths: ClassVar[List[int]] = [16, 16, 8, 8, 16, 48, 32, 48, 32]

    @classmethod
    def request(cls, src_ha: MacAddress, src_pa: Ipv4Address, dest_pa: Ipv4Address) -> "ArpPacket":
        return cls(ArpOp.REQUEST, src_ha, src_pa, MacAddress.broadcast, dest_pa)

    def to_bytes(self) -> bytes:
        return spread(
            (int(self.htype), self._lengths[0]),
            (int(self.ptype), self._lengths[1]),
            (MacAddress.byte_length, self._lengths[2]),
            (Ipv4Address.byte_length, self._lengths[3]),
            (int(self.op), self._lengths[4]),
            (int.from_bytes(bytes(self.src_ha), "big"), self._lengths[5]),
            (int(self.src_pa), self._lengths[6]),
            (int.from_bytes(bytes(self.dest_ha), "big"), self._lengths[7]),
            (int(self.dest_pa), self._lengths[8]),
        )

    @classmethod
    def parse(cls, packet: bytes) -> "ArpPacket":
        """Decode an ARP packet.

        Raises:
            ValueError: If the packet is truncated or not Ethernet/IPv4.
        """
        if len(packet) < PACKET_LENGTH:
            raise ValueError(f"ARP packet too short: {len(packet)} bytes")
        fields = divide(packet[:PACKET_LENGTH], cls._lengths)
        htype, ptype, hlen, plen, op = fields[:5]
        if hlen != MacAddress.byte_length or plen != Ipv4Address.byte_length:
            raise ValueError(f"Unsupported ARP address lengths {hlen}/{plen}")
        return cls(
            op=op,
            src_ha=MacAddress(fields[5].to_bytes(6, "big")),
            src_pa=Ipv4Address.from_int(fields[6]),
            dest_ha=MacAddress(fields[7].to_bytes(6, "big")),
            dest_pa=Ipv4Address.from_int(fields[8]),
            htype=htype,
            ptype=ptype,
        )

    def make_reply(self, new_src_ha: MacAddress) -> "ArpPacket":
        """Build the REPLY answering this request.

        Args:
            new_src_ha: The replying interface's hardware address, i.e. the
                address the requester is looking for.

        Returns:
            The reply packet.
        """
        return ArpPacket(ArpOp.REPLY, new_src_ha, self.dest_pa, self.src_ha, self.src_pa)


class ArpEntry(NamedTuple):
    remote_mac: MacAddress
    local_mac: MacAddress


class ArpTable:
    """Maps (protocol family, network address) to the link addresses used to reach it.

    Attributes:
        local_addresses: Callable returning the owner's own routing addresses.
            Lookups for those never consult the table.
    """

    def __init__(self, local_addresses: Callable[[], Iterable[Ipv4Address]]) -> None:
        self.local_addresses = local_addresses
        self._table: Dict[Tuple[EtherType, Ipv4Address], ArpEntry] = {}

    @staticmethod
    def _key(ip: Ipv4Address) -> Tuple[EtherType, Ipv4Address]:
        return EtherType.IPV4, ip

    def set(self, ip: Ipv4Address, remote_mac: MacAddress, local_mac: MacAddress) -> None:
        logger.debug("{}: ARP {} is-at {}", local_mac, ip, remote_mac)
        self._table[self._key(ip)] = ArpEntry(remote_mac, local_mac)

    def get(self, ip: Ipv4Address) -> Optional[ArpEntry]:
        """Return the entry for `ip`, or the loopback pair for a local address."""
        if any(ip == local for local in self.local_addresses()):
            return ArpEntry(MacAddress.loopback, MacAddress.loopback)
        return self._table.get(self._key(ip))

    def has(self, ip: Ipv4Address) -> bool:
        return self._key(ip) in self._table

    def delete(self, ip: Ipv4Address) -> bool:
        return self._table.pop(self._key(ip), None) is not None

    def clear_value(self, local_mac: MacAddress) -> int:
        """Remove every entry learned through `local_mac`.

        Returns:
            The number of entries removed.
        """
        doomed = [key for key, entry in self._table.items() if entry.local_mac == local_mac]
        for key in doomed:
            del self._table[key]
        return len(doomed)

    def entries(self) -> List[Tuple[Ipv4Address, ArpEntry]]:
        return sorted((key[1], entry) for key, entry in self._table.items())

    def __len__(self) -> int:
        return len(self._table)
