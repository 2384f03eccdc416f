"""Network interfaces."""

from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from ethernet_sim.core.addressing import DeviceID, Ipv4Address, Ipv4Prefix, MacAddress
from ethernet_sim.core.enums import InterfaceLayer, InterfaceStatus

DEFAULT_VLAN = 1


@dataclass
class Interface:
    """An interface owned by one device.

    Bridging (L2) interfaces carry a VLAN; routing (L3) interfaces carry an
    address and prefix instead.

    Attributes:
        mac: Link address, unique across the simulation.
        owner: Id of the owning device.
        layer: Bridging or routing.
        status: Administrative status.
        vlan: VLAN of a bridging interface.
        address: Address of a routing interface.
        prefix: Prefix of a routing interface.
        virtual: True for the loopback interface, which has no cable.
    """

    mac: MacAddress
    owner: DeviceID
    layer: InterfaceLayer
    status: InterfaceStatus = InterfaceStatus.UP
    vlan: int = DEFAULT_VLAN
    address: Ipv4Address = field(default=Ipv4Address.unspecified)
    prefix: Ipv4Prefix = field(default=Ipv4Prefix(0))
    virtual: bool = False

    @property
    def is_up(self) -> bool:
        return self.status == InterfaceStatus.UP

    @property
    def is_routing(self) -> bool:
        return self.layer == InterfaceLayer.L3

    @property
    def is_bridging(self) -> bool:
        return self.layer == InterfaceLayer.L2

    def __repr__(self) -> str:
        if self.is_routing:
            return f"Interface({self.mac}, {self.address}{self.prefix})"
        return f"Interface({self.mac}, vlan {self.vlan})"


class InterfaceInfo(NamedTuple):
    """Read-only view of an interface handed to callers outside the engine."""

    mac: MacAddress
    up: bool
    active: bool
    vlan: Optional[int]
    address: Optional[Ipv4Address]
    prefix: Optional[Ipv4Prefix]
