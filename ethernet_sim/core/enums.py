"""Enumerations for network simulation.

This module defines enumerations used throughout the network simulator.
"""

from enum import Enum, Flag, IntEnum, auto


class EtherType(IntEnum):
    """Frame type field values.

    Attributes:
        IPV4: Internet Protocol version 4.
        ARP: Address Resolution Protocol.
        IPV6: Internet Protocol version 6 (recognised, never processed).
    """

    IPV4 = 0x0800
    ARP = 0x0806
    IPV6 = 0x86DD


class IpProtocol(IntEnum):
    """Internet protocol numbers (RFC 790)."""

    ICMP = 1
    TCP = 6
    UDP = 17


class InterfaceStatus(Enum):
    DOWN = 0
    UP = 1


class InterfaceLayer(IntEnum):
    """Whether an interface bridges frames (L2) or terminates IP (L3)."""

    L2 = 2
    L3 = 3


class SocketType(Enum):
    """Kinds of socket endpoints.

    Attributes:
        RAW: Receives whole IPv4 packets addressed to a link address.
        DGRAM: Receives UDP payloads addressed to (IPv4 address, port),
            each wrapped with its sender and ingress interface.
        STREAM: Reserved for connection-oriented transports.
    """

    RAW = 1
    DGRAM = 2
    STREAM = 3


class SendResult(Enum):
    """Outcome of trying to encapsulate and transmit an IPv4 packet."""

    SENT = auto()
    TIME_EXCEEDED = auto()
    HOST_UNREACHABLE = auto()
    NET_UNREACHABLE = auto()


class Capability(Flag):
    """Capability set selecting a device's behaviour.

    Attributes:
        ROUTING: Device terminates IP on routing (L3) interfaces.
        LOOPBACK: Device owns a virtual loopback interface.
        DHCP_CLIENT: Interfaces can be configured by DHCP.
        DHCP_SERVER: Device can lease addresses from configured pools.
        FORWARDING: Device forwards frames and routes packets that are not its own.
    """

    NONE = 0
    ROUTING = auto()
    LOOPBACK = auto()
    DHCP_CLIENT = auto()
    DHCP_SERVER = auto()
    FORWARDING = auto()


class DeviceKind(Enum):
    """Device presets offered to the presentation layer.

    Attributes:
        PC: End host with one routing interface.
        SERVER: End host that can also serve DHCP.
        ROUTER: Multi-interface IP router.
        SWITCH: Multi-port learning bridge.
    """

    PC = "pc"
    SERVER = "server"
    ROUTER = "router"
    SWITCH = "switch"
