"""DHCP (RFC 2131): payload codec, server and client.

The server leases addresses out of the pool matching the interface a request
arrives on, probing each candidate with ICMP echoes before offering it. The
client runs one session per interface; every session of a device shares a
single socket on the client port and a dispatcher hands each reply to the
session owning its hardware address.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any, ClassVar, Dict, Generator, List, NamedTuple, Optional, Set, Tuple

import simpy
from loguru import logger

from ethernet_sim.core.addressing import Ipv4Address, Ipv4Prefix, MacAddress
from ethernet_sim.core.bits import divide, spread
from ethernet_sim.core.enums import EtherType, IpProtocol, SocketType
from ethernet_sim.core.frame import Frame
from ethernet_sim.core.interface import Interface
from ethernet_sim.core.routing import RouteEntry
from ethernet_sim.core.sockets import Socket
from ethernet_sim.protocols.arp import HardwareType
from ethernet_sim.protocols.ipv4 import Ipv4Packet
from ethernet_sim.protocols.udp import UdpDatagram

if TYPE_CHECKING:
    from ethernet_sim.core.device import Device

SERVER_PORT = 67
CLIENT_PORT = 68
MAGIC_COOKIE = bytes([99, 130, 83, 99])
CHADDR_LENGTH = 16
SNAME_LENGTH = 64
FILE_LENGTH = 128
OPTIONS_OFFSET = 240
PROBE_ATTEMPTS = 2


class DhcpOp(IntEnum):
    BOOTREQUEST = 1
    BOOTREPLY = 2


class DhcpMessageType(IntEnum):
    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8


class DhcpOption(IntEnum):
    PAD = 0
    SUBNET_MASK = 1
    ROUTER = 3
    LEASE_TIME = 51
    MESSAGE_TYPE = 53
    PARAMETER_REQUEST_LIST = 55
    END = 255


def mask_to_prefix(mask: Ipv4Address) -> Ipv4Prefix:
    """Convert a subnet mask to a prefix length.

    Masks that are not a contiguous run of leading one-bits yield /32.
    """
    value = int(mask)
    length = bin(value).count("1")
    contiguous = ((1 << length) - 1) << (32 - length)
    return Ipv4Prefix(length if value == contiguous else 32)


@dataclass(frozen=True)
class DhcpPayload:
    """Represents a DHCP message.

    Attributes:
        op: BOOTREQUEST or BOOTREPLY.
        xid: Transaction id chosen by the client.
        chaddr: Client hardware address.
        message_type: Value of the MESSAGE_TYPE option.
        ciaddr: Client address.
        yiaddr: Address offered to the client.
        siaddr: Server address.
        giaddr: Relay agent address.
        options: Other options, keyed by option code.
    """

    op: int
    xid: int
    chaddr: MacAddress
    message_type: int
    ciaddr: Ipv4Address = Ipv4Address.unspecified
    yiaddr: Ipv4Address = Ipv4Address.unspecified
    siaddr: Ipv4Address = Ipv4Address.unspecified
    giaddr: Ipv4Address = Ipv4Address.unspecified
    options: Dict[int, bytes] = field(default_factory=dict)
    htype: int = HardwareType.ETHERNET
    hops: int = 0
    secs: int = 0
    flags: int = 0

    _lengths: ClassVar[List[int]] = [8, 8, 8, 8, 32, 16, 16, 32, 32, 32, 32]

    def to_bytes(self) -> bytes:
        header = spread(
            (self.op, self._lengths[0]),
            (self.htype, self._lengths[1]),
            (MacAddress.byte_length, self._lengths[2]),
            (self.hops, self._lengths[3]),
            (self.xid, self._lengths[4]),
            (self.secs, self._lengths[5]),
            (self.flags, self._lengths[6]),
            (int(self.ciaddr), self._lengths[7]),
            (int(self.yiaddr), self._lengths[8]),
            (int(self.siaddr), self._lengths[9]),
            (int(self.giaddr), self._lengths[10]),
        )
        chaddr = bytes(self.chaddr).ljust(CHADDR_LENGTH, b"\x00")
        # message type always leads the options
        options = bytes([DhcpOption.MESSAGE_TYPE, 1, self.message_type])
        for code, value in self.options.items():
            options += bytes([code, len(value)]) + value
        options += bytes([DhcpOption.END])
        return header + chaddr + bytes(SNAME_LENGTH) + bytes(FILE_LENGTH) + MAGIC_COOKIE + options

    @classmethod
    def parse(cls, payload: bytes) -> "DhcpPayload":
        """Decode a DHCP message.

        PAD bytes between options are skipped; decoding stops at END.

        Raises:
            ValueError: If the message is truncated, lacks the magic cookie or
                has no MESSAGE_TYPE option.
        """
        if len(payload) < OPTIONS_OFFSET:
            raise ValueError(f"DHCP message too short: {len(payload)} bytes")
        if payload[OPTIONS_OFFSET - 4:OPTIONS_OFFSET] != MAGIC_COOKIE:
            raise ValueError("DHCP magic cookie missing")
        fields = divide(payload[:28], cls._lengths)
        options: Dict[int, bytes] = {}
        i = OPTIONS_OFFSET
        while i < len(payload):
            code = payload[i]
            if code == DhcpOption.END:
                break
            if code == DhcpOption.PAD:
                i += 1
                continue
            if i + 1 >= len(payload):
                raise ValueError(f"DHCP option {code} truncated")
            length = payload[i + 1]
            value = payload[i + 2:i + 2 + length]
            if len(value) != length:
                raise ValueError(f"DHCP option {code} truncated")
            options[code] = value
            i += 2 + length
        message_type = options.pop(DhcpOption.MESSAGE_TYPE, b"")
        if len(message_type) != 1:
            raise ValueError("DHCP message type missing")
        return cls(
            op=fields[0],
            xid=fields[4],
            chaddr=MacAddress(payload[28:28 + MacAddress.byte_length]),
            message_type=message_type[0],
            ciaddr=Ipv4Address.from_int(fields[7]),
            yiaddr=Ipv4Address.from_int(fields[8]),
            siaddr=Ipv4Address.from_int(fields[9]),
            giaddr=Ipv4Address.from_int(fields[10]),
            options=options,
            htype=fields[1],
            hops=fields[3],
            secs=fields[5],
            flags=fields[6],
        )

    def _address_option(self, code: DhcpOption) -> Optional[Ipv4Address]:
        value = self.options.get(code)
        if value is None or len(value) != Ipv4Address.byte_length:
            return None
        return Ipv4Address(value)

    @property
    def subnet_mask(self) -> Optional[Ipv4Address]:
        return self._address_option(DhcpOption.SUBNET_MASK)

    @property
    def router(self) -> Optional[Ipv4Address]:
        return self._address_option(DhcpOption.ROUTER)

    @property
    def lease_time(self) -> Optional[int]:
        value = self.options.get(DhcpOption.LEASE_TIME)
        return int.from_bytes(value, "big") if value and len(value) == 4 else None

    @classmethod
    def discover(cls, xid: int, chaddr: MacAddress) -> "DhcpPayload":
        return cls(DhcpOp.BOOTREQUEST, xid, chaddr, DhcpMessageType.DISCOVER,
                   options=_parameter_request_list())

    @classmethod
    def request(cls, xid: int, chaddr: MacAddress, server: Ipv4Address) -> "DhcpPayload":
        return cls(DhcpOp.BOOTREQUEST, xid, chaddr, DhcpMessageType.REQUEST,
                   siaddr=server, options=_parameter_request_list())

    @classmethod
    def reply(
        cls,
        message_type: DhcpMessageType,
        xid: int,
        chaddr: MacAddress,
        yiaddr: Ipv4Address,
        server: Ipv4Address,
        mask: Optional[Ipv4Address] = None,
        router: Optional[Ipv4Address] = None,
        lease_time: Optional[int] = None,
    ) -> "DhcpPayload":
        """Build an OFFER or ACK."""
        options: Dict[int, bytes] = {}
        if lease_time is not None:
            options[DhcpOption.LEASE_TIME] = spread((lease_time, 32))
        if mask is not None:
            options[DhcpOption.SUBNET_MASK] = bytes(mask)
        if router is not None:
            options[DhcpOption.ROUTER] = bytes(router)
        return cls(DhcpOp.BOOTREPLY, xid, chaddr, message_type,
                   yiaddr=yiaddr, siaddr=server, options=options)


def _parameter_request_list() -> Dict[int, bytes]:
    return {DhcpOption.PARAMETER_REQUEST_LIST: bytes([DhcpOption.SUBNET_MASK, DhcpOption.ROUTER])}


def _encapsulate(
    payload: DhcpPayload,
    src: Ipv4Address,
    src_port: int,
    dest_port: int,
    dest_mac: MacAddress,
    src_mac: MacAddress,
    ttl: int,
) -> Frame:
    udp = UdpDatagram.build(src, Ipv4Address.broadcast, src_port, dest_port, payload.to_bytes())
    packet = Ipv4Packet(0, 0, ttl, IpProtocol.UDP, src, Ipv4Address.broadcast, udp.to_bytes())
    return Frame(dest_mac, src_mac, EtherType.IPV4, packet.to_bytes())


class DhcpRecord(NamedTuple):
    """An address pool: hosts of network/prefix, with `router` as gateway."""

    network: Ipv4Address
    prefix: Ipv4Prefix
    router: Ipv4Address


class Offer(NamedTuple):
    """An outstanding offer and the pool and interface it was made from."""

    address: Ipv4Address
    xid: int
    expires: float
    record: DhcpRecord
    interface: MacAddress


class DhcpServer:
    """Leases addresses from configured pools.

    Attributes:
        device: The serving device.
        offers: Outstanding offers keyed by client hardware address.
        leases: Acknowledged addresses keyed by client hardware address.
    """

    def __init__(self, device: "Device") -> None:
        self.device = device
        self.env = device.env
        self._records: Dict[Tuple[Ipv4Address, int], DhcpRecord] = {}
        self.offers: Dict[MacAddress, Offer] = {}
        self.leases: Dict[MacAddress, Ipv4Address] = {}
        self.socket: Optional[Socket] = None
        self.process: Optional[simpy.events.Process] = None

    def add_record(self, network: Ipv4Address, prefix: Ipv4Prefix, router: Ipv4Address) -> bool:
        """Add a pool.

        Returns:
            False if a pool for that network and prefix already exists.
        """
        key = (network & prefix, prefix.length)
        if key in self._records:
            return False
        self._records[key] = DhcpRecord(network & prefix, prefix, router)
        return True

    def remove_record(self, network: Ipv4Address, prefix: Ipv4Prefix) -> bool:
        return self._records.pop((network & prefix, prefix.length), None) is not None

    def records(self) -> List[DhcpRecord]:
        return sorted(self._records.values())

    def start(self) -> None:
        """Listen on the server port until the socket is closed."""
        if self.socket is not None and not self.socket.is_closed:
            return
        self.socket = self.device.sockets.open(SocketType.DGRAM)
        if not self.device.sockets.bind(self.socket, Ipv4Address.broadcast, SERVER_PORT):
            raise ValueError(f"DHCP server port already bound on device {self.device.id}")
        self.process = self.env.process(self._serve(self.socket))

    def stop(self) -> None:
        if self.socket is not None:
            self.device.sockets.close(self.socket)
        self.offers.clear()

    def _serve(self, socket: Socket) -> Generator[simpy.events.Event, Any, None]:
        poll = self.device.config.dhcp_poll_interval
        while not socket.is_closed:
            received = yield socket.receive(poll)
            if received is None:
                continue
            try:
                message = DhcpPayload.parse(received.data)
            except ValueError as exc:
                logger.debug("Device {}: ignoring DHCP message: {}", self.device.id, exc)
                continue
            if message.op != DhcpOp.BOOTREQUEST:
                continue
            if message.message_type == DhcpMessageType.DISCOVER:
                yield self.env.process(self._offer(message, received.ingress))
            elif message.message_type == DhcpMessageType.REQUEST:
                self._acknowledge(message)

    def _expire_offers(self) -> None:
        now = self.env.now
        for chaddr in [mac for mac, offer in self.offers.items() if offer.expires <= now]:
            del self.offers[chaddr]

    def _select_pool(self, ingress: MacAddress) -> Optional[Tuple[DhcpRecord, Interface]]:
        """The pool serving the network of the interface a request came in on.

        When several pools hold that interface's address the longest prefix
        wins.
        """
        interface = self.device.interface(ingress)
        if interface.virtual or interface.address.is_unspecified() or not self.device.is_active(ingress):
            return None
        pools = [
            record for record in self.records()
            if interface.address.in_subnet(record.network, record.prefix)
        ]
        if not pools:
            return None
        return max(pools, key=lambda record: record.prefix.length), interface

    def _reserved(self, chaddr: MacAddress, record: DhcpRecord) -> Set[Ipv4Address]:
        reserved = {interface.address for interface in self.device.configured_interfaces()}
        reserved.add(record.router)
        reserved.update(address for mac, address in self.leases.items() if mac != chaddr)
        reserved.update(offer.address for mac, offer in self.offers.items() if mac != chaddr)
        return reserved

    def _find_candidate(
        self, chaddr: MacAddress, record: DhcpRecord
    ) -> Generator[simpy.events.Event, Any, Optional[Ipv4Address]]:
        reserved = self._reserved(chaddr, record)
        broadcast = record.network.broadcast_address(record.prefix)
        candidate = record.network.inc()
        while candidate < broadcast:
            if candidate not in reserved:
                alive = False
                for _ in range(PROBE_ATTEMPTS):
                    result = yield self.device.icmp_echo(
                        candidate, timeout=self.device.config.dhcp_probe_timeout
                    )
                    if result is not None and result[0].is_echo_reply:
                        alive = True
                        break
                if not alive:
                    return candidate
                logger.debug("Device {}: {} answers pings, skipping", self.device.id, candidate)
            candidate = candidate.inc()
        return None

    def _offer(self, message: DhcpPayload, ingress: MacAddress) -> Generator[simpy.events.Event, Any, None]:
        self._expire_offers()
        pool = self._select_pool(ingress)
        if pool is None:
            logger.debug("Device {}: no DHCP pool for requests on {}", self.device.id, ingress)
            return
        record, interface = pool
        chaddr = message.chaddr
        previous = self.offers.get(chaddr)
        if previous is not None and previous.record == record:
            address = previous.address
        elif chaddr in self.leases and self.leases[chaddr].in_subnet(record.network, record.prefix):
            address = self.leases[chaddr]
        else:
            address = yield from self._find_candidate(chaddr, record)
        if address is None:
            logger.info("Device {}: DHCP pool {}{} exhausted", self.device.id, record.network, record.prefix)
            return
        self.offers[chaddr] = Offer(
            address, message.xid, self.env.now + self.device.config.dhcp_offer_timeout, record, interface.mac
        )
        offer = DhcpPayload.reply(
            DhcpMessageType.OFFER, message.xid, chaddr, address, interface.address,
            mask=record.prefix.mask, router=record.router,
        )
        logger.debug("Device {}: DHCP OFFER {} to {}", self.device.id, address, chaddr)
        self._send(offer, interface, chaddr)

    def _acknowledge(self, message: DhcpPayload) -> None:
        self._expire_offers()
        offer = self.offers.get(message.chaddr)
        if offer is None or offer.xid != message.xid:
            logger.debug("Device {}: DHCP REQUEST from {} matches no offer", self.device.id, message.chaddr)
            return
        interface = self.device.interface(offer.interface)
        if not self.device.is_active(interface.mac):
            return
        ack = DhcpPayload.reply(
            DhcpMessageType.ACK, message.xid, message.chaddr, offer.address, interface.address,
            mask=offer.record.prefix.mask, router=offer.record.router,
            lease_time=self.device.config.dhcp_lease_time,
        )
        del self.offers[message.chaddr]
        self.leases[message.chaddr] = offer.address
        logger.debug("Device {}: DHCP ACK {} to {}", self.device.id, offer.address, message.chaddr)
        self._send(ack, interface, message.chaddr)

    def _send(self, payload: DhcpPayload, interface: Interface, chaddr: MacAddress) -> None:
        frame = _encapsulate(
            payload, interface.address, SERVER_PORT, CLIENT_PORT,
            chaddr, interface.mac, self.device.config.default_ttl,
        )
        self.device.send_frame(interface.mac, frame)


@dataclass
class _Session:
    inbox: Socket
    enabled: bool = True
    process: Optional[simpy.events.Process] = None


class DhcpClient:
    """Configures a device's routing interfaces by DHCP.

    Attributes:
        device: The client device.
        sessions: Latest session per interface link address.
        gateways: Default route installed from the last ACK, per interface.
    """

    def __init__(self, device: "Device") -> None:
        self.device = device
        self.env = device.env
        self.sessions: Dict[MacAddress, _Session] = {}
        self.gateways: Dict[MacAddress, RouteEntry] = {}
        self.socket: Optional[Socket] = None

    def enabled(self, mac: MacAddress) -> bool:
        session = self.sessions.get(mac)
        return session is not None and session.enabled

    def enable(self, mac: MacAddress) -> simpy.events.Process:
        """Start a session on the routing interface `mac`.

        A session still shutting down on that interface is waited for before
        the new one sends anything.

        Returns:
            The session process; it ends once an address is applied or the
            session is disabled.

        Raises:
            ValueError: If `mac` is not a routing interface of the device.
        """
        interface = self.device.interface(mac)
        if not interface.is_routing or interface.virtual:
            raise ValueError(f"{mac} is not a routing interface")
        current = self.sessions.get(mac)
        if current is not None and current.enabled:
            return current.process
        self._ensure_socket()
        session = _Session(inbox=self.device.sockets.open(SocketType.DGRAM))
        previous = current.process if current is not None else None
        self.sessions[mac] = session
        session.process = self.env.process(self._run(mac, session, previous))
        return session.process

    def disable(self, mac: MacAddress) -> bool:
        """Stop the session on `mac`.

        Returns:
            False if no session was running.
        """
        session = self.sessions.get(mac)
        if session is None or not session.enabled:
            return False
        session.enabled = False
        session.inbox.close()
        logger.debug("Device {}: DHCP client disabled on {}", self.device.id, mac)
        return True

    def disable_all(self) -> None:
        for mac in list(self.sessions):
            self.disable(mac)

    def _ensure_socket(self) -> None:
        if self.socket is not None and not self.socket.is_closed:
            return
        self.socket = self.device.sockets.open(SocketType.DGRAM)
        if not self.device.sockets.bind(self.socket, Ipv4Address.broadcast, CLIENT_PORT):
            raise ValueError(f"DHCP client port already bound on device {self.device.id}")
        self.env.process(self._dispatch(self.socket))

    def _dispatch(self, socket: Socket) -> Generator[simpy.events.Event, Any, None]:
        poll = self.device.config.dhcp_poll_interval
        while not socket.is_closed:
            received = yield socket.receive(poll)
            if received is None:
                continue
            try:
                message = DhcpPayload.parse(received.data)
            except ValueError as exc:
                logger.debug("Device {}: ignoring DHCP message: {}", self.device.id, exc)
                continue
            session = self.sessions.get(message.chaddr)
            if message.op == DhcpOp.BOOTREPLY and session is not None and session.enabled:
                session.inbox.deliver(message)

    def _await(
        self, session: _Session, xid: int, message_type: DhcpMessageType
    ) -> Generator[simpy.events.Event, Any, Optional[DhcpPayload]]:
        deadline = self.env.now + self.device.config.dhcp_poll_interval
        while session.enabled and self.env.now < deadline:
            message = yield session.inbox.receive(deadline - self.env.now)
            if message is None:
                return None
            if message.xid == xid and message.message_type == message_type:
                return message
        return None

    def _send(self, payload: DhcpPayload, mac: MacAddress) -> None:
        frame = _encapsulate(
            payload, Ipv4Address.unspecified, CLIENT_PORT, SERVER_PORT,
            MacAddress.broadcast, mac, self.device.config.default_ttl,
        )
        self.device.send_frame(mac, frame)

    def _run(
        self, mac: MacAddress, session: _Session, previous: Optional[simpy.events.Process]
    ) -> Generator[simpy.events.Event, Any, None]:
        if previous is not None and previous.is_alive:
            yield previous
        offer: Optional[DhcpPayload] = None
        offer_expires = 0.0
        xid = 0
        while session.enabled:
            if offer is None or self.env.now >= offer_expires:
                offer = None
                xid = self.device.sim.rng.xid()
                logger.debug("Device {}: DHCP DISCOVER on {}", self.device.id, mac)
                self._send(DhcpPayload.discover(xid, mac), mac)
                offer = yield from self._await(session, xid, DhcpMessageType.OFFER)
                if offer is None:
                    continue
                offer_expires = self.env.now + self.device.config.dhcp_offer_timeout
            logger.debug("Device {}: DHCP REQUEST {} on {}", self.device.id, offer.yiaddr, mac)
            self._send(DhcpPayload.request(xid, mac, offer.siaddr), mac)
            ack = yield from self._await(session, xid, DhcpMessageType.ACK)
            if ack is None or ack.subnet_mask is None or not session.enabled:
                continue
            self._apply(mac, ack)
            self.disable(mac)

    def _apply(self, mac: MacAddress, ack: DhcpPayload) -> None:
        prefix = mask_to_prefix(ack.subnet_mask)
        self.device.set_interface_address(mac, ack.yiaddr, prefix)
        logger.info("Device {}: DHCP configured {} as {}{}", self.device.id, mac, ack.yiaddr, prefix)
        previous = self.gateways.pop(mac, None)
        if previous is not None:
            self.device.delete_route(*previous)
        if ack.router is None:
            return
        self.device.set_default_gateway(ack.router)
        for route in self.device.routes():
            if route.prefix.length == 0 and route.next_hop == ack.router:
                self.gateways[mac] = route
                break
