"""Device class for network simulation.

This module defines the Device class, which represents a host, server,
router or switch. There is one class for all of them: what a device does is
selected by its capability set, and every received frame goes through the
same pipeline (classification, learning, protocol dispatch, forwarding).
"""

from collections import deque
from dataclasses import dataclass
from itertools import count
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, Generator, List, Optional, Tuple

import simpy
from loguru import logger

from ethernet_sim.core.addressing import DeviceID, Ipv4Address, Ipv4Prefix, MacAddress
from ethernet_sim.core.enums import (
    Capability,
    DeviceKind,
    EtherType,
    InterfaceStatus,
    IpProtocol,
    SendResult,
    SocketType,
)
from ethernet_sim.core.forwarding import ForwardingTable
from ethernet_sim.core.frame import Frame
from ethernet_sim.core.interface import Interface, InterfaceInfo
from ethernet_sim.core.routing import STATIC_DISTANCE, Route, RouteEntry, RoutingTable
from ethernet_sim.core.sockets import SocketTable
from ethernet_sim.protocols.arp import ArpEntry, ArpOp, ArpPacket, ArpTable, HardwareType
from ethernet_sim.protocols.dhcp import DhcpClient, DhcpRecord, DhcpServer
from ethernet_sim.protocols.icmp import IcmpDatagram, IcmpType
from ethernet_sim.protocols.ipv4 import Ipv4Packet
from ethernet_sim.protocols.udp import UdpDatagram, UdpMessage
from ethernet_sim.utils.metrics import PingSummary

if TYPE_CHECKING:
    from ethernet_sim.core.simulator import NetworkSimulator

PRESETS: Dict[DeviceKind, Capability] = {
    DeviceKind.PC: Capability.ROUTING | Capability.LOOPBACK | Capability.DHCP_CLIENT,
    DeviceKind.SERVER: (
        Capability.ROUTING | Capability.LOOPBACK | Capability.DHCP_CLIENT | Capability.DHCP_SERVER
    ),
    DeviceKind.ROUTER: (
        Capability.ROUTING | Capability.LOOPBACK | Capability.DHCP_SERVER | Capability.FORWARDING
    ),
    DeviceKind.SWITCH: Capability.FORWARDING,
}

EchoResult = Optional[Tuple[IcmpDatagram, Ipv4Packet]]


@dataclass
class FrameVerdict:
    """What to do with a received frame.

    Attributes:
        process: Hand the payload to the protocol handlers.
        forward: Bridge the frame out of other interfaces.
    """

    process: bool
    forward: bool


class Device:
    """Represents a network device.

    Attributes:
        sim: The owning simulation.
        env: SimPy environment.
        id: Unique identifier for the device.
        kind: Preset the device was created from.
        capabilities: Behaviour switches.
        coords: Position, stored for presentation layers.
        interfaces: Interfaces keyed by link address, loopback included.
        loopback: The loopback interface, if the device has one.
        forwarding_table: Learned link address to egress interface.
        arp_table: Resolved network addresses.
        routing_table: Routes to remote networks.
        sockets: Socket bindings of this device.
        outgoing: Recently transmitted IPv4 packets, oldest first.
    """

    def __init__(
        self,
        sim: "NetworkSimulator",
        device_id: DeviceID,
        kind: DeviceKind,
        coords: Tuple[float, float] = (0.0, 0.0),
        capabilities: Optional[Capability] = None,
    ) -> None:
        self.sim = sim
        self.env = sim.env
        self.config = sim.config
        self.id = device_id
        self.kind = kind
        self.capabilities = PRESETS[kind] if capabilities is None else capabilities
        self.coords = coords
        self.interfaces: Dict[MacAddress, Interface] = {}
        self.loopback: Optional[Interface] = None
        self.forwarding_table = ForwardingTable(self.own_macs)
        self.arp_table = ArpTable(self.local_addresses)
        self.routing_table = RoutingTable(
            Ipv4Address.loopback if Capability.LOOPBACK in self.capabilities else None,
            self.local_prefixes,
        )
        self.sockets = SocketTable(self.env)
        self.outgoing: Deque[Ipv4Packet] = deque(maxlen=self.config.outgoing_log_size)
        self.dhcp_server = DhcpServer(self) if Capability.DHCP_SERVER in self.capabilities else None
        self.dhcp_client = DhcpClient(self) if Capability.DHCP_CLIENT in self.capabilities else None
        self.frames_received = 0
        self.frames_sent = 0
        self.frames_dropped = 0
        self._arp_waiters: Dict[Ipv4Address, List[simpy.events.Event]] = {}
        self._echo_ids = count(1)

    # Interfaces

    def add_interface(self, interface: Interface) -> None:
        self.interfaces[interface.mac] = interface
        if interface.virtual:
            self.loopback = interface

    def interface(self, mac: MacAddress) -> Interface:
        """Look up one of this device's interfaces.

        Raises:
            KeyError: If the device has no such interface.
        """
        if mac not in self.interfaces:
            raise KeyError(f"Device {self.id} has no interface {mac}")
        return self.interfaces[mac]

    def own_macs(self) -> List[MacAddress]:
        return list(self.interfaces)

    def routing_ifaces(self) -> List[Interface]:
        """Physical routing interfaces; the loopback is not one of them."""
        return [i for i in self.interfaces.values() if i.is_routing and not i.virtual]

    def bridging_ifaces(self) -> List[Interface]:
        return [i for i in self.interfaces.values() if i.is_bridging]

    def configured_interfaces(self) -> List[Interface]:
        return [i for i in self.routing_ifaces() if not i.address.is_unspecified()]

    @property
    def has_routing(self) -> bool:
        return bool(self.routing_ifaces())

    def local_addresses(self) -> List[Ipv4Address]:
        addresses = [i.address for i in self.configured_interfaces()]
        if self.loopback is not None:
            addresses.append(self.loopback.address)
        return addresses

    def local_prefixes(self) -> List[Tuple[Ipv4Address, Ipv4Prefix]]:
        return [(i.address, i.prefix) for i in self.routing_ifaces()]

    def interface_for_address(self, address: Ipv4Address) -> Optional[Interface]:
        """The interface holding `address`, the loopback for its own address."""
        if self.loopback is not None and address == self.loopback.address:
            return self.loopback
        for interface in self.configured_interfaces():
            if interface.address == address:
                return interface
        return None

    def owns(self, address: Ipv4Address) -> bool:
        return self.interface_for_address(address) is not None

    def is_active(self, mac: MacAddress) -> bool:
        """Whether frames can leave through `mac`."""
        interface = self.interface(mac)
        if interface.virtual:
            return interface.is_up
        return self.sim.topology.is_active(mac)

    def _info(self, interface: Interface) -> InterfaceInfo:
        return InterfaceInfo(
            mac=interface.mac,
            up=interface.is_up,
            active=self.is_active(interface.mac),
            vlan=interface.vlan if interface.is_bridging else None,
            address=interface.address if interface.is_routing else None,
            prefix=interface.prefix if interface.is_routing else None,
        )

    def bridging_interfaces(self) -> List[InterfaceInfo]:
        return [self._info(i) for i in self.bridging_ifaces()]

    def routing_interfaces(self) -> List[InterfaceInfo]:
        return [self._info(i) for i in self.routing_ifaces()]

    def set_interface_address(self, mac: MacAddress, address: Ipv4Address, prefix: Ipv4Prefix) -> None:
        """Assign an address to a routing interface.

        Raises:
            ValueError: If `mac` is not a physical routing interface.
        """
        interface = self.interface(mac)
        if not interface.is_routing or interface.virtual:
            raise ValueError(f"{mac} is not a routing interface")
        interface.address = address
        interface.prefix = prefix
        logger.debug("Device {}: {} is {}{}", self.id, mac, address, prefix)

    def set_interface_status(self, mac: MacAddress, up: bool) -> None:
        """Bring an interface up or down.

        Taking an interface down forgets everything learned across its link,
        at both ends.
        """
        interface = self.interface(mac)
        interface.status = InterfaceStatus.UP if up else InterfaceStatus.DOWN
        if not up:
            self.sim.link_down(mac)

    def set_vlan(self, mac: MacAddress, vlan: int) -> None:
        interface = self.interface(mac)
        if not interface.is_bridging:
            raise ValueError(f"{mac} is not a bridging interface")
        interface.vlan = vlan

    def invalidate(self, mac: MacAddress) -> None:
        """Drop forwarding and ARP entries learned through `mac`."""
        forgotten = self.forwarding_table.clear_value(mac) + self.arp_table.clear_value(mac)
        if forgotten:
            logger.debug("Device {}: forgot {} entries learned on {}", self.id, forgotten, mac)

    # Routing

    def _exit_for(self, next_hop: Ipv4Address) -> Optional[Ipv4Address]:
        for interface in self.configured_interfaces():
            if next_hop.in_subnet(interface.address, interface.prefix):
                return interface.address
        return None

    def set_route(
        self,
        network: Ipv4Address,
        prefix: Ipv4Prefix,
        next_hop: Ipv4Address,
        local: Optional[Ipv4Address] = None,
        distance: int = STATIC_DISTANCE,
    ) -> bool:
        """Add a route.

        Args:
            network: Destination network.
            prefix: Destination prefix.
            next_hop: Gateway address.
            local: Exit interface address; by default the interface whose
                subnet holds `next_hop`.
            distance: Administrative distance.

        Returns:
            False if no interface reaches the gateway or the route exists.
        """
        local = local if local is not None else self._exit_for(next_hop)
        if local is None:
            return False
        return self.routing_table.set(network, prefix, next_hop, local, distance)

    def delete_route(
        self,
        network: Ipv4Address,
        prefix: Ipv4Prefix,
        next_hop: Ipv4Address,
        local: Optional[Ipv4Address] = None,
        distance: int = STATIC_DISTANCE,
    ) -> bool:
        local = local if local is not None else self._exit_for(next_hop)
        if local is None:
            return False
        return self.routing_table.delete(network, prefix, next_hop, local, distance)

    def routes(self) -> List[RouteEntry]:
        return self.routing_table.routes()

    def set_default_gateway(self, gateway: Ipv4Address) -> bool:
        return self.set_route(Ipv4Address.unspecified, Ipv4Prefix(0), gateway)

    # DHCP

    def _require_client(self) -> DhcpClient:
        if self.dhcp_client is None:
            raise ValueError(f"Device {self.id} is not a DHCP client")
        return self.dhcp_client

    def _require_server(self) -> DhcpServer:
        if self.dhcp_server is None:
            raise ValueError(f"Device {self.id} is not a DHCP server")
        return self.dhcp_server

    def enable_dhcp_client(self, mac: MacAddress) -> simpy.events.Process:
        return self._require_client().enable(mac)

    def disable_dhcp_client(self, mac: MacAddress) -> bool:
        return self._require_client().disable(mac)

    def dhcp_client_enabled(self, mac: MacAddress) -> bool:
        return self.dhcp_client is not None and self.dhcp_client.enabled(mac)

    def add_dhcp_record(self, network: Ipv4Address, prefix: Ipv4Prefix, router: Ipv4Address) -> bool:
        return self._require_server().add_record(network, prefix, router)

    def remove_dhcp_record(self, network: Ipv4Address, prefix: Ipv4Prefix) -> bool:
        return self._require_server().remove_record(network, prefix)

    def dhcp_records(self) -> List[DhcpRecord]:
        return self.dhcp_server.records() if self.dhcp_server is not None else []

    def start(self) -> None:
        """Start the device's long-running services."""
        if self.dhcp_server is not None:
            self.dhcp_server.start()

    def shutdown(self) -> None:
        """Stop every service and forget all learned state."""
        if self.dhcp_client is not None:
            self.dhcp_client.disable_all()
        if self.dhcp_server is not None:
            self.dhcp_server.stop()
        self.sockets.close_all()
        for mac in self.interfaces:
            self.invalidate(mac)

    # Frames

    def send_frame(self, egress: MacAddress, frame: Frame) -> bool:
        """Transmit a frame out of one of this device's interfaces.

        Frames sent out of the loopback come straight back in on it.
        """
        interface = self.interface(egress)
        if interface.virtual:
            if not interface.is_up:
                return False
            self.frames_sent += 1
            self.sim.call_hooks("frame_sent", self.env.now, egress, frame)
            self.env.process(self._loop(egress, frame))
            return True
        if self.sim.transmit(egress, frame):
            self.frames_sent += 1
            return True
        return False

    def _loop(self, mac: MacAddress, frame: Frame) -> Generator[simpy.events.Event, Any, None]:
        yield self.env.timeout(0)
        self.sim.call_hooks("frame_delivered", self.env.now, mac, frame)
        self.receive_frame(mac, frame)

    def drop(self, mac: MacAddress, frame: Frame, reason: str) -> None:
        self.frames_dropped += 1
        logger.debug("Device {}: dropped {} on {}: {}", self.id, frame, mac, reason)
        self.sim.call_hooks("frame_dropped", self.env.now, mac, frame, reason)

    def classify(self, frame: Frame) -> FrameVerdict:
        verdict = FrameVerdict(process=False, forward=Capability.FORWARDING in self.capabilities)
        if frame.dest_mac in self.interfaces:
            verdict.forward = False
            verdict.process = True
        if frame.dest_mac.is_broadcast():
            verdict.process = True
        return verdict

    def receive_frame(self, ingress_mac: MacAddress, frame: Frame) -> None:
        """Handle a frame arriving on `ingress_mac`.

        Raises:
            KeyError: If `ingress_mac` is not an interface of this device.
        """
        ingress = self.interface(ingress_mac)
        if not ingress.is_up:
            self.drop(ingress_mac, frame, "interface down")
            return
        self.frames_received += 1
        verdict = self.classify(frame)

        src = frame.src_mac
        if (
            ingress.is_bridging
            and src not in self.interfaces
            and not src.is_broadcast()
            and not src.is_loopback()
        ):
            self.forwarding_table.set(src, ingress_mac)

        if verdict.process:
            try:
                self._dispatch(ingress, frame, verdict)
            except ValueError as exc:
                verdict.forward = False
                self.drop(ingress_mac, frame, f"malformed: {exc}")

        if verdict.forward:
            self._forward(ingress, frame)
        elif not verdict.process:
            self.drop(ingress_mac, frame, "not addressed to this device")

    def _dispatch(self, ingress: Interface, frame: Frame, verdict: FrameVerdict) -> None:
        if not self.has_routing:
            return
        if frame.ethertype == EtherType.ARP:
            self._handle_arp(ingress, ArpPacket.parse(frame.payload), verdict)
        elif frame.ethertype == EtherType.IPV4:
            packet = Ipv4Packet.parse(frame.payload)
            if not packet.verify_checksum():
                verdict.forward = False
                self.drop(ingress.mac, frame, "bad IPv4 checksum")
                return
            self._handle_ipv4(ingress, packet)

    def _forward(self, ingress: Interface, frame: Frame) -> None:
        if frame.dest_mac.is_broadcast():
            for interface in self.bridging_ifaces():
                if (
                    interface.mac != ingress.mac
                    and interface.vlan == ingress.vlan
                    and self.is_active(interface.mac)
                ):
                    self.send_frame(interface.mac, frame)
            return
        egress = self.forwarding_table.get(frame.dest_mac)
        if egress is None or egress == ingress.mac or not self.is_active(egress):
            self.drop(ingress.mac, frame, "unknown destination")
            return
        self.send_frame(egress, frame)

    # ARP

    def _handle_arp(self, ingress: Interface, packet: ArpPacket, verdict: FrameVerdict) -> None:
        if packet.htype != HardwareType.ETHERNET or packet.ptype != EtherType.IPV4:
            return
        merged = False
        if self.arp_table.has(packet.src_pa):
            self.arp_table.set(packet.src_pa, packet.src_ha, ingress.mac)
            merged = True
        target = self.interface_for_address(packet.dest_pa)
        if target is not None and not target.virtual:
            if not merged:
                self.arp_table.set(packet.src_pa, packet.src_ha, ingress.mac)
            if packet.op == ArpOp.REQUEST:
                verdict.forward = False
                reply = packet.make_reply(target.mac)
                self.send_frame(
                    ingress.mac,
                    Frame(packet.src_ha, ingress.mac, EtherType.ARP, reply.to_bytes()),
                )
        if self.arp_table.has(packet.src_pa):
            self._wake_arp_waiters(packet.src_pa)

    def _wake_arp_waiters(self, address: Ipv4Address) -> None:
        for event in self._arp_waiters.pop(address, []):
            if not event.triggered:
                event.succeed()

    def send_arp_request(self, target: Ipv4Address, interface: Interface) -> bool:
        """Broadcast a request for `target` out of `interface`."""
        if interface.virtual or not self.is_active(interface.mac):
            return False
        request = ArpPacket.request(interface.mac, interface.address, target)
        return self.send_frame(
            interface.mac,
            Frame(MacAddress.broadcast, interface.mac, EtherType.ARP, request.to_bytes()),
        )

    def wait_for_arp(self, address: Ipv4Address, timeout: float) -> simpy.events.Process:
        """Wait until `address` is resolved.

        Returns:
            A process whose value is the ARP entry, or None after `timeout`.
        """
        return self.env.process(self._wait_for_arp(address, timeout))

    def _wait_for_arp(
        self, address: Ipv4Address, timeout: float
    ) -> Generator[simpy.events.Event, Any, Optional[ArpEntry]]:
        entry = self.arp_table.get(address)
        if entry is not None:
            return entry
        event = self.env.event()
        self._arp_waiters.setdefault(address, []).append(event)
        try:
            yield event | self.env.timeout(timeout)
        finally:
            waiters = self._arp_waiters.get(address, [])
            if event in waiters:
                waiters.remove(event)
            if not waiters:
                self._arp_waiters.pop(address, None)
        return self.arp_table.get(address)

    # IPv4

    def _is_local(self, address: Ipv4Address) -> bool:
        return address.is_broadcast() or self.owns(address)

    def _handle_ipv4(self, ingress: Interface, packet: Ipv4Packet) -> None:
        if not self._is_local(packet.dest):
            if Capability.FORWARDING not in self.capabilities:
                return
            if packet.ttl <= 1:
                logger.debug("Device {}: TTL expired for {}", self.id, packet)
                self._send_icmp_error(IcmpDatagram.time_exceeded(packet), packet)
                return
            self.try_encapsulate_and_send(packet.copy_and_decrement())
            return

        owner = self.interface_for_address(packet.dest)
        raw_key = owner.mac if owner is not None else ingress.mac
        self.sockets.incoming(packet.to_bytes(), SocketType.RAW, raw_key)

        if packet.protocol == IpProtocol.ICMP:
            self._handle_icmp(packet)
        elif packet.protocol == IpProtocol.UDP:
            self._handle_udp(ingress, packet)

    def _handle_icmp(self, packet: Ipv4Packet) -> None:
        datagram = IcmpDatagram.parse(packet.data)
        if not datagram.verify_checksum():
            logger.debug("Device {}: bad ICMP checksum from {}", self.id, packet.src)
            return
        if not datagram.is_echo_request:
            return
        source = packet.dest
        if source.is_broadcast():
            source = self._source_for(packet.src)
            if source is None:
                return
        reply = IcmpDatagram.echo_reply(datagram)
        self.try_encapsulate_and_send(
            Ipv4Packet(0, 0, self.config.default_ttl, IpProtocol.ICMP, source, packet.src, reply.to_bytes())
        )

    def _handle_udp(self, ingress: Interface, packet: Ipv4Packet) -> None:
        datagram = UdpDatagram.parse(packet.data)
        if not datagram.verify_checksum(packet.src, packet.dest):
            logger.debug("Device {}: bad UDP checksum from {}", self.id, packet.src)
            return
        message = UdpMessage(datagram.data, packet.src, datagram.src_port, ingress.mac)
        delivered = self.sockets.incoming(message, SocketType.DGRAM, packet.dest, datagram.dest_port)
        if not delivered:
            logger.debug("Device {}: nothing listening on {}:{}", self.id, packet.dest, datagram.dest_port)

    def _source_for(self, dest: Ipv4Address, rotate: bool = True) -> Optional[Ipv4Address]:
        """Address a packet to `dest` should leave from."""
        if self.owns(dest):
            return dest
        routes = self.routing_table.get(dest, rotate=rotate)
        if routes:
            return routes[0].local
        return None

    @staticmethod
    def _is_icmp_error(packet: Ipv4Packet) -> bool:
        return (
            packet.protocol == IpProtocol.ICMP
            and len(packet.data) > 0
            and packet.data[0] in (IcmpType.UNREACHABLE, IcmpType.TIME_EXCEEDED)
        )

    def _send_icmp_error(self, error: IcmpDatagram, offending: Ipv4Packet) -> None:
        """Report `offending` back to its source.

        Nothing is sent about ICMP errors, about packets without a source
        address, or when the source cannot be routed to.
        """
        if self._is_icmp_error(offending) or offending.src.is_unspecified():
            return
        source = self._source_for(offending.src)
        if source is None:
            return
        packet = Ipv4Packet(0, 0, self.config.default_ttl, IpProtocol.ICMP, source, offending.src, error.to_bytes())
        self.try_encapsulate_and_send(packet, report_errors=False)

    def try_encapsulate_and_send(self, packet: Ipv4Packet, report_errors: bool = True) -> SendResult:
        """Route, resolve and transmit an IPv4 packet.

        Args:
            packet: Packet to send, TTL already adjusted.
            report_errors: Send an ICMP error to the packet's source on failure.

        Returns:
            SENT when a frame left the device, otherwise why it did not.
        """
        if not self.has_routing:
            return SendResult.NET_UNREACHABLE
        if packet.ttl <= 0:
            if report_errors:
                self._send_icmp_error(IcmpDatagram.time_exceeded(packet), packet)
            return SendResult.TIME_EXCEEDED

        routes = self.routing_table.get(packet.dest)
        route: Optional[Route] = routes[0] if routes else None
        exit_interface = self.interface_for_address(route.local) if route is not None else None
        if route is None or exit_interface is None or not self.is_active(exit_interface.mac):
            logger.debug("Device {}: no route to {}", self.id, packet.dest)
            if report_errors:
                self._send_icmp_error(IcmpDatagram.net_unreachable(packet), packet)
            return SendResult.NET_UNREACHABLE

        entry = self.arp_table.get(route.next_hop)
        if entry is not None:
            frame = Frame(entry.remote_mac, exit_interface.mac, EtherType.IPV4, packet.to_bytes())
            self.send_frame(exit_interface.mac, frame)
            self.outgoing.append(packet)
            return SendResult.SENT

        self.send_arp_request(route.next_hop, exit_interface)
        if route.next_hop == packet.dest:
            result, error = SendResult.HOST_UNREACHABLE, IcmpDatagram.host_unreachable(packet)
        else:
            result, error = SendResult.NET_UNREACHABLE, IcmpDatagram.net_unreachable(packet)
        logger.debug("Device {}: {} unresolved, {}", self.id, route.next_hop, result.name)
        if report_errors:
            self._send_icmp_error(error, packet)
        return result

    # ICMP echo

    def icmp_echo(
        self,
        dest: Ipv4Address,
        ttl: Optional[int] = None,
        sequence: int = 0,
        timeout: Optional[float] = None,
    ) -> simpy.events.Process:
        """Send one echo request and wait for its answer.

        Args:
            dest: Address to ping.
            ttl: TTL of the request, the configured default if None.
            sequence: Sequence number carried by the request.
            timeout: Overall wait, the configured echo timeout if None.

        Returns:
            A process whose value is (datagram, packet) for the echo reply or
            ICMP error answering the request, or None if nothing did.
        """
        return self.env.process(self._icmp_echo(dest, ttl, sequence, timeout))

    def _icmp_echo(
        self, dest: Ipv4Address, ttl: Optional[int], sequence: int, timeout: Optional[float]
    ) -> Generator[simpy.events.Event, Any, EchoResult]:
        if not self.has_routing:
            return None
        ttl = self.config.default_ttl if ttl is None else ttl
        timeout = self.config.echo_timeout if timeout is None else timeout

        source = self._source_for(dest, rotate=False)
        if source is None:
            configured = self.configured_interfaces()
            source = configured[0].address if configured else Ipv4Address.unspecified
        # answers are delivered to the interface holding the source address
        owner = self.interface_for_address(source) or self.routing_ifaces()[0]

        request = IcmpDatagram.echo_request(next(self._echo_ids) & 0xFFFF, sequence)
        packet = Ipv4Packet(0, 0, ttl, IpProtocol.ICMP, source, dest, request.to_bytes())

        socket = self.sockets.open(SocketType.RAW)
        self.sockets.bind(socket, owner.mac)
        try:
            routes = self.routing_table.get(dest, rotate=False)
            if routes and not self.owns(dest):
                next_hop = routes[0].next_hop
                exit_interface = self.interface_for_address(routes[0].local)
                if self.arp_table.get(next_hop) is None and exit_interface is not None:
                    self.send_arp_request(next_hop, exit_interface)
                    yield self.wait_for_arp(next_hop, self.config.arp_timeout)

            self.try_encapsulate_and_send(packet)
            deadline = self.env.now + timeout
            while self.env.now < deadline:
                data = yield socket.receive(deadline - self.env.now)
                if data is None:
                    break
                answer = Ipv4Packet.parse(data)
                if answer.protocol != IpProtocol.ICMP:
                    continue
                try:
                    datagram = IcmpDatagram.parse(answer.data)
                except ValueError as exc:
                    logger.debug("Device {}: ignoring ICMP from {}: {}", self.id, answer.src, exc)
                    continue
                if datagram.matches_request(request) and answer.src == dest and answer.dest == source:
                    return datagram, answer
                if datagram.embeds(request):
                    return datagram, answer
            return None
        finally:
            self.sockets.close(socket)

    def ping(
        self,
        dest: Ipv4Address,
        count: Optional[int] = None,
        ttl: Optional[int] = None,
        on_response: Optional[Callable[[int, IcmpDatagram, Ipv4Packet, float], None]] = None,
        on_error: Optional[Callable[[int, str], None]] = None,
        on_summary: Optional[Callable[[PingSummary], None]] = None,
    ) -> simpy.events.Process:
        """Echo `dest` once per ping interval.

        Args:
            dest: Address to ping.
            count: Number of echoes; None pings until the process is
                interrupted.
            ttl: TTL of each request.
            on_response: Called with (sequence, datagram, packet, rtt) for
                each reply.
            on_error: Called with (sequence, description) for each failure.
            on_summary: Called with the summary when pinging stops.

        Returns:
            A process whose value is the PingSummary.
        """
        return self.env.process(self._ping(dest, count, ttl, on_response, on_error, on_summary))

    def _ping(self, dest, count, ttl, on_response, on_error, on_summary):
        summary = PingSummary(dest)
        sequence = 0
        try:
            while count is None or sequence < count:
                started = self.env.now
                result = yield self.icmp_echo(dest, ttl, sequence)
                if result is not None and result[0].is_echo_reply:
                    rtt = self.env.now - started
                    summary.record_hit(rtt)
                    if on_response is not None:
                        on_response(sequence, result[0], result[1], rtt)
                else:
                    reason = result[0].describe() if result is not None else "request timed out"
                    summary.record_miss(reason)
                    if on_error is not None:
                        on_error(sequence, reason)
                sequence += 1
                remaining = self.config.ping_interval - (self.env.now - started)
                if (count is None or sequence < count) and remaining > 0:
                    yield self.env.timeout(remaining)
        except simpy.Interrupt:
            logger.debug("Device {}: ping {} stopped after {} echoes", self.id, dest, summary.sent)
        logger.info("Device {}: ping {}", self.id, summary)
        if on_summary is not None:
            on_summary(summary)
        return summary

    def __repr__(self) -> str:
        return f"Device({self.id}, {self.kind.value})"
