"""Topology graph for network simulation.

This module defines the Topology class: the registry of every interface in a
simulation and the adjacency between them. Physical cables are edges of kind
"link"; interfaces of the same device are joined by edges of kind "device",
which is how broadcast domains are walked.
"""

from typing import Any, Callable, Generator, List, Optional, Set, Tuple

import networkx as nx
import simpy
from loguru import logger

from ethernet_sim.core.addressing import DeviceID, MacAddress
from ethernet_sim.core.frame import Frame
from ethernet_sim.core.interface import Interface

LINK = "link"
DEVICE = "device"


class Topology:
    """Interfaces and the cables between them.

    Attributes:
        env: SimPy environment.
        graph: NetworkX graph with one node per interface link address.
        link_delay: Propagation delay of one hop in seconds.
        deliver: Called as deliver(egress_mac, ingress_mac, frame) when a frame
            reaches the far end of a cable.
        link_down: Called with each link address whose cable is removed.
    """

    def __init__(
        self,
        env: simpy.Environment,
        link_delay: float,
        deliver: Callable[[MacAddress, MacAddress, Frame], None],
        link_down: Callable[[MacAddress], None],
    ) -> None:
        self.env = env
        self.graph = nx.Graph()
        self.link_delay = link_delay
        self.deliver = deliver
        self.link_down = link_down

    def add_interface(self, interface: Interface) -> None:
        """Register an interface and group it with its device's other interfaces.

        Raises:
            ValueError: If the link address is already registered.
        """
        if interface.mac in self.graph:
            raise ValueError(f"Link address {interface.mac} already registered")
        siblings = self.interfaces_of(interface.owner)
        self.graph.add_node(interface.mac, interface=interface)
        for sibling in siblings:
            self.graph.add_edge(interface.mac, sibling.mac, kind=DEVICE)

    def remove_interface(self, mac: MacAddress) -> None:
        neighbor = self.neighbor(mac)
        if neighbor is not None:
            self.disconnect(mac, neighbor)
        self.graph.remove_node(mac)

    def has_interface(self, mac: MacAddress) -> bool:
        return mac in self.graph

    def interface(self, mac: MacAddress) -> Interface:
        """Look up a registered interface.

        Raises:
            KeyError: If no interface has that link address.
        """
        if mac not in self.graph:
            raise KeyError(f"No interface {mac}")
        return self.graph.nodes[mac]["interface"]

    def interfaces_of(self, device_id: DeviceID) -> List[Interface]:
        return [
            data["interface"]
            for _, data in self.graph.nodes(data=True)
            if data["interface"].owner == device_id
        ]

    def connect(self, mac_a: MacAddress, mac_b: MacAddress) -> None:
        """Lay a cable between two interfaces of different devices.

        Raises:
            KeyError: If either interface is unknown.
            ValueError: If the interfaces share a device, either one is
                virtual or either one is already cabled.
        """
        a, b = self.interface(mac_a), self.interface(mac_b)
        if a.owner == b.owner:
            raise ValueError(f"{mac_a} and {mac_b} belong to the same device")
        if a.virtual or b.virtual:
            raise ValueError("Virtual interfaces cannot be cabled")
        for mac in (mac_a, mac_b):
            if self.is_connected(mac):
                raise ValueError(f"{mac} is already connected")
        self.graph.add_edge(mac_a, mac_b, kind=LINK)
        logger.debug("Connected {} <-> {}", mac_a, mac_b)

    def disconnect(self, mac_a: MacAddress, mac_b: MacAddress) -> bool:
        """Remove the cable between two interfaces.

        Table entries learned through either end are invalidated before this
        returns.
        """
        if not self.graph.has_edge(mac_a, mac_b) or self.graph[mac_a][mac_b]["kind"] != LINK:
            return False
        self.graph.remove_edge(mac_a, mac_b)
        logger.debug("Disconnected {} <-> {}", mac_a, mac_b)
        self.link_down(mac_a)
        self.link_down(mac_b)
        return True

    def neighbor(self, mac: MacAddress) -> Optional[MacAddress]:
        """The interface at the far end of `mac`'s cable, if any."""
        for other, data in self.graph[mac].items():
            if data["kind"] == LINK:
                return other
        return None

    def is_connected(self, mac: MacAddress) -> bool:
        return self.neighbor(mac) is not None

    def is_active(self, mac: MacAddress) -> bool:
        """Whether `mac` is up and cabled to an interface that is also up."""
        neighbor = self.neighbor(mac)
        return (
            neighbor is not None
            and self.interface(mac).is_up
            and self.interface(neighbor).is_up
        )

    def links(self) -> List[Tuple[MacAddress, MacAddress]]:
        return sorted(
            tuple(sorted((a, b)))
            for a, b, kind in self.graph.edges(data="kind")
            if kind == LINK
        )

    def broadcast_domain(self, mac: MacAddress) -> Set[MacAddress]:
        """Interfaces reached by a broadcast frame sent out of `mac`.

        The walk crosses active cables, and crosses a device only between
        bridging interfaces that are up and share the arriving VLAN.
        """
        domain: Set[MacAddress] = set()
        frontier = [mac]
        visited = {mac}
        while frontier:
            current = frontier.pop()
            if not self.is_active(current):
                continue
            arrived = self.neighbor(current)
            if arrived in visited:
                continue
            visited.add(arrived)
            domain.add(arrived)
            ingress = self.interface(arrived)
            if not ingress.is_bridging:
                continue
            for sibling, data in self.graph[arrived].items():
                other = self.interface(sibling)
                if (
                    data["kind"] == DEVICE
                    and sibling not in visited
                    and other.is_bridging
                    and other.is_up
                    and other.vlan == ingress.vlan
                ):
                    visited.add(sibling)
                    frontier.append(sibling)
        return domain

    def send(self, egress: MacAddress, frame: Frame) -> bool:
        """Put a frame on the cable of `egress`.

        Returns:
            False if the interface is not active; the frame is not sent.
        """
        if not self.is_active(egress):
            return False
        self.env.process(self._carry(egress, self.neighbor(egress), frame))
        return True

    def _carry(
        self, egress: MacAddress, ingress: MacAddress, frame: Frame
    ) -> Generator[simpy.events.Event, Any, None]:
        yield self.env.timeout(self.link_delay)
        self.deliver(egress, ingress, frame)

    def __len__(self) -> int:
        return self.graph.number_of_nodes()
