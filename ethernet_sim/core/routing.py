"""Routing table with longest-prefix match.

This module defines the RoutingTable used by every routing-capable device.
Directly connected prefixes are answered before the table is consulted; table
routes are grouped by prefix and administrative distance, and equal-cost
routes are rotated on each lookup to spread traffic across them.
"""

from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from loguru import logger

from ethernet_sim.core.addressing import Ipv4Address, Ipv4Prefix

DIRECTLY_CONNECTED_DISTANCE = 0
STATIC_DISTANCE = 1


class Route(NamedTuple):
    """A (next hop, local exit address) pair."""

    next_hop: Ipv4Address
    local: Ipv4Address


class RouteEntry(NamedTuple):
    network: Ipv4Address
    prefix: Ipv4Prefix
    next_hop: Ipv4Address
    local: Ipv4Address
    distance: int


class RoutingTable:
    """Per-device routing table.

    Attributes:
        loopback: The owner's loopback address, returned as the exit for
            destinations that are the owner's own addresses.
        local_prefixes: Callable returning (address, prefix) for each
            configured routing interface.
    """

    def __init__(
        self,
        loopback: Optional[Ipv4Address],
        local_prefixes: Callable[[], Iterable[Tuple[Ipv4Address, Ipv4Prefix]]],
    ) -> None:
        self.loopback = loopback
        self.local_prefixes = local_prefixes
        # (network, prefix length) -> distance -> routes
        self._table: Dict[Tuple[Ipv4Address, int], Dict[int, List[Route]]] = {}

    @staticmethod
    def _key(network: Ipv4Address, prefix: Ipv4Prefix) -> Tuple[Ipv4Address, int]:
        return network & prefix, prefix.length

    def set(
        self,
        network: Ipv4Address,
        prefix: Ipv4Prefix,
        next_hop: Ipv4Address,
        local: Ipv4Address,
        distance: int = STATIC_DISTANCE,
    ) -> bool:
        """Add a route.

        Args:
            network: Destination network.
            prefix: Destination prefix.
            next_hop: Gateway reachable through `local`.
            local: Address of the exit interface.
            distance: Administrative distance; lower is preferred. Values below
                1 are raised to 1, 0 being reserved for connected prefixes.

        Returns:
            False if the same pair already exists at that distance.
        """
        distance = max(STATIC_DISTANCE, distance)
        routes = self._table.setdefault(self._key(network, prefix), {}).setdefault(distance, [])
        route = Route(next_hop, local)
        if route in routes:
            return False
        routes.append(route)
        logger.debug("Route {}/{} via {} ({}) AD {}", network & prefix, prefix.length, next_hop, local, distance)
        return True

    def delete(
        self,
        network: Ipv4Address,
        prefix: Ipv4Prefix,
        next_hop: Ipv4Address,
        local: Ipv4Address,
        distance: int = STATIC_DISTANCE,
    ) -> bool:
        """Remove a single route, pruning buckets that become empty."""
        key = self._key(network, prefix)
        distances = self._table.get(key)
        if not distances or distance not in distances:
            return False
        routes = distances[distance]
        route = Route(next_hop, local)
        if route not in routes:
            return False
        routes.remove(route)
        if not routes:
            del distances[distance]
            if not distances:
                del self._table[key]
        return True

    def get(
        self, dest: Ipv4Address, remote_only: bool = False, rotate: bool = True
    ) -> Optional[List[Route]]:
        """Look up the best routes to `dest`.

        Args:
            dest: Destination address.
            remote_only: Skip the directly connected checks.
            rotate: Move the returned top route to the back of its list, so
                the next lookup prefers the following equal-cost route.

        Returns:
            The lowest-distance routes of the longest matching prefix, in the
            order to try them, or None if nothing matches.
        """
        if not remote_only:
            local = [(address, prefix) for address, prefix in self.local_prefixes()
                     if not address.is_unspecified()]
            if self.loopback is not None:
                if dest == self.loopback or any(dest == address for address, _ in local):
                    return [Route(dest, self.loopback)]
            for address, prefix in local:
                if dest.in_subnet(address, prefix):
                    return [Route(dest, address)]

        for length in range(32, -1, -1):
            distances = self._table.get((dest & Ipv4Prefix(length), length))
            if distances:
                routes = distances[min(distances)]
                best = list(routes)
                if rotate:
                    routes.append(routes.pop(0))
                return best
        return None

    def routes(self) -> List[RouteEntry]:
        """Every non-local route as (network, prefix, next hop, exit, distance)."""
        return [
            RouteEntry(network, Ipv4Prefix(length), route.next_hop, route.local, distance)
            for (network, length), distances in sorted(self._table.items())
            for distance, routes in sorted(distances.items())
            for route in routes
        ]

    def __len__(self) -> int:
        return sum(len(routes) for d in self._table.values() for routes in d.values())
