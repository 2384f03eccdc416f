"""Forwarding table (MAC learning)."""

from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ethernet_sim.core.addressing import MacAddress


class ForwardingTable:
    """Learned mapping from destination link address to egress link address.

    Attributes:
        own_macs: Callable returning the owner's interface link addresses.
            Destinations in that set are never stored.
    """

    def __init__(self, own_macs: Callable[[], Iterable[MacAddress]]) -> None:
        self.own_macs = own_macs
        self._table: Dict[MacAddress, MacAddress] = {}

    def set(self, destination: MacAddress, egress: MacAddress) -> bool:
        """Learn that `destination` is reachable through `egress`.

        Returns:
            False if the entry would point at one of the owner's own interfaces.
        """
        if destination == egress or destination in set(self.own_macs()):
            return False
        self._table[destination] = egress
        return True

    def get(self, destination: MacAddress) -> Optional[MacAddress]:
        return self._table.get(destination)

    def has(self, destination: MacAddress) -> bool:
        return destination in self._table

    def delete(self, destination: MacAddress) -> bool:
        return self._table.pop(destination, None) is not None

    def find(self, egress: MacAddress) -> List[MacAddress]:
        """Destinations currently learned through `egress`."""
        return [dest for dest, out in self._table.items() if out == egress]

    def clear_value(self, egress: MacAddress) -> int:
        """Forget every destination learned through `egress`."""
        doomed = self.find(egress)
        for destination in doomed:
            del self._table[destination]
        return len(doomed)

    def entries(self) -> List[Tuple[MacAddress, MacAddress]]:
        return sorted(self._table.items())

    def __len__(self) -> int:
        return len(self._table)
