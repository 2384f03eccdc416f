"""Sockets used by protocol state machines to receive datagrams.

A socket is a FIFO of delivered payloads. Receiving is a simpy process that
ends with the oldest payload, or with None once the timeout elapses or the
socket is closed, so a waiting state machine never blocks other devices.
"""

from typing import Any, Dict, Generator, List, Optional, Tuple, Union

import simpy
from loguru import logger

from ethernet_sim.core.addressing import Ipv4Address, MacAddress
from ethernet_sim.core.enums import SocketType

WILDCARD = "*"

SocketAddress = Union[MacAddress, Ipv4Address, str]
SocketKey = Tuple[SocketType, SocketAddress, int]


class Socket:
    """A typed, optionally bound receive endpoint.

    Attributes:
        env: SimPy environment.
        type: RAW, DGRAM or STREAM.
        key: Binding key, or None while unbound.
        store: Queue of delivered payloads.
        closed: Event triggered when the socket is closed.
    """

    def __init__(self, env: simpy.Environment, socket_type: SocketType) -> None:
        self.env = env
        self.type = socket_type
        self.key: Optional[SocketKey] = None
        self.store = simpy.Store(env)
        self.closed = env.event()

    @property
    def is_closed(self) -> bool:
        return self.closed.triggered

    def deliver(self, data: Any) -> bool:
        """Queue a payload unless the socket is closed."""
        if self.is_closed:
            return False
        self.store.put(data)
        return True

    def receive(self, timeout: float) -> simpy.events.Process:
        """Wait for the next payload.

        Args:
            timeout: Longest time to wait.

        Returns:
            A process whose value is the payload, or None on timeout or close.
        """
        return self.env.process(self._receive(timeout))

    def _receive(self, timeout: float) -> Generator[simpy.events.Event, Any, Any]:
        if self.is_closed:
            return None
        get = self.store.get()
        try:
            yield get | self.env.timeout(timeout) | self.closed
        finally:
            if not get.triggered:
                get.cancel()
        if get.triggered:
            return get.value
        return None

    def flush(self) -> int:
        count = len(self.store.items)
        self.store.items.clear()
        return count

    def close(self) -> None:
        self.flush()
        if not self.is_closed:
            self.closed.succeed()

    def __repr__(self) -> str:
        return f"Socket({self.type.name}, {self.key})"


class SocketTable:
    """Bindings of one device's sockets.

    RAW sockets bind to a link address, or to the wildcard to hear every raw
    delivery; their id is always 0. Several RAW sockets may share a link
    address but only one may hold the wildcard. DGRAM and STREAM sockets bind
    to an (IPv4 address, nonzero port) pair held by at most one socket.
    """

    def __init__(self, env: simpy.Environment) -> None:
        self.env = env
        self._bindings: Dict[SocketKey, List[Socket]] = {}

    def open(self, socket_type: SocketType) -> Socket:
        return Socket(self.env, socket_type)

    def bind(self, socket: Socket, address: SocketAddress, port: int = 0) -> bool:
        """Bind `socket` to an address.

        Returns:
            False if the socket is already bound, the address or port is not
            valid for its type, or the key is taken.
        """
        if socket.key is not None or socket.is_closed:
            return False
        if socket.type == SocketType.RAW:
            if not (address == WILDCARD or isinstance(address, MacAddress)):
                return False
            key = (SocketType.RAW, address, 0)
            if address == WILDCARD and self._bindings.get(key):
                return False
        else:
            if not isinstance(address, Ipv4Address) or not 0 < port <= 0xFFFF:
                return False
            key = (socket.type, address, port)
            if self._bindings.get(key):
                return False
        self._bindings.setdefault(key, []).append(socket)
        socket.key = key
        logger.debug("Bound {}", socket)
        return True

    def unbind(self, socket: Socket) -> bool:
        if socket.key is None:
            return False
        sockets = self._bindings.get(socket.key, [])
        if socket in sockets:
            sockets.remove(socket)
        if not sockets:
            self._bindings.pop(socket.key, None)
        socket.key = None
        return True

    def is_bound(self, socket_type: SocketType, address: SocketAddress, port: int = 0) -> bool:
        if socket_type == SocketType.RAW:
            port = 0
        return bool(self._bindings.get((socket_type, address, port)))

    def incoming(
        self, data: Any, socket_type: SocketType, address: SocketAddress, port: int = 0
    ) -> int:
        """Deliver a payload to the sockets bound to (type, address, port).

        RAW payloads are also delivered to the wildcard listener.

        Returns:
            The number of sockets that received the payload.
        """
        if socket_type == SocketType.RAW:
            port = 0
        targets = list(self._bindings.get((socket_type, address, port), []))
        if socket_type == SocketType.RAW and address != WILDCARD:
            targets.extend(self._bindings.get((SocketType.RAW, WILDCARD, 0), []))
        return sum(1 for socket in targets if socket.deliver(data))

    def close(self, socket: Socket) -> None:
        """Unbind, flush and close `socket`, waking any pending receive."""
        self.unbind(socket)
        socket.close()

    def close_all(self) -> None:
        for sockets in list(self._bindings.values()):
            for socket in list(sockets):
                self.close(socket)

    def __len__(self) -> int:
        return sum(len(sockets) for sockets in self._bindings.values())
