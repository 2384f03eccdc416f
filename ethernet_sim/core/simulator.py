"""Network simulator class for network simulation.

This module defines the NetworkSimulator class, which owns every device,
interface and cable of a simulation and moves frames between them on a
SimPy clock.
"""

from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import simpy
from loguru import logger

from ethernet_sim.core.addressing import DeviceID, Ipv4Address, Ipv4Prefix, MacAddress
from ethernet_sim.core.config import SimConfig
from ethernet_sim.core.device import Device
from ethernet_sim.core.enums import DeviceKind, InterfaceLayer
from ethernet_sim.core.frame import Frame
from ethernet_sim.core.interface import Interface
from ethernet_sim.core.topology import Topology
from ethernet_sim.utils.rng import AddressRNG


class NetworkSimulator:
    """Network simulation environment.

    Attributes:
        env: SimPy environment.
        config: Simulation parameters.
        rng: Seeded source of link addresses, device ids and transaction ids.
        topology: Interface registry and cables.
        metrics: Metrics computed by the last call to `calculate_metrics`.
        hooks: Callbacks keyed by event type.
    """

    def __init__(self, env: simpy.Environment, config: Optional[SimConfig] = None):
        """Initialize the network simulator.

        Args:
            env: SimPy environment.
            config: Simulation parameters; defaults are used if None.
        """
        self.env = env
        self.config = config or SimConfig()
        self.rng = AddressRNG(self.config.seed)
        self.topology = Topology(env, self.config.link_delay, self._deliver, self._invalidate)
        self._devices: Dict[DeviceID, Device] = {}
        self._owners: Dict[MacAddress, DeviceID] = {}
        self.frames_sent = 0
        self.frames_delivered = 0
        self.frame_drops: Dict[str, int] = defaultdict(int)
        self.metrics: Dict[str, Any] = {}

        self.hooks: Dict[str, List[Callable[..., Any]]] = {
            "frame_sent": [],  # frame leaves an interface
            "frame_delivered": [],  # frame reaches an interface
            "frame_dropped": [],  # frame discarded
            "sim_end": [],  # the simulation ends
        }
        self.register_hook("frame_dropped", self._count_drop)

    # Devices

    def _new_mac(self) -> MacAddress:
        mac = self.rng.mac()
        while mac in self._owners:
            mac = self.rng.mac()
        return mac

    def _new_id(self) -> DeviceID:
        device_id = self.rng.device_id()
        while device_id in self._devices:
            device_id = self.rng.device_id()
        return device_id

    def _add_interface(self, device: Device, layer: InterfaceLayer) -> Interface:
        interface = Interface(self._new_mac(), device.id, layer)
        self.topology.add_interface(interface)
        self._owners[interface.mac] = device.id
        device.add_interface(interface)
        return interface

    def create_device(self, kind: DeviceKind, coords: Tuple[float, float] = (0.0, 0.0)) -> Device:
        """Add a device built from a preset.

        Args:
            kind: PC, SERVER, ROUTER or SWITCH.
            coords: Position stored for presentation layers.

        Returns:
            The created Device object.
        """
        device = Device(self, self._new_id(), kind, coords)
        self._devices[device.id] = device

        if kind == DeviceKind.SWITCH:
            for _ in range(self.config.switch_interfaces):
                self._add_interface(device, InterfaceLayer.L2)
        else:
            count = self.config.router_interfaces if kind == DeviceKind.ROUTER else 1
            for _ in range(count):
                self._add_interface(device, InterfaceLayer.L3)
            device.add_interface(
                Interface(
                    MacAddress.loopback,
                    device.id,
                    InterfaceLayer.L3,
                    address=Ipv4Address.loopback,
                    prefix=Ipv4Prefix(32),
                    virtual=True,
                )
            )
        device.start()
        logger.debug("Created {} with {} interfaces", device, len(device.interfaces))
        return device

    def delete_device(self, device_id: DeviceID) -> bool:
        """Remove a device after tearing down its cables, sockets and tables."""
        device = self._devices.get(device_id)
        if device is None:
            return False
        for mac, interface in list(device.interfaces.items()):
            if not interface.virtual:
                self.topology.remove_interface(mac)
                del self._owners[mac]
        device.shutdown()
        del self._devices[device_id]
        logger.debug("Deleted {}", device)
        return True

    def get_device(self, device_id: DeviceID) -> Optional[Device]:
        return self._devices.get(device_id)

    def device_of(self, mac: MacAddress) -> Device:
        """The device owning the physical interface `mac`.

        Raises:
            KeyError: If no device owns that link address.
        """
        return self._devices[self._owners[mac]]

    def devices(self) -> List[Device]:
        return [self._devices[device_id] for device_id in sorted(self._devices)]

    def move_device(self, device_id: DeviceID, coords: Tuple[float, float]) -> None:
        self._devices[device_id].coords = coords

    def clear(self) -> None:
        """Delete every device."""
        for device_id in list(self._devices):
            self.delete_device(device_id)

    # Cables

    def connect(self, mac_a: MacAddress, mac_b: MacAddress) -> None:
        self.topology.connect(mac_a, mac_b)

    def disconnect(self, mac_a: MacAddress, mac_b: MacAddress) -> bool:
        return self.topology.disconnect(mac_a, mac_b)

    def links(self) -> List[Tuple[MacAddress, MacAddress]]:
        return self.topology.links()

    def link_down(self, mac: MacAddress) -> None:
        """Invalidate what both ends of `mac`'s cable learned across it."""
        self._invalidate(mac)
        neighbor = self.topology.neighbor(mac)
        if neighbor is not None:
            self._invalidate(neighbor)

    def _invalidate(self, mac: MacAddress) -> None:
        if mac in self._owners:
            self.device_of(mac).invalidate(mac)

    # Frames

    def transmit(self, egress: MacAddress, frame: Frame) -> bool:
        """Put a frame on the cable of a physical interface.

        Returns:
            False if the interface has no active cable; the frame is dropped.
        """
        if not self.topology.send(egress, frame):
            self.call_hooks("frame_dropped", self.env.now, egress, frame, "link down")
            return False
        self.frames_sent += 1
        self.call_hooks("frame_sent", self.env.now, egress, frame)
        return True

    def _deliver(self, egress: MacAddress, ingress: MacAddress, frame: Frame) -> None:
        if (
            not self.topology.has_interface(egress)
            or not self.topology.has_interface(ingress)
            or self.topology.neighbor(egress) != ingress
        ):
            self.call_hooks("frame_dropped", self.env.now, ingress, frame, "cable removed")
            return
        self.frames_delivered += 1
        self.call_hooks("frame_delivered", self.env.now, ingress, frame)
        self.device_of(ingress).receive_frame(ingress, frame)

    def _count_drop(self, time: float, mac: MacAddress, frame: Frame, reason: str) -> None:
        self.frame_drops[reason] += 1

    # Metrics and hooks

    def calculate_metrics(self) -> Dict[str, Any]:
        """Calculate frame counters.

        Returns:
            Dictionary of calculated metrics.
        """
        self.metrics["time"] = self.env.now
        self.metrics["frames_sent"] = self.frames_sent
        self.metrics["frames_delivered"] = self.frames_delivered
        self.metrics["frames_dropped"] = sum(self.frame_drops.values())
        self.metrics["frame_drops"] = dict(self.frame_drops)
        self.metrics["devices"] = {
            str(device.id): {
                "kind": device.kind.value,
                "frames_sent": device.frames_sent,
                "frames_received": device.frames_received,
                "frames_dropped": device.frames_dropped,
                "arp_entries": len(device.arp_table),
                "forwarding_entries": len(device.forwarding_table),
                "routes": len(device.routing_table),
            }
            for device in self.devices()
        }
        return self.metrics

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback function for a specific event type.

        Args:
            event_type: The type of event to register for.
            callback: The function to call when the event occurs.
        """
        if event_type not in self.hooks:
            raise ValueError(f"Unknown hook type: {event_type}")
        self.hooks[event_type].append(callback)

    def call_hooks(self, event_type: str, *args: Any, **kwargs: Any) -> None:
        """Call all registered callbacks for the given event type.

        Args:
            event_type: The type of event that occurred.
            *args, **kwargs: Arguments to pass to the callback functions.
        """
        if event_type in self.hooks:
            for callback in self.hooks[event_type]:
                callback(*args, **kwargs)

    def run(self, until: float) -> Dict[str, Any]:
        """Run the simulation up to a point in simulated time.

        Args:
            until: Simulated time to stop at.

        Returns:
            Dictionary of calculated metrics.
        """
        self.env.run(until=until)
        self.calculate_metrics()
        self.call_hooks("sim_end", self.metrics)
        return self.metrics
