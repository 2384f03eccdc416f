"""Frame capture built on the simulator hooks."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Union

from ethernet_sim.core.addressing import MacAddress
from ethernet_sim.core.enums import EtherType
from ethernet_sim.core.frame import Frame

if TYPE_CHECKING:
    from ethernet_sim.core.simulator import NetworkSimulator


@dataclass(frozen=True)
class CapturedFrame:
    """One observed frame event.

    Attributes:
        time: Simulated time of the event.
        event: "sent", "delivered" or "dropped".
        mac: Egress interface for sent frames, ingress interface otherwise.
        frame: The frame.
        reason: Why a dropped frame was dropped.
    """

    time: float
    event: str
    mac: MacAddress
    frame: Frame
    reason: Optional[str] = None


class FrameCapture:
    """Records frames while running.

    Attributes:
        running: Whether events are currently recorded.
        frames: Recorded events in the order they happened.
    """

    def __init__(self, simulator: "NetworkSimulator", running: bool = True):
        self.running = running
        self.frames: List[CapturedFrame] = []
        simulator.register_hook("frame_sent", self._on_sent)
        simulator.register_hook("frame_delivered", self._on_delivered)
        simulator.register_hook("frame_dropped", self._on_dropped)

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False

    def clear(self) -> None:
        self.frames.clear()

    def _record(self, entry: CapturedFrame) -> None:
        if self.running:
            self.frames.append(entry)

    def _on_sent(self, time: float, mac: MacAddress, frame: Frame) -> None:
        self._record(CapturedFrame(time, "sent", mac, frame))

    def _on_delivered(self, time: float, mac: MacAddress, frame: Frame) -> None:
        self._record(CapturedFrame(time, "delivered", mac, frame))

    def _on_dropped(self, time: float, mac: MacAddress, frame: Frame, reason: str) -> None:
        self._record(CapturedFrame(time, "dropped", mac, frame, reason))

    def filter(
        self,
        ethertype: Optional[Union[EtherType, int]] = None,
        event: Optional[str] = None,
    ) -> List[CapturedFrame]:
        """Recorded events matching an ether type and/or event name."""
        return [
            entry
            for entry in self.frames
            if (ethertype is None or int(entry.frame.ethertype) == int(ethertype))
            and (event is None or entry.event == event)
        ]

    def __len__(self) -> int:
        return len(self.frames)
