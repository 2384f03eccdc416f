"""Metrics utilities for network simulation.

This module provides ping statistics and helpers for writing simulation
metrics to disk.
"""

import csv
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from ethernet_sim.core.addressing import Ipv4Address


@dataclass
class PingSummary:
    """Outcome of a ping run.

    Attributes:
        dest: Address that was pinged.
        sent: Echo requests attempted.
        received: Echo replies matched to a request.
        rtts: Round-trip time of every matched reply, in seconds.
        errors: Description of each failed echo.
    """

    dest: Ipv4Address
    sent: int = 0
    received: int = 0
    rtts: List[float] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def record_hit(self, rtt: float) -> None:
        self.sent += 1
        self.received += 1
        self.rtts.append(rtt)

    def record_miss(self, reason: str) -> None:
        self.sent += 1
        self.errors.append(reason)

    @property
    def lost(self) -> int:
        return self.sent - self.received

    @property
    def loss_rate(self) -> float:
        return self.lost / self.sent if self.sent else 0.0

    def rtt_stats(self) -> Dict[str, Optional[float]]:
        """Mean, minimum and maximum round-trip time (None without replies)."""
        if not self.rtts:
            return {"mean": None, "min": None, "max": None}
        rtts = np.array(self.rtts)
        return {
            "mean": float(np.mean(rtts)),
            "min": float(np.min(rtts)),
            "max": float(np.max(rtts)),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dest": str(self.dest),
            "sent": self.sent,
            "received": self.received,
            "loss_rate": self.loss_rate,
            "rtt": self.rtt_stats(),
            "errors": list(self.errors),
        }

    def __str__(self) -> str:
        stats = self.rtt_stats()
        line = (
            f"{self.dest}: {self.sent} sent, {self.received} received, "
            f"{self.loss_rate * 100:.0f}% loss"
        )
        if stats["mean"] is not None:
            line += (
                f", rtt min/avg/max = {stats['min'] * 1000:.1f}/"
                f"{stats['mean'] * 1000:.1f}/{stats['max'] * 1000:.1f} ms"
            )
        return line


def save_metrics_to_json(
    metrics: Dict[str, Any], filename: str = "results/metrics.json"
) -> None:
    """Save metrics to a JSON file.

    Args:
        metrics: Dictionary of metrics to save.
        filename: Output filename.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(filename, "w") as f:
        json.dump(metrics, f, indent=2, default=str)


def save_ping_summaries_to_csv(
    summaries: List[PingSummary], filename: str = "results/ping.csv"
) -> None:
    """Save one row per ping run to a CSV file.

    Args:
        summaries: Completed ping summaries.
        filename: Output filename.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(filename, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["Destination", "Sent", "Received", "Loss Rate", "Mean RTT"])
        for summary in summaries:
            writer.writerow(
                [
                    str(summary.dest),
                    summary.sent,
                    summary.received,
                    summary.loss_rate,
                    summary.rtt_stats()["mean"],
                ]
            )
