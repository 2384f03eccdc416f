"""Simulated Ethernet/IPv4 network.

Devices exchange wire-accurate frames over a virtual topology and run real
protocol logic (ARP, IPv4 forwarding, ICMP, UDP and DHCP) on a single simpy
scheduler.
"""

from loguru import logger

logger.disable("ethernet_sim")

__version__ = "0.1.0"
