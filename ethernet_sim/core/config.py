"""Simulation configuration.

All durations are in simulated seconds.
"""

from dataclasses import dataclass


@dataclass
class SimConfig:
    """Tunable parameters of a simulation.

    Attributes:
        seed: Seed of the random generator used for link addresses, device
            ids and DHCP transaction ids.
        link_delay: Propagation delay of one hop.
        default_ttl: TTL of locally originated packets.
        arp_timeout: How long an originator waits for address resolution.
        echo_timeout: Overall wait of one ICMP echo.
        ping_interval: Spacing between echoes of a ping.
        dhcp_poll_interval: Length of one DHCP socket wait.
        dhcp_offer_timeout: How long an offer stays reserved and valid.
        dhcp_lease_time: LEASE_TIME option value sent in ACKs.
        dhcp_probe_timeout: Timeout of each liveness probe made by a server.
        router_interfaces: Routing interfaces created for a router.
        switch_interfaces: Bridging interfaces created for a switch.
        outgoing_log_size: Length of each device's outgoing packet log.
        log_level: Level used when console logging is set up.
    """

    seed: int = 42
    link_delay: float = 0.01
    default_ttl: int = 64
    arp_timeout: float = 1.0
    echo_timeout: float = 1.0
    ping_interval: float = 1.0
    dhcp_poll_interval: float = 5.0
    dhcp_offer_timeout: float = 30.0
    dhcp_lease_time: int = 86400
    dhcp_probe_timeout: float = 1.0
    router_interfaces: int = 3
    switch_interfaces: int = 5
    outgoing_log_size: int = 256
    log_level: str = "INFO"
