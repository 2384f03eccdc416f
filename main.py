import argparse
import os

import simpy

from ethernet_sim.core.addressing import Ipv4Address, Ipv4Prefix
from ethernet_sim.core.config import SimConfig
from ethernet_sim.core.enums import DeviceKind
from ethernet_sim.core.simulator import NetworkSimulator
from ethernet_sim.utils.capture import FrameCapture
from ethernet_sim.utils.logger import bind_clock, setup_logger
from ethernet_sim.utils.metrics import save_metrics_to_json, save_ping_summaries_to_csv


def build_simulator(config):
    """Create a fresh environment and simulator with console logging"""
    env = simpy.Environment()
    sim = NetworkSimulator(env, config)
    bind_clock(env)
    return sim


def addr(text):
    return Ipv4Address.parse(text)


def print_response(sequence, datagram, packet, rtt):
    print(f"  reply from {packet.src}: seq={sequence} ttl={packet.ttl} time={rtt * 1000:.1f} ms")


def print_error(sequence, reason):
    print(f"  seq={sequence}: {reason}")


def run_switched_ping(config, count, summaries):
    """Two hosts on one switch, one pings the other"""
    print("\n=== Ping across a switch ===")
    sim = build_simulator(config)
    switch = sim.create_device(DeviceKind.SWITCH)
    a = sim.create_device(DeviceKind.PC)
    b = sim.create_device(DeviceKind.PC)
    ports = [i.mac for i in switch.bridging_interfaces()]
    a_mac = a.routing_interfaces()[0].mac
    b_mac = b.routing_interfaces()[0].mac
    sim.connect(a_mac, ports[0])
    sim.connect(b_mac, ports[1])
    a.set_interface_address(a_mac, addr("10.0.0.10"), Ipv4Prefix(24))
    b.set_interface_address(b_mac, addr("10.0.0.20"), Ipv4Prefix(24))

    a.ping(
        addr("10.0.0.20"),
        count=count,
        on_response=print_response,
        on_error=print_error,
        on_summary=summaries.append,
    )
    metrics = sim.run(until=count * config.ping_interval + 5)
    print(f"  {summaries[-1]}")
    return metrics


def run_routed_ping(config, count, summaries):
    """Two subnets joined by a router"""
    print("\n=== Ping through a router ===")
    sim = build_simulator(config)
    router = sim.create_device(DeviceKind.ROUTER)
    a = sim.create_device(DeviceKind.PC)
    b = sim.create_device(DeviceKind.PC)
    r0, r1 = [i.mac for i in router.routing_interfaces()][:2]
    a_mac = a.routing_interfaces()[0].mac
    b_mac = b.routing_interfaces()[0].mac
    sim.connect(a_mac, r0)
    sim.connect(b_mac, r1)
    router.set_interface_address(r0, addr("10.0.0.1"), Ipv4Prefix(24))
    router.set_interface_address(r1, addr("10.0.1.1"), Ipv4Prefix(24))
    a.set_interface_address(a_mac, addr("10.0.0.10"), Ipv4Prefix(24))
    b.set_interface_address(b_mac, addr("10.0.1.10"), Ipv4Prefix(24))
    a.set_default_gateway(addr("10.0.0.1"))
    b.set_default_gateway(addr("10.0.1.1"))

    a.ping(
        addr("10.0.1.10"),
        count=count,
        on_response=print_response,
        on_error=print_error,
        on_summary=summaries.append,
    )
    metrics = sim.run(until=count * config.ping_interval + 5)
    print(f"  {summaries[-1]}")
    return metrics


def run_dhcp(config):
    """A server leases an address to a host behind a switch"""
    print("\n=== DHCP lease ===")
    sim = build_simulator(config)
    capture = FrameCapture(sim)
    switch = sim.create_device(DeviceKind.SWITCH)
    server = sim.create_device(DeviceKind.SERVER)
    client = sim.create_device(DeviceKind.PC)
    ports = [i.mac for i in switch.bridging_interfaces()]
    server_mac = server.routing_interfaces()[0].mac
    client_mac = client.routing_interfaces()[0].mac
    sim.connect(server_mac, ports[0])
    sim.connect(client_mac, ports[1])
    server.set_interface_address(server_mac, addr("192.168.1.1"), Ipv4Prefix(24))
    server.add_dhcp_record(addr("192.168.1.0"), Ipv4Prefix(24), addr("192.168.1.1"))

    client.enable_dhcp_client(client_mac)
    metrics = sim.run(until=30)
    info = client.routing_interfaces()[0]
    print(f"  client configured as {info.address}{info.prefix}")
    for route in client.routes():
        print(f"  route {route.network}{route.prefix} via {route.next_hop}")
    print(f"  {len(capture)} frame events captured")
    return metrics


def main():
    """Main function to run simulations"""
    parser = argparse.ArgumentParser(description="Ethernet/IPv4 Network Simulation")
    parser.add_argument("--all", action="store_true", help="Run all scenarios")
    parser.add_argument("--ping", action="store_true", help="Ping across a switch")
    parser.add_argument("--routed", action="store_true", help="Ping through a router")
    parser.add_argument("--dhcp", action="store_true", help="Lease an address by DHCP")
    parser.add_argument("--count", type=int, default=4, help="Echoes per ping")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument(
        "--link-delay", type=float, default=0.01, help="Per-hop delay in seconds"
    )
    parser.add_argument("--log-level", default="WARNING", help="Console log level")
    parser.add_argument("--output", default="results", help="Directory for results")

    args = parser.parse_args()
    if not (args.all or args.ping or args.routed or args.dhcp):
        parser.print_help()
        return

    config = SimConfig(seed=args.seed, link_delay=args.link_delay, log_level=args.log_level)
    setup_logger(config.log_level)
    os.makedirs(args.output, exist_ok=True)
    summaries = []

    if args.all or args.ping:
        metrics = run_switched_ping(config, args.count, summaries)
        save_metrics_to_json(metrics, os.path.join(args.output, "switched_ping.json"))

    if args.all or args.routed:
        metrics = run_routed_ping(config, args.count, summaries)
        save_metrics_to_json(metrics, os.path.join(args.output, "routed_ping.json"))

    if args.all or args.dhcp:
        metrics = run_dhcp(config)
        save_metrics_to_json(metrics, os.path.join(args.output, "dhcp.json"))

    if summaries:
        save_ping_summaries_to_csv(summaries, os.path.join(args.output, "ping.csv"))


if __name__ == "__main__":
    main()
