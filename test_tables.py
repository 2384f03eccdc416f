from ethernet_sim.core.addressing import Ipv4Address, Ipv4Prefix, MacAddress
from ethernet_sim.core.forwarding import ForwardingTable
from ethernet_sim.core.routing import Route, RoutingTable
from ethernet_sim.protocols.arp import ArpEntry, ArpTable

ANY = Ipv4Address.unspecified
MAC_1 = MacAddress.parse("02:00:00:00:00:01")
MAC_2 = MacAddress.parse("02:00:00:00:00:02")
MAC_3 = MacAddress.parse("02:00:00:00:00:03")


def addr(text):
    return Ipv4Address.parse(text)


def create_routing_table(local=("10.0.0.10", 24)):
    """Routing table of a host with one configured interface."""
    prefixes = [(addr(local[0]), Ipv4Prefix(local[1]))] if local else []
    return RoutingTable(Ipv4Address.loopback, lambda: prefixes)


def test_longest_prefix_wins_and_falls_back():
    table = create_routing_table()
    table.set(addr("192.168.1.0"), Ipv4Prefix(24), addr("10.0.0.1"), addr("10.0.0.10"))
    table.set(addr("192.168.0.0"), Ipv4Prefix(16), addr("10.0.0.2"), addr("10.0.0.10"))

    assert table.get(addr("192.168.1.5")) == [Route(addr("10.0.0.1"), addr("10.0.0.10"))]
    assert table.get(addr("192.168.2.5")) == [Route(addr("10.0.0.2"), addr("10.0.0.10"))]

    assert table.delete(addr("192.168.1.0"), Ipv4Prefix(24), addr("10.0.0.1"), addr("10.0.0.10"))
    assert table.get(addr("192.168.1.5")) == [Route(addr("10.0.0.2"), addr("10.0.0.10"))]


def test_network_is_masked_on_insert():
    table = create_routing_table()
    table.set(addr("172.16.5.99"), Ipv4Prefix(16), addr("10.0.0.1"), addr("10.0.0.10"))
    assert table.routes()[0].network == addr("172.16.0.0")
    assert table.get(addr("172.16.200.1")) is not None


def test_default_route_catches_everything():
    table = create_routing_table()
    assert table.get(addr("8.8.8.8")) is None
    table.set(ANY, Ipv4Prefix(0), addr("10.0.0.1"), addr("10.0.0.10"))
    assert table.get(addr("8.8.8.8")) == [Route(addr("10.0.0.1"), addr("10.0.0.10"))]


def test_directly_connected_and_own_addresses():
    table = create_routing_table()
    table.set(ANY, Ipv4Prefix(0), addr("10.0.0.1"), addr("10.0.0.10"))
    assert table.get(addr("10.0.0.99")) == [Route(addr("10.0.0.99"), addr("10.0.0.10"))]
    assert table.get(addr("10.0.0.10")) == [Route(addr("10.0.0.10"), Ipv4Address.loopback)]
    assert table.get(Ipv4Address.loopback) == [
        Route(Ipv4Address.loopback, Ipv4Address.loopback)
    ]
    assert table.get(addr("10.0.0.99"), remote_only=True) == [
        Route(addr("10.0.0.1"), addr("10.0.0.10"))
    ]


def test_unconfigured_interfaces_are_not_local():
    table = create_routing_table(local=("0.0.0.0", 0))
    assert table.get(addr("8.8.8.8")) is None


def test_lower_distance_preferred():
    table = create_routing_table()
    network, prefix = addr("192.168.0.0"), Ipv4Prefix(16)
    table.set(network, prefix, addr("10.0.0.5"), addr("10.0.0.10"), distance=5)
    table.set(network, prefix, addr("10.0.0.2"), addr("10.0.0.10"), distance=2)
    assert table.get(addr("192.168.3.3")) == [Route(addr("10.0.0.2"), addr("10.0.0.10"))]
    table.delete(network, prefix, addr("10.0.0.2"), addr("10.0.0.10"), distance=2)
    assert table.get(addr("192.168.3.3")) == [Route(addr("10.0.0.5"), addr("10.0.0.10"))]


def test_equal_cost_routes_rotate():
    table = create_routing_table()
    first = Route(addr("10.0.0.1"), addr("10.0.0.10"))
    second = Route(addr("10.0.0.2"), addr("10.0.0.10"))
    table.set(ANY, Ipv4Prefix(0), *first)
    table.set(ANY, Ipv4Prefix(0), *second)

    assert table.get(addr("8.8.8.8"), rotate=False) == [first, second]
    assert table.get(addr("8.8.8.8")) == [first, second]
    assert table.get(addr("8.8.8.8")) == [second, first]
    assert table.get(addr("8.8.8.8")) == [first, second]


def test_duplicates_and_distance_floor():
    table = create_routing_table()
    args = (addr("192.168.0.0"), Ipv4Prefix(16), addr("10.0.0.1"), addr("10.0.0.10"))
    assert table.set(*args, distance=0)
    assert not table.set(*args)
    assert len(table) == 1
    assert table.routes()[0].distance == 1
    assert not table.delete(addr("192.168.0.0"), Ipv4Prefix(24), addr("10.0.0.1"), addr("10.0.0.10"))
    assert table.delete(*args)
    assert len(table) == 0
    assert table.routes() == []


def test_forwarding_table_never_points_at_itself():
    table = ForwardingTable(lambda: [MAC_1])
    assert not table.set(MAC_1, MAC_2)
    assert not table.set(MAC_3, MAC_3)
    assert table.set(MAC_3, MAC_1)
    assert table.set(MAC_2, MAC_1)
    assert table.get(MAC_3) == MAC_1
    assert table.find(MAC_1) == [MAC_3, MAC_2]
    assert table.clear_value(MAC_1) == 2
    assert len(table) == 0


def test_forwarding_table_relearns_moves():
    table = ForwardingTable(lambda: [])
    table.set(MAC_3, MAC_1)
    table.set(MAC_3, MAC_2)
    assert table.entries() == [(MAC_3, MAC_2)]
    assert table.delete(MAC_3)
    assert not table.has(MAC_3)


def test_arp_table_answers_local_addresses_with_loopback():
    local = [addr("10.0.0.10"), Ipv4Address.loopback]
    table = ArpTable(lambda: local)
    table.set(addr("10.0.0.10"), MAC_2, MAC_1)
    assert table.get(addr("10.0.0.10")) == ArpEntry(MacAddress.loopback, MacAddress.loopback)
    assert table.get(Ipv4Address.loopback) == ArpEntry(MacAddress.loopback, MacAddress.loopback)


def test_arp_table_clears_entries_learned_on_an_interface():
    table = ArpTable(lambda: [])
    table.set(addr("10.0.0.20"), MAC_2, MAC_1)
    table.set(addr("10.0.0.30"), MAC_3, MAC_1)
    table.set(addr("10.0.1.20"), MAC_3, MAC_2)
    assert table.get(addr("10.0.0.20")) == ArpEntry(MAC_2, MAC_1)
    assert table.clear_value(MAC_1) == 2
    assert not table.has(addr("10.0.0.20"))
    assert table.has(addr("10.0.1.20"))
    assert table.get(addr("10.0.0.99")) is None
