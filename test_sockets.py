import simpy

from ethernet_sim.core.addressing import Ipv4Address, MacAddress
from ethernet_sim.core.enums import SocketType
from ethernet_sim.core.sockets import WILDCARD, SocketTable

MAC = MacAddress.parse("02:00:00:00:00:01")
ADDRESS = Ipv4Address.parse("10.0.0.10")


def create_table():
    env = simpy.Environment()
    return env, SocketTable(env)


def test_raw_sockets_share_a_link_address():
    _, table = create_table()
    first, second = table.open(SocketType.RAW), table.open(SocketType.RAW)
    assert table.bind(first, MAC)
    assert table.bind(second, MAC)
    assert first.key == (SocketType.RAW, MAC, 0)
    assert len(table) == 2


def test_only_one_raw_wildcard():
    _, table = create_table()
    assert table.bind(table.open(SocketType.RAW), WILDCARD)
    assert not table.bind(table.open(SocketType.RAW), WILDCARD)


def test_raw_sockets_ignore_ports_and_reject_ip_addresses():
    _, table = create_table()
    sock = table.open(SocketType.RAW)
    assert not table.bind(sock, ADDRESS)
    assert table.bind(sock, MAC, 1234)
    assert table.is_bound(SocketType.RAW, MAC, 99)


def test_datagram_binding_rules():
    _, table = create_table()
    sock = table.open(SocketType.DGRAM)
    assert not table.bind(sock, ADDRESS, 0)
    assert not table.bind(sock, ADDRESS, 70000)
    assert not table.bind(sock, MAC, 68)
    assert table.bind(sock, ADDRESS, 68)
    assert not table.bind(sock, ADDRESS, 69)
    assert not table.bind(table.open(SocketType.DGRAM), ADDRESS, 68)
    assert table.bind(table.open(SocketType.STREAM), ADDRESS, 68)


def test_unbind_frees_the_key():
    _, table = create_table()
    sock = table.open(SocketType.DGRAM)
    table.bind(sock, ADDRESS, 67)
    assert table.unbind(sock)
    assert not table.unbind(sock)
    assert not table.is_bound(SocketType.DGRAM, ADDRESS, 67)
    assert table.bind(table.open(SocketType.DGRAM), ADDRESS, 67)


def test_raw_delivery_reaches_wildcard_listener():
    _, table = create_table()
    exact, wildcard = table.open(SocketType.RAW), table.open(SocketType.RAW)
    table.bind(exact, MAC)
    table.bind(wildcard, WILDCARD)
    assert table.incoming(b"frame", SocketType.RAW, MAC) == 2
    other = MacAddress.parse("02:00:00:00:00:02")
    assert table.incoming(b"frame", SocketType.RAW, other) == 1
    assert table.incoming(b"x", SocketType.DGRAM, ADDRESS, 68) == 0


def test_receive_is_fifo():
    env, table = create_table()
    sock = table.open(SocketType.DGRAM)
    table.bind(sock, ADDRESS, 68)
    table.incoming("first", SocketType.DGRAM, ADDRESS, 68)
    table.incoming("second", SocketType.DGRAM, ADDRESS, 68)
    received = []

    def reader():
        for _ in range(2):
            data = yield sock.receive(1.0)
            received.append(data)

    env.process(reader())
    env.run()
    assert received == ["first", "second"]
    assert env.now == 0


def test_receive_waits_for_delivery():
    env, table = create_table()
    sock = table.open(SocketType.DGRAM)
    table.bind(sock, ADDRESS, 68)
    received = []

    def reader():
        data = yield sock.receive(5.0)
        received.append((env.now, data))

    def writer():
        yield env.timeout(1.5)
        table.incoming("late", SocketType.DGRAM, ADDRESS, 68)

    env.process(reader())
    env.process(writer())
    env.run()
    assert received == [(1.5, "late")]


def test_receive_times_out():
    env, table = create_table()
    sock = table.open(SocketType.DGRAM)
    received = []

    def reader():
        data = yield sock.receive(2.0)
        received.append((env.now, data))

    env.process(reader())
    env.run()
    assert received == [(2.0, None)]


def test_timed_out_receive_does_not_consume_later_data():
    env, table = create_table()
    sock = table.open(SocketType.DGRAM)
    table.bind(sock, ADDRESS, 68)

    def reader():
        yield sock.receive(1.0)

    env.process(reader())
    env.run()
    table.incoming("kept", SocketType.DGRAM, ADDRESS, 68)
    assert sock.store.items == ["kept"]


def test_close_wakes_pending_receive():
    env, table = create_table()
    sock = table.open(SocketType.RAW)
    table.bind(sock, MAC)
    received = []

    def reader():
        data = yield sock.receive(10.0)
        received.append((env.now, data))

    def closer():
        yield env.timeout(0.5)
        table.close(sock)

    env.process(reader())
    env.process(closer())
    env.run()
    assert received == [(0.5, None)]
    assert sock.is_closed
    assert not sock.deliver(b"too late")
    assert len(table) == 0


def test_close_all_flushes_queues():
    _, table = create_table()
    sock = table.open(SocketType.DGRAM)
    table.bind(sock, ADDRESS, 68)
    table.incoming("pending", SocketType.DGRAM, ADDRESS, 68)
    table.close_all()
    assert sock.is_closed
    assert sock.store.items == []
    assert len(table) == 0
