from client.interaction_listener import PointerEvent, PointerEventBus, SimulatedPointerSource
from client import simulation


def test_bus_registers_callback_once():
    bus = PointerEventBus()
    received = []

    bus.subscribe(received.append)
    bus.subscribe(received.append)
    bus.publish(PointerEvent(1.0, 2.0, 3.0))

    assert bus.subscriber_count == 1
    assert len(received) == 1


def test_unsubscribe_stops_delivery():
    bus = PointerEventBus()
    received = []
    bus.subscribe(received.append)
    bus.unsubscribe(received.append)
    bus.unsubscribe(received.append)

    bus.publish(PointerEvent(1.0, 2.0, 3.0))
    assert received == []
    assert not bus.is_subscribed(received.append)


def test_failing_subscriber_does_not_block_others():
    bus = PointerEventBus()
    received = []

    def broken(event):
        raise RuntimeError("bad subscriber")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.publish(PointerEvent(1.0, 2.0, 3.0))

    assert len(received) == 1


def test_simulated_source_tags_events():
    bus = PointerEventBus()
    received = []
    bus.subscribe(received.append)

    path = simulation.linear_path(steps=10)
    count = SimulatedPointerSource(bus, path).play(origin_ms=500.0)

    assert count == 11
    assert all(e.simulated for e in received)
    assert received[0].t == 500.0
    assert received[-1].t == 500.0 + 10 * 15.0


def test_synthetic_paths_are_reproducible():
    assert simulation.human_path(seed=3) == simulation.human_path(seed=3)
    assert simulation.noise_path(seed=3) == simulation.noise_path(seed=3)
    assert len(simulation.human_path(steps=40)) == 41
