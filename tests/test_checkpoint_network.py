import pytest

from speedwatch.checkpoint import Checkpoint, Connection
from speedwatch.errors import UnknownCheckpointError
from speedwatch.events import (CHECKPOINT_TRIGGERED, NETWORK_CHANGED,
                               VIOLATION_DETECTED)
from speedwatch.utils.vector import Vector

from conftest import StubVehicle


def collect(event_bus, topic):
    received = []
    event_bus.subscribe(topic, lambda **payload: received.append(payload))
    return received


def test_min_legal_time():
    connection = Connection(1, 2, speed_limit=60, distance=1000)
    assert connection.min_legal_time() == pytest.approx(60.0)
    assert connection.min_legal_time() == connection.min_legal_time()
    assert Connection(1, 2, speed_limit=0, distance=1000).min_legal_time() == 0.0


def test_occupancy_never_negative():
    connection = Connection(1, 2, speed_limit=50, distance=200)
    assert connection.decrement_occupancy() == 0
    connection.increment_occupancy()
    connection.increment_occupancy()
    assert connection.occupancy == 2
    assert connection.density() == pytest.approx(1.0)
    connection.decrement_occupancy()
    connection.decrement_occupancy()
    connection.decrement_occupancy()
    assert connection.occupancy == 0


def test_create_connection_measures_and_calibrates(kilometer_network, event_bus):
    changed = collect(event_bus, NETWORK_CHANGED)
    connection = kilometer_network.create_connection(1, 2, 60)

    assert connection.distance == pytest.approx(1000.0)
    assert connection.min_traversal_time == pytest.approx(1000.0 / 200.0)
    assert kilometer_network.get_connection(1, 2) is connection
    assert kilometer_network.get_connection(2, 1) is None
    event_bus.flush()
    assert len(changed) == 1


def test_create_connection_replaces_existing(kilometer_network):
    first = kilometer_network.create_connection(1, 2, 60)
    second = kilometer_network.create_connection(1, 2, 80)
    assert first is not second
    assert kilometer_network.get_connections() == [second]
    assert second.speed_limit == 80


def test_create_connection_unknown_checkpoint(kilometer_network):
    with pytest.raises(UnknownCheckpointError):
        kilometer_network.create_connection(1, 99, 50)


def test_update_connection_speed(kilometer_network, event_bus):
    kilometer_network.create_connection(1, 2, 60)
    event_bus.flush()
    changed = collect(event_bus, NETWORK_CHANGED)

    assert kilometer_network.update_connection_speed(1, 2, 90) is True
    assert kilometer_network.get_connection(1, 2).min_legal_time() == pytest.approx(40.0)
    assert kilometer_network.update_connection_speed(2, 1, 90) is False
    event_bus.flush()
    assert len(changed) == 1


def test_distance_falls_back_to_straight_line(kilometer_network, straight_graph):
    backwards = straight_graph.get_waypoint('w10')
    kilometer_network.register_checkpoint(Checkpoint(3, Vector(500, 30), [backwards]))
    # no road leads from w20 back to w10
    assert kilometer_network.calculate_path_distance(2, 3) == pytest.approx(Vector(1000, 0).distance(Vector(500, 30)))
    assert kilometer_network.calculate_path_distance(1, 42) == 0.0


def test_register_checkpoint_keeps_first(kilometer_network):
    original = kilometer_network.get_checkpoint(1)
    again = kilometer_network.register_checkpoint(Checkpoint(1, Vector(5, 5)))
    assert again is original


def test_first_sighting_makes_no_decision(kilometer_network, stub_vehicle):
    kilometer_network.create_connection(1, 2, 60)
    assert kilometer_network.report_checkpoint_pass(stub_vehicle, 1, 100.0) is None
    assert stub_vehicle.last_checkpoint_id == 1
    assert stub_vehicle.last_timestamp == 100.0


def test_fast_traversal_is_a_violation(kilometer_network, event_bus, stub_vehicle):
    kilometer_network.create_connection(1, 2, 60)
    violations = collect(event_bus, VIOLATION_DETECTED)

    kilometer_network.report_checkpoint_pass(stub_vehicle, 1, 0.0)
    decision = kilometer_network.report_checkpoint_pass(stub_vehicle, 2, 50.0)

    assert decision.violation is True
    assert decision.speed == pytest.approx(72.0)
    assert decision.min_legal_time == pytest.approx(60.0)
    assert stub_vehicle.was_detected is True

    event_bus.flush()
    assert len(violations) == 1
    assert violations[0]['vehicle'] is stub_vehicle
    assert (violations[0]['from_id'], violations[0]['to_id']) == (1, 2)
    assert violations[0]['speed'] == pytest.approx(72.0)


def test_slow_traversal_is_legal(kilometer_network, event_bus, stub_vehicle):
    kilometer_network.create_connection(1, 2, 60)
    triggered = collect(event_bus, CHECKPOINT_TRIGGERED)

    kilometer_network.report_checkpoint_pass(stub_vehicle, 1, 0.0)
    decision = kilometer_network.report_checkpoint_pass(stub_vehicle, 2, 70.0)

    assert decision.violation is False
    assert decision.speed == pytest.approx(51.43, abs=0.01)
    assert stub_vehicle.was_detected is False
    event_bus.flush()
    assert [t['checkpoint_id'] for t in triggered] == [1, 2]
    assert not any(t['violation'] for t in triggered)


def test_exactly_legal_time_is_not_a_violation(kilometer_network, stub_vehicle):
    kilometer_network.create_connection(1, 2, 60)
    kilometer_network.report_checkpoint_pass(stub_vehicle, 1, 0.0)
    assert kilometer_network.report_checkpoint_pass(stub_vehicle, 2, 60.0).violation is False


def test_repeat_checkpoint_is_ignored(kilometer_network, event_bus, stub_vehicle):
    kilometer_network.create_connection(1, 2, 60)
    kilometer_network.report_checkpoint_pass(stub_vehicle, 1, 10.0)
    event_bus.flush()
    triggered = collect(event_bus, CHECKPOINT_TRIGGERED)

    assert kilometer_network.report_checkpoint_pass(stub_vehicle, 1, 12.0) is None
    assert stub_vehicle.last_timestamp == 10.0
    event_bus.flush()
    assert triggered == []


def test_missing_connection_still_advances_state(kilometer_network, stub_vehicle):
    # only 1 -> 2 is connected
    kilometer_network.create_connection(1, 2, 60)
    kilometer_network.report_checkpoint_pass(stub_vehicle, 2, 0.0)
    assert kilometer_network.report_checkpoint_pass(stub_vehicle, 1, 5.0) is None
    assert stub_vehicle.last_checkpoint_id == 1

    decision = kilometer_network.report_checkpoint_pass(stub_vehicle, 2, 20.0)
    assert decision.elapsed == pytest.approx(15.0)
    assert decision.violation is True


def test_vehicles_are_judged_independently(kilometer_network):
    kilometer_network.create_connection(1, 2, 60)
    fast, slow = StubVehicle('FST-111'), StubVehicle('SLW-222')
    kilometer_network.report_checkpoint_pass(fast, 1, 0.0)
    kilometer_network.report_checkpoint_pass(slow, 1, 0.0)
    kilometer_network.report_checkpoint_pass(fast, 2, 30.0)
    kilometer_network.report_checkpoint_pass(slow, 2, 90.0)
    assert fast.was_detected and not slow.was_detected
