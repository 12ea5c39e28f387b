from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from speedwatch.enforcement import (CHECKED, CONNECTION_ADDED, NO_CONNECTION,
                                    NO_PRIOR, NODE_TRIGGERED, NOT_FOUND,
                                    OUT_OF_ORDER, VIOLATION_ADDED,
                                    DistanceQueryBroker, EnforcementMirror)
from speedwatch.errors import UnknownCheckpointError


@pytest.fixture
def mirror(config):
    mirror = EnforcementMirror(config, broker=DistanceQueryBroker(timeout=0.05), clock=lambda: 1000.0)
    for external_id in ('A', 'B', 'C'):
        mirror.register_node(external_id)
    return mirror


@pytest_asyncio.fixture
async def linked_mirror(mirror):
    await mirror.create_connection('A', 'B', distance=1000, speed_limit=60)
    await mirror.create_connection('B', 'A', distance=1000, speed_limit=60)
    return mirror


def test_register_node_is_idempotent(mirror):
    assert mirror.register_node('A') is mirror.get_node('A')
    assert [mirror.get_node(x).node_id for x in 'ABC'] == [1, 2, 3]


@pytest.mark.asyncio
async def test_create_connection_requires_known_nodes(mirror):
    with pytest.raises(UnknownCheckpointError):
        await mirror.create_connection('A', 'Z', distance=10)


@pytest.mark.asyncio
async def test_create_connection_reuses_id_for_same_pair(mirror):
    added = []
    mirror.add_listener(CONNECTION_ADDED, added.append)
    first = await mirror.create_connection('A', 'B', distance=100, speed_limit=50)
    second = await mirror.create_connection('A', 'B', distance=200, speed_limit=70)
    assert first == second
    assert mirror.connections[first].distance == 200
    assert [c['speed_limit'] for c in added] == [50, 70]


@pytest.mark.asyncio
async def test_update_connection(linked_mirror):
    connection = linked_mirror.get_connection_between(1, 2)
    assert linked_mirror.update_connection(connection.connection_id, speed_limit=90) is True
    assert connection.legal_time() == pytest.approx(40.0)
    assert linked_mirror.update_connection(999, speed_limit=90) is False


@pytest.mark.asyncio
async def test_first_report_has_no_prior(linked_mirror):
    decision = linked_mirror.report_crossing('ABC-123', 'A', 0.0)
    assert decision.kind == NO_PRIOR
    assert decision.status is False
    assert linked_mirror.last_seen['ABC-123'].node_id == 1


@pytest.mark.asyncio
async def test_fast_traversal_is_flagged_and_stored(linked_mirror):
    violations, triggered = [], []
    linked_mirror.add_listener(VIOLATION_ADDED, violations.append)
    linked_mirror.add_listener(NODE_TRIGGERED, triggered.append)

    linked_mirror.report_crossing('ABC-123', 'A', 0.0)
    decision = linked_mirror.report_crossing('ABC-123', 'B', 50.0)

    assert decision.kind == CHECKED
    assert decision.status is True
    assert decision.car_speed == pytest.approx(72.0)
    assert decision.legal_limit == 60
    assert len(linked_mirror.store) == 1
    record = linked_mirror.store.records('ABC-123')[0]
    assert (record.from_node, record.to_node) == (1, 2)
    assert violations[0]['car_plate'] == 'ABC-123'
    assert [t['violation'] for t in triggered] == [False, True]


@pytest.mark.asyncio
async def test_slow_traversal_is_legal(linked_mirror):
    linked_mirror.report_crossing('ABC-123', 'A', 0.0)
    decision = linked_mirror.report_crossing('ABC-123', 'B', 70.0)
    assert decision.status is False
    assert decision.car_speed == pytest.approx(51.43, abs=0.01)
    assert len(linked_mirror.store) == 0


@pytest.mark.asyncio
async def test_out_of_order_report_keeps_later_sighting(linked_mirror):
    linked_mirror.report_crossing('ABC-123', 'A', 0.0)
    linked_mirror.report_crossing('ABC-123', 'B', 10.0)
    late = linked_mirror.report_crossing('ABC-123', 'A', 5.0)

    assert late.kind == OUT_OF_ORDER
    assert late.status is False
    sighting = linked_mirror.last_seen['ABC-123']
    assert (sighting.node_id, sighting.timestamp) == (2, 10.0)


@pytest.mark.asyncio
async def test_missing_connection_keeps_last_sighting(linked_mirror):
    linked_mirror.report_crossing('ABC-123', 'A', 0.0)
    decision = linked_mirror.report_crossing('ABC-123', 'C', 20.0)

    assert decision.kind == NO_CONNECTION
    assert decision.status is False
    assert decision.car_speed == 0.0
    assert linked_mirror.last_seen['ABC-123'].node_id == 1

    # the A -> B leg is still judged from the A sighting
    assert linked_mirror.report_crossing('ABC-123', 'B', 30.0).status is True


@pytest.mark.asyncio
async def test_unknown_node(linked_mirror):
    decision = linked_mirror.report_crossing('ABC-123', 'nowhere', 1.0)
    assert decision.kind == NOT_FOUND
    assert decision.to_dict() == {'error': 'Node not found', 'status': NOT_FOUND, 'car_plate': 'ABC-123'}
    assert 'ABC-123' not in linked_mirror.last_seen


@pytest.mark.asyncio
async def test_datetime_and_receipt_timestamps(linked_mirror):
    start = datetime(2024, 1, 1, 12, 0, 0)
    linked_mirror.report_crossing('ABC-123', 'A', start)
    decision = linked_mirror.report_crossing('ABC-123', 'B', start + timedelta(seconds=50))
    assert decision.status is True

    assert linked_mirror.report_crossing('XYZ-999', 'A').timestamp == 1000.0


@pytest.mark.asyncio
async def test_distance_is_queried_from_driver(mirror):
    def driver(request):
        assert (request['from_node'], request['to_node']) == ('A', 'C')
        mirror.broker.respond(request['request_id'], 321.0)

    mirror.broker.register_driver(driver)
    connection_id = await mirror.create_connection('A', 'C')
    assert mirror.connections[connection_id].distance == 321.0
    assert mirror.broker.pending() == 0


@pytest.mark.asyncio
async def test_distance_falls_back_to_zero_on_timeout(mirror):
    requests = []
    mirror.broker.register_driver(requests.append)
    connection_id = await mirror.create_connection('A', 'C')

    assert len(requests) == 1
    assert mirror.connections[connection_id].distance == 0.0
    assert mirror.broker.respond(requests[0]['request_id'], 10.0) is False


@pytest.mark.asyncio
async def test_distance_without_driver_is_zero(mirror):
    connection_id = await mirror.create_connection('B', 'C')
    assert mirror.connections[connection_id].distance == 0.0


@pytest.mark.asyncio
async def test_zero_distance_connection_never_flags(mirror):
    await mirror.create_connection('B', 'C')
    mirror.report_crossing('ABC-123', 'B', 0.0)
    decision = mirror.report_crossing('ABC-123', 'C', 0.5)
    assert decision.kind == CHECKED
    assert decision.status is False
