import asyncio

import pytest

from speedwatch.checkpoint import Checkpoint, CheckpointNetwork, Connection
from speedwatch.config import Config
from speedwatch.events import EventBus
from speedwatch.map import RoadGraph
from speedwatch.probe import ProbeManager, ProbePool, ProbeRun
from speedwatch.utils.vector import Vector

from conftest import build_line


@pytest.fixture
def fork():
    """Two parallel one-way lanes; the upper lane bends and is longer.

    Checkpoint 1 spans the lane starts (anchors a0, b0) and checkpoint 2 the
    lane ends plus an unreachable island waypoint (anchors a2, b2, island).
    """
    graph = RoadGraph()
    lower = build_line(graph, 'a', [(0, 0), (100, 0), (200, 0)])
    upper = build_line(graph, 'b', [(0, 10), (100, 60), (200, 10)])
    island = build_line(graph, 'island', [(200, 20)])[0]
    from_cp = Checkpoint(1, Vector(-50, 5), [lower[0], upper[0]])
    to_cp = Checkpoint(2, Vector(250, 5), [lower[2], upper[2], island])
    return graph, from_cp, to_cp


def make_manager(graph, from_cp, to_cp, **probe_overrides):
    config = Config(overrides={'probe': probe_overrides})
    manager = ProbeManager(graph, config)
    network = CheckpointNetwork(graph, None, EventBus(), config)
    manager.attach_network(network)
    network.register_checkpoint(from_cp)
    network.register_checkpoint(to_cp)
    return manager, network


def test_pool_grows_when_empty():
    pool = ProbePool(1, speed=200, step=0.02)
    first = pool.acquire()
    second = pool.acquire()
    assert len(pool) == 2
    assert first is not second
    pool.release(first)
    pool.release(first)
    assert pool.available == 1


@pytest.mark.asyncio
async def test_probe_records_checkpoints_in_order(straight_graph):
    volumes = [Checkpoint(i, Vector(x, 0), size=(6, 0.5, 4)) for i, x in [(1, 110), (2, 420), (3, 975)]]
    probe = ProbeRun(0, speed=200, step=0.5)
    await probe.run(straight_graph, straight_graph.get_waypoint('w1'), straight_graph.get_waypoint('w20'),
                    lambda: reversed(volumes))

    assert probe.path_found
    assert [cp.id for cp in probe.recorded_checkpoints] == [1, 2, 3]
    assert probe.elapsed == pytest.approx(950 / 200)


@pytest.mark.asyncio
async def test_probe_without_path(straight_graph):
    probe = ProbeRun(0, speed=200, step=0.02)
    await probe.run(straight_graph, straight_graph.get_waypoint('w5'), straight_graph.get_waypoint('w0'), list)
    assert not probe.path_found
    assert probe.elapsed == 0.0
    assert probe.recorded_checkpoints == []


@pytest.mark.asyncio
async def test_calibration_runs_every_anchor_pair(fork, monkeypatch):
    graph, from_cp, to_cp = fork
    manager, network = make_manager(graph, from_cp, to_cp, pool_size=2)
    connection = network.connections[(1, 2)] = Connection(1, 2, 50, 200)

    runs = []
    original_run = ProbeRun.run

    async def counting_run(self, graph, start, end, checkpoints):
        runs.append((start.id, end.id))
        return await original_run(self, graph, start, end, checkpoints)

    monkeypatch.setattr(ProbeRun, 'run', counting_run)
    result = await manager.calibrate_connection(from_cp, to_cp)

    assert len(runs) == 2 * 3
    assert result.expected == result.received == 6
    # a0 -> a2 and b0 -> b2 succeed; crossings between lanes and the island do not
    assert result.successes == 2
    assert result.min_time == pytest.approx(200 / 200)
    assert connection.min_traversal_time == pytest.approx(1.0)
    assert len(manager.pool) >= 6
    assert manager.pending_requests() == []


@pytest.mark.asyncio
async def test_best_probe_is_retained_and_others_released(fork):
    graph, from_cp, to_cp = fork
    manager, _ = make_manager(graph, from_cp, to_cp)
    result = await manager.calibrate_connection(from_cp, to_cp)

    best = result.best_probe
    assert best.is_best_path and best.in_use
    assert (best.start.id, best.end.id) == ('a0', 'a2')
    assert [p for p in manager.pool.probes if p.in_use] == [best]

    second = await manager.calibrate_connection(from_cp, to_cp)
    assert [p for p in manager.pool.probes if p.in_use] == [second.best_probe]
    assert manager.best_paths[(1, 2)] is second.best_probe


@pytest.mark.asyncio
async def test_zero_successes_leave_time_unset():
    graph = RoadGraph()
    a = build_line(graph, 'a', [(0, 0), (100, 0)])
    b = build_line(graph, 'b', [(0, 50), (100, 50)])
    from_cp = Checkpoint(1, Vector(0, 0), [a[0]])
    to_cp = Checkpoint(2, Vector(100, 50), [b[1]])
    manager, network = make_manager(graph, from_cp, to_cp)
    connection = network.connections[(1, 2)] = Connection(1, 2, 50, 100)

    result = await manager.calibrate_connection(from_cp, to_cp)
    assert result.received == 1
    assert result.successes == 0
    assert result.min_time is None
    assert connection.min_traversal_time == 0.0
    assert manager.pool.available == len(manager.pool)


@pytest.mark.asyncio
async def test_checkpoint_without_anchors_is_not_calibrated(fork):
    graph, from_cp, _ = fork
    bare = Checkpoint(3, Vector(0, 0))
    manager, _ = make_manager(graph, from_cp, bare)
    assert await manager.calibrate_connection(from_cp, bare) is None


@pytest.mark.asyncio
async def test_superseded_request_completes_once_as_abandoned(fork):
    graph, from_cp, to_cp = fork
    manager, _ = make_manager(graph, from_cp, to_cp)

    first = asyncio.create_task(manager.calibrate_connection(from_cp, to_cp))
    await asyncio.sleep(0)
    second = await manager.calibrate_connection(from_cp, to_cp)
    first = await first

    assert first.abandoned is True
    assert first.min_time is None
    assert second.abandoned is False
    assert second.received == second.expected


@pytest.mark.asyncio
async def test_calibration_timeout(fork, monkeypatch):
    graph, from_cp, to_cp = fork
    manager, _ = make_manager(graph, from_cp, to_cp, calibration_timeout=0.05)

    async def stuck(self, graph, start, end, checkpoints):
        await asyncio.sleep(60)

    monkeypatch.setattr(ProbeRun, 'run', stuck)
    result = await manager.calibrate_connection(from_cp, to_cp)

    assert result.timed_out is True
    assert result.received == 0
    assert manager.pending_requests() == []

    await asyncio.sleep(0.01)
    assert manager._tasks == set()
    assert manager.pool.available == len(manager.pool)
    assert not any(p.in_use for p in manager.pool.probes)


@pytest.mark.asyncio
async def test_timeout_keeps_partial_results(fork, monkeypatch):
    graph, from_cp, to_cp = fork
    manager, network = make_manager(graph, from_cp, to_cp, calibration_timeout=0.05)
    connection = network.connections[(1, 2)] = Connection(1, 2, 50, 200)
    original_run = ProbeRun.run

    async def lower_lane_only(self, graph, start, end, checkpoints):
        if (start.id, end.id) != ('a0', 'a2'):
            await asyncio.sleep(60)
        return await original_run(self, graph, start, end, checkpoints)

    monkeypatch.setattr(ProbeRun, 'run', lower_lane_only)
    result = await manager.calibrate_connection(from_cp, to_cp)

    assert result.timed_out is True
    assert result.received == 1
    assert result.min_time == pytest.approx(1.0)
    assert connection.min_traversal_time == pytest.approx(1.0)

    await asyncio.sleep(0.01)
    assert [p for p in manager.pool.probes if p.in_use] == [result.best_probe]
