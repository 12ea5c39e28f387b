import asyncio
import random
from collections import Counter

import pandas as pd
import pytest

from speedwatch.agent import VehicleBehavior
from speedwatch.config import Config
from speedwatch.events import EventBus
from speedwatch.map import RoadGraph, Waypoint
from speedwatch.traffic.manager import (SpawnerState, SpawnManager,
                                        TestResult, WeightedPoint)
from speedwatch.utils.vector import Vector

from conftest import build_line


def bare_spawner(config, seed=1):
    return SpawnManager(None, None, None, None, EventBus(), config, rng=random.Random(seed))


@pytest.fixture
def points():
    return [WeightedPoint(Waypoint(name, Vector(i * 10, 0)), weight)
            for i, (name, weight) in enumerate([('a', 10.0), ('b', 0.0), ('c', 30.0)])]


def test_zero_weight_point_is_never_picked(config, points):
    spawner = bare_spawner(config)
    picks = Counter(spawner.pick_weighted(points).id for _ in range(2000))
    assert picks['b'] == 0
    assert picks['c'] > picks['a'] > 0


def test_non_positive_total_picks_uniformly(config):
    spawner = bare_spawner(config)
    flat = [WeightedPoint(Waypoint(i, Vector(i, 0)), 0.0) for i in range(3)]
    picks = {spawner.pick_weighted(flat).id for _ in range(200)}
    assert picks == {0, 1, 2}
    assert spawner.pick_weighted([]) is None


@pytest.mark.parametrize('compliant, over_limit, expected', [
    (1.0, 0.0, VehicleBehavior.COMPLIANT),
    (0.0, 1.0, VehicleBehavior.OVER_LIMIT),
    (0.0, 0.0, VehicleBehavior.ADAPTIVE),
])
def test_behavior_ratios(compliant, over_limit, expected):
    config = Config(overrides={'spawner': {'ratio_compliant': compliant, 'ratio_over_limit': over_limit}})
    spawner = bare_spawner(config)
    assert {spawner.determine_behavior() for _ in range(50)} == {expected}


@pytest.mark.parametrize('speeding, detected, outcome', [
    (True, True, 'OK'),
    (False, False, 'OK'),
    (True, False, 'MISSED_SPEEDER'),
    (False, True, 'FALSE_ALARM'),
])
def test_result_outcome(speeding, detected, outcome):
    assert TestResult('ABC-123', 'ADAPTIVE', speeding, detected).outcome == outcome


def test_save_test_results(config, tmp_path):
    spawner = bare_spawner(config)
    spawner.results = [
        TestResult('ABC-123', 'OVER_LIMIT', True, True),
        TestResult('XYZ-999', 'ADAPTIVE', True, False),
    ]
    path = spawner.save_test_results(str(tmp_path / 'plan' / 'TestPlan.csv'))

    frame = pd.read_csv(path)
    assert list(frame.columns) == ['LicensePlate', 'Behavior', 'ActuallySpeeding', 'WasDetected', 'Result']
    assert list(frame['Result']) == ['OK', 'MISSED_SPEEDER']


def test_start_test_plan_clears_previous_results(config):
    spawner = bare_spawner(config)
    spawner.results = [TestResult('ABC-123', 'COMPLIANT', False, False)]
    spawner.start_test_plan(total_vehicles=4)
    assert spawner.state == SpawnerState.CLEARING
    assert spawner.test_total == 4
    assert spawner.results == []
    assert spawner.test_plan_running

    spawner.start_test_plan(total_vehicles=9)
    assert spawner.test_total == 4


class EmptyRoad:
    def __init__(self):
        self.vehicles = []


class FailingDiscovery:
    def __init__(self, error=None, hang=False):
        self.error = error
        self.hang = hang

    async def discover_path(self, start, end):
        if self.hang:
            await asyncio.sleep(60)
        raise self.error


@pytest.fixture
def opposite_lanes():
    """Two one-way roads in opposite directions; only e0 -> e1 and w0 -> w1 connect."""
    graph = RoadGraph()
    east = build_line(graph, 'e', [(0, 0), (100, 0)])
    west = build_line(graph, 'w', [(100, 4), (0, 4)])
    return graph, east, west


def road_spawner(config, graph, discovery, seed=1):
    return SpawnManager(graph, None, discovery, EmptyRoad(), EventBus(), config, rng=random.Random(seed))


def test_unreachable_endpoint_pairs_are_skipped(config, opposite_lanes):
    graph, east, west = opposite_lanes
    spawner = road_spawner(config, graph, None)
    spawner.set_spawn_points([WeightedPoint(east[0]), WeightedPoint(west[0])],
                             [WeightedPoint(east[1]), WeightedPoint(west[1])])

    pairs = {tuple(wp.id for wp in spawner.pick_endpoints()) for _ in range(200)}
    assert pairs == {('e0', 'e1'), ('w0', 'w1')}


def test_no_connected_endpoints_spawns_nothing(config, opposite_lanes):
    graph, east, west = opposite_lanes
    spawner = road_spawner(config, graph, None)
    spawner.set_spawn_points([WeightedPoint(east[0])], [WeightedPoint(west[1])])
    spawner.state = SpawnerState.TESTING

    assert spawner.request_spawn() is None
    assert spawner.test_spawned == 0
    assert spawner.vehicle_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize('discovery', [
    FailingDiscovery(error=RuntimeError('probe crashed')),
    FailingDiscovery(hang=True),
])
async def test_failed_discovery_releases_pending_spawn(tmp_path, opposite_lanes, discovery):
    config = Config(overrides={'spawner': {'test_plan': {'output_path': str(tmp_path / 'TestPlan.csv')}}})
    graph, east, _ = opposite_lanes
    spawner = road_spawner(config, graph, discovery)
    spawner.set_spawn_points([WeightedPoint(east[0])], [WeightedPoint(east[1])])
    spawner.start_test_plan(total_vehicles=1)
    spawner.update(0.1, 0.0)
    assert spawner.state == SpawnerState.TESTING

    task = spawner.request_spawn()
    assert spawner.vehicle_count == 1
    if discovery.hang:
        task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    await asyncio.sleep(0)

    assert spawner.vehicle_count == 0
    assert spawner.test_finished == 1
    assert spawner.state == SpawnerState.NORMAL
