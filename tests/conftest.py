"""Shared fixtures: small road graphs, checkpoint networks and a stand-in vehicle."""
import pytest

from speedwatch.checkpoint import Checkpoint, CheckpointNetwork
from speedwatch.config import Config
from speedwatch.events import EventBus
from speedwatch.map import RoadGraph, Waypoint
from speedwatch.probe import ProbeManager
from speedwatch.utils.vector import Vector


class StubVehicle:
    """Minimal object carrying the per-vehicle enforcement state."""

    def __init__(self, plate='ABC-123'):
        self.plate = plate
        self.last_checkpoint_id = -1
        self.last_timestamp = 0.0
        self.was_detected = False

    def mark_as_speeder(self):
        self.was_detected = True


def build_line(graph: RoadGraph, prefix: str, points, cost_multiplier: float = 1.0):
    """Add waypoints at `points` linked one-way in order; returns them."""
    waypoints = [graph.add_waypoint(Waypoint(f'{prefix}{i}', Vector(p), cost_multiplier)) for i, p in enumerate(points)]
    for a, b in zip(waypoints, waypoints[1:]):
        a.add_neighbor(b)
    return waypoints


@pytest.fixture
def config():
    return Config(overrides={'logging': {'file': False}})


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def straight_graph():
    """One-way road along +x with waypoints every 50 m from 0 to 1000 m."""
    graph = RoadGraph()
    build_line(graph, 'w', [(x, 0, 0) for x in range(0, 1001, 50)])
    return graph


@pytest.fixture
def network_factory(config, event_bus):
    def _make(graph):
        manager = ProbeManager(graph, config)
        return CheckpointNetwork(graph, manager, event_bus, config)
    return _make


@pytest.fixture
def kilometer_network(straight_graph, network_factory):
    """Network with checkpoint 1 at 0 m and checkpoint 2 at 1000 m, no connections."""
    network = network_factory(straight_graph)
    start = straight_graph.get_waypoint('w0')
    end = straight_graph.get_waypoint('w20')
    network.register_checkpoint(Checkpoint(1, start.position, [start]))
    network.register_checkpoint(Checkpoint(2, end.position, [end]))
    return network


@pytest.fixture
def stub_vehicle():
    return StubVehicle()
