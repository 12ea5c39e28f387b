import pytest

from speedwatch.map import RoadGraph, Waypoint
from speedwatch.utils.vector import Vector

from conftest import build_line


@pytest.fixture
def diamond():
    """Two routes from s to t: a short one through a congested node and a longer free one."""
    graph = RoadGraph()
    s = graph.add_waypoint(Waypoint('s', Vector(0, 0)))
    slow = graph.add_waypoint(Waypoint('slow', Vector(50, 0), cost_multiplier=5.0))
    detour = graph.add_waypoint(Waypoint('detour', Vector(50, 30)))
    t = graph.add_waypoint(Waypoint('t', Vector(100, 0)))
    for a, b in [('s', 'slow'), ('slow', 't'), ('s', 'detour'), ('detour', 't')]:
        graph.connect(a, b)
    return graph, s, t


def test_same_start_and_end_gives_single_node(diamond):
    graph, s, _ = diamond
    assert graph.get_shortest_path(s, s) == [s]
    assert graph.solve_path('t', 't') == [graph.get_waypoint('t')]


def test_cost_multiplier_steers_path(diamond):
    graph, s, t = diamond
    path = graph.get_shortest_path(s, t)
    assert [wp.id for wp in path] == ['s', 'detour', 't']


def test_lower_multiplier_keeps_straight_route(diamond):
    graph, s, t = diamond
    graph.get_waypoint('slow').cost_multiplier = 1.0
    assert [wp.id for wp in graph.get_shortest_path(s, t)] == ['s', 'slow', 't']


def test_no_path_returns_none(diamond):
    graph, s, t = diamond
    assert graph.get_shortest_path(t, s) is None
    assert graph.solve_path('s', 'missing') is None


def test_cycles_and_multiple_inbound_edges():
    graph = RoadGraph()
    a, b, c, d = build_line(graph, 'n', [(0, 0), (10, 0), (20, 0), (30, 0)])
    c.add_neighbor(a)
    d.add_neighbor(b)
    path = graph.get_shortest_path(a, d)
    assert [wp.id for wp in path] == ['n0', 'n1', 'n2', 'n3']
    assert RoadGraph.path_length(path) == pytest.approx(30.0)
    assert graph.get_shortest_path(d, a) == [d, b, c, a]


def test_multiplier_below_one_still_finds_cheapest():
    graph = RoadGraph()
    s = graph.add_waypoint(Waypoint('s', Vector(0, 0)))
    fast = graph.add_waypoint(Waypoint('fast', Vector(0, 60), cost_multiplier=0.1))
    mid = graph.add_waypoint(Waypoint('mid', Vector(50, 0)))
    t = graph.add_waypoint(Waypoint('t', Vector(100, 0), cost_multiplier=1.0))
    graph.connect('s', 'mid')
    graph.connect('mid', 't')
    graph.connect('s', 'fast')
    graph.connect('fast', 't')
    path = graph.get_shortest_path(s, t)
    best = min(RoadGraph.path_cost([s, mid, t]), RoadGraph.path_cost([s, fast, t]))
    assert RoadGraph.path_cost(path) == pytest.approx(best)


def test_initialize_from_dict_skips_unknown_neighbors():
    graph = RoadGraph()
    graph.initialize_from_dict({'waypoints': [
        {'id': 1, 'position': {'x': 0, 'y': 0}, 'neighbors': [2, 99]},
        {'id': 2, 'position': [10, 0, 0], 'cost_multiplier': 2.0},
    ]})
    assert len(graph) == 2
    assert graph.get_waypoint(1).neighbors == [graph.get_waypoint(2)]
    assert graph.get_waypoint(2).cost_multiplier == 2.0


def test_closest_waypoint(straight_graph):
    assert straight_graph.get_closest_waypoint(Vector(74, 3)).id == 'w1'
    assert RoadGraph().get_closest_waypoint(Vector(0, 0)) is None
