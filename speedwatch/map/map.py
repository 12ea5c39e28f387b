"""Map module: defines Waypoint and the RoadGraph used for shortest-path search."""

import heapq
import itertools
from typing import Dict, Iterable, List, Optional

from speedwatch.utils.load_json import load_json
from speedwatch.utils.logger import Logger
from speedwatch.utils.traffic_utils import path_length
from speedwatch.utils.vector import Vector


class Waypoint:
    """Node of the directed road graph.

    Neighbors are one-way: a waypoint lists the waypoints that can be reached
    from it. The cost multiplier scales the cost of every edge arriving here
    (higher = slower or congested road).
    """

    def __init__(self, waypoint_id, position: Vector, cost_multiplier: float = 1.0):
        """Initialize a Waypoint.

        Args:
            waypoint_id: Stable identifier, unique within a graph.
            position: World position in meters.
            cost_multiplier: Traversal-cost multiplier for edges entering this node.
        """
        self.id = waypoint_id
        self.position = position
        self.cost_multiplier = cost_multiplier
        self.neighbors: List['Waypoint'] = []

    def __str__(self) -> str:
        """Return a readable string representation of the waypoint."""
        return f'Waypoint(id={self.id}, position={self.position})'

    def __repr__(self) -> str:
        """Alias for __str__."""
        return self.__str__()

    def add_neighbor(self, other: 'Waypoint') -> None:
        """Add a one-way connection to `other`, ignoring duplicates."""
        if other not in self.neighbors:
            self.neighbors.append(other)


class RoadGraph:
    """Directed weighted graph of waypoints with A* path search.

    The graph is edited by topology tooling and treated as read-only by the
    simulation once vehicles are running.
    """

    def __init__(self):
        """Initialize an empty graph."""
        self.waypoints: Dict[object, Waypoint] = {}
        self.logger = Logger.get_logger('RoadGraph')

    def __str__(self) -> str:
        """Return a string representation of the graph."""
        edges = sum(len(wp.neighbors) for wp in self.waypoints.values())
        return f'RoadGraph(waypoints={len(self.waypoints)}, edges={edges})'

    def __repr__(self) -> str:
        """Alias for __str__."""
        return self.__str__()

    def __len__(self) -> int:
        return len(self.waypoints)

    def initialize_from_file(self, file_path: str) -> None:
        """Load waypoints from a JSON topology file.

        Args:
            file_path: Path to the topology file.
        """
        self.logger.info(f'Loading road graph from file: {file_path}')
        self.initialize_from_dict(load_json(file_path))

    def initialize_from_dict(self, data: dict) -> None:
        """Load waypoints and their one-way links from a topology dictionary.

        Links naming unknown waypoints are skipped with a warning.

        Args:
            data: Dictionary with a 'waypoints' list; each entry has 'id', 'position'
                and optional 'neighbors' and 'cost_multiplier'.
        """
        entries = data.get('waypoints', [])
        for entry in entries:
            self.add_waypoint(Waypoint(entry['id'], Vector(entry['position']), entry.get('cost_multiplier', 1.0)))

        for entry in entries:
            for neighbor_id in entry.get('neighbors', []):
                if neighbor_id not in self.waypoints:
                    self.logger.warning(f"Waypoint {entry['id']} links to unknown waypoint {neighbor_id}, skipped")
                    continue
                self.connect(entry['id'], neighbor_id)

        self.logger.info(f'Road graph initialized: {self}')

    def add_waypoint(self, waypoint: Waypoint) -> Waypoint:
        """Add a waypoint to the graph, replacing one with the same id."""
        self.waypoints[waypoint.id] = waypoint
        return waypoint

    def connect(self, from_id, to_id) -> None:
        """Create a one-way link between two registered waypoints."""
        self.waypoints[from_id].add_neighbor(self.waypoints[to_id])

    def get_waypoint(self, waypoint_id) -> Optional[Waypoint]:
        """Return the waypoint with the given id, or None."""
        return self.waypoints.get(waypoint_id)

    def get_closest_waypoint(self, position: Vector) -> Optional[Waypoint]:
        """Return the waypoint nearest to a position, or None for an empty graph."""
        if not self.waypoints:
            return None
        return min(self.waypoints.values(), key=lambda wp: wp.position.distance(position))

    def get_shortest_path(self, start: Waypoint, end: Waypoint) -> Optional[List[Waypoint]]:
        """Get the lowest-cost path between two waypoints using A*.

        Edge cost is the Euclidean length times the destination's cost multiplier.
        The straight-line heuristic is scaled by the smallest multiplier below one
        so that it never overestimates. Closed nodes are never expanded again.

        Args:
            start: Start waypoint.
            end: Target waypoint.

        Returns:
            List of waypoints from start to end inclusive, or None when no path exists.
        """
        if start is None or end is None:
            return None
        if start is end:
            return [start]

        heuristic_scale = min([1.0] + [wp.cost_multiplier for wp in self.waypoints.values()])
        heuristic_scale = max(heuristic_scale, 0.0)

        tie_breaker = itertools.count()
        open_heap = []
        heapq.heappush(open_heap, (start.position.distance(end.position) * heuristic_scale, next(tie_breaker), start))
        came_from = {}
        g_score = {start: 0.0}
        closed_set = set()

        while open_heap:
            _, _, current = heapq.heappop(open_heap)
            if current is end:
                return self._reconstruct_path(start, end, came_from)
            if current in closed_set:
                continue
            closed_set.add(current)

            for neighbor in current.neighbors:
                if neighbor in closed_set:
                    continue
                tentative_g = g_score[current] + current.position.distance(neighbor.position) * neighbor.cost_multiplier
                if tentative_g < g_score.get(neighbor, float('inf')):
                    came_from[neighbor] = current
                    g_score[neighbor] = tentative_g
                    f_score = tentative_g + neighbor.position.distance(end.position) * heuristic_scale
                    heapq.heappush(open_heap, (f_score, next(tie_breaker), neighbor))
        return None

    def solve_path(self, start_id, end_id) -> Optional[List[Waypoint]]:
        """Shortest path between two waypoint ids; None when either is unknown or unreachable."""
        return self.get_shortest_path(self.get_waypoint(start_id), self.get_waypoint(end_id))

    @staticmethod
    def path_cost(path: Iterable[Waypoint]) -> float:
        """Total search cost of a path (length weighted by destination multipliers)."""
        path = list(path)
        return sum(path[i].position.distance(path[i + 1].position) * path[i + 1].cost_multiplier
                   for i in range(len(path) - 1))

    @staticmethod
    def path_length(path: Iterable[Waypoint]) -> float:
        """Geometric length of a path in meters."""
        return path_length([wp.position for wp in path])

    def _reconstruct_path(self, start, end, came_from):
        """Reconstruct the path from start to end.

        Args:
            start: Start waypoint.
            end: End waypoint.
            came_from: Predecessor mapping built during the search.

        Returns:
            List of waypoints from start to end.
        """
        path = [end]
        current = end
        while current is not start:
            current = came_from[current]
            path.append(current)
        path.reverse()
        return path
