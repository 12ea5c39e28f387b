"""Road graph package: waypoints and shortest-path search."""

from speedwatch.map.map import RoadGraph, Waypoint

__all__ = ['RoadGraph', 'Waypoint']
