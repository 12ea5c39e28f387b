"""Checkpoint module: enforcement points spanning one or more lanes.

A checkpoint is an oriented box volume on the road. Its forward axis follows
the road and its width spans the anchored lanes. Vehicles and probes detect a
crossing by testing their position against the volume every step.
"""
import math
from typing import List, Optional, Sequence, Tuple

from speedwatch.errors import PlacementLockedError
from speedwatch.map.map import RoadGraph, Waypoint
from speedwatch.utils.vector import Vector


class Checkpoint:
    """Enforcement checkpoint with a stable integer id and anchor waypoints."""

    def __init__(self, checkpoint_id: int, position: Vector, anchors: Sequence[Waypoint] = (),
                 size: Tuple[float, float, float] = (6.0, 2.0, 4.0), yaw: float = 0.0):
        """Initialize a checkpoint.

        Args:
            checkpoint_id: Stable id, unique within the network.
            position: Center of the volume.
            anchors: Ordered anchor waypoints, one per lane spanned.
            size: (width across the road, depth along the road, height).
            yaw: Heading of the forward axis in degrees, counter-clockwise from +x.
        """
        self.id = checkpoint_id
        self.anchors: List[Waypoint] = list(anchors)
        self.is_placed = False
        self._position = position
        self._size = tuple(float(s) for s in size)
        self._yaw = float(yaw)

    def __repr__(self):
        return f'Checkpoint(id={self.id}, position={self._position}, anchors={[wp.id for wp in self.anchors]})'

    @property
    def position(self) -> Vector:
        return self._position

    @property
    def size(self) -> Tuple[float, float, float]:
        return self._size

    @property
    def yaw(self) -> float:
        return self._yaw

    @property
    def forward(self) -> Vector:
        """Unit vector along the road."""
        rad = math.radians(self._yaw)
        return Vector(math.cos(rad), math.sin(rad), 0)

    @property
    def right(self) -> Vector:
        """Unit vector across the road."""
        rad = math.radians(self._yaw)
        return Vector(math.sin(rad), -math.cos(rad), 0)

    def move(self, position: Vector = None, yaw: float = None, size: Tuple[float, float, float] = None):
        """Change the volume before it is locked.

        Raises:
            PlacementLockedError: If the placement has been locked.
        """
        if self.is_placed:
            raise PlacementLockedError(f'Checkpoint {self.id} placement is locked')
        if position is not None:
            self._position = position
        if yaw is not None:
            self._yaw = float(yaw)
        if size is not None:
            self._size = tuple(float(s) for s in size)

    def lock_placement(self):
        """Freeze position, orientation and size for the lifetime of the network."""
        self.is_placed = True

    def contains(self, point: Vector) -> bool:
        """Point-in-volume test against the oriented box."""
        offset = point - self._position
        width, depth, height = self._size
        return (abs(offset.dot(self.forward)) <= depth / 2
                and abs(offset.dot(self.right)) <= width / 2
                and abs(offset.z) <= height / 2)

    def first_anchor(self) -> Optional[Waypoint]:
        return self.anchors[0] if self.anchors else None

    def find_aligned_waypoints(self, primary: Waypoint, candidates: Sequence[Waypoint],
                               lane_detection_radius: float = 5.0, alignment_tolerance: float = 0.3) -> List[Waypoint]:
        """Find waypoints lying beside `primary` across the road.

        A candidate qualifies when it is within the lane detection radius and its
        offset from the primary is mostly perpendicular to the forward axis.

        Args:
            primary: Waypoint under the checkpoint; always returned first.
            candidates: Waypoints to test.
            lane_detection_radius: Maximum distance from the primary.
            alignment_tolerance: Maximum |cos| between the offset and the forward axis.

        Returns:
            Aligned waypoints, primary first.
        """
        if primary is None:
            return []
        aligned = [primary]
        forward = self.forward
        for waypoint in candidates:
            if waypoint is primary:
                continue
            to_waypoint = waypoint.position - primary.position
            distance = to_waypoint.length()
            if distance == 0 or distance > lane_detection_radius:
                continue
            if abs(to_waypoint.normalize().dot(forward)) < alignment_tolerance:
                aligned.append(waypoint)
        return aligned

    def calculate_width_for_waypoints(self, padding: float = 2.0, min_width: float = 2.0) -> Tuple[float, Vector]:
        """Width needed to cover every anchor, and the matching center.

        Anchors are projected on the right axis; the width is the projected span
        plus padding, never less than `min_width`.

        Returns:
            Tuple (width, center position).
        """
        if not self.anchors:
            return self._size[0], self._position

        right = self.right
        ref_point = self.anchors[0].position
        projections = [(wp.position - ref_point).dot(right) for wp in self.anchors]
        min_proj, max_proj = min(projections), max(projections)

        width = (max_proj - min_proj) + padding
        center = ref_point + right * ((min_proj + max_proj) / 2)
        return max(width, min_width), center


def road_direction(waypoint: Waypoint, graph: RoadGraph) -> Vector:
    """Average of the unit directions entering and leaving `waypoint` on the ground plane."""
    total = Vector(0, 0, 0)
    for neighbor in waypoint.neighbors:
        total = total + (neighbor.position - waypoint.position).normalize()
    for other in graph.waypoints.values():
        if waypoint in other.neighbors:
            total = total + (waypoint.position - other.position).normalize()
    return Vector(total.x, total.y, 0).normalize()


def place_checkpoint(checkpoint_id: int, primary: Waypoint, graph: RoadGraph, config) -> Checkpoint:
    """Create and lock a checkpoint across the road at `primary`.

    The checkpoint is oriented along the local road direction, anchored to every
    aligned lane waypoint and widened to cover them.

    Args:
        checkpoint_id: Id for the new checkpoint.
        primary: Waypoint the checkpoint is placed on.
        graph: Road graph holding the candidate lane waypoints.
        config: Configuration with the `checkpoint.*` section.

    Returns:
        The placed, locked checkpoint.
    """
    direction = road_direction(primary, graph)
    yaw = math.degrees(math.atan2(direction.y, direction.x)) if direction.length() > 0 else 0.0
    width, depth, height = config['checkpoint.size']

    checkpoint = Checkpoint(checkpoint_id, primary.position, size=(width, depth, height), yaw=yaw)
    checkpoint.anchors = checkpoint.find_aligned_waypoints(
        primary, list(graph.waypoints.values()),
        lane_detection_radius=config['checkpoint.lane_detection_radius'],
        alignment_tolerance=config['checkpoint.alignment_tolerance'],
    )
    fitted_width, center = checkpoint.calculate_width_for_waypoints(
        padding=config['checkpoint.width_padding'], min_width=config['checkpoint.min_width'])
    checkpoint.move(position=center, size=(fitted_width, depth, height))
    checkpoint.lock_placement()
    return checkpoint
