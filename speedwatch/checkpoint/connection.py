"""Directed timed connection between two checkpoints."""
from threading import Lock

SPEED_CONVERSION = 3.6  # km/h per m/s


class Connection:
    """Directed edge keyed by (from_id, to_id).

    Attributes:
        from_id: Id of the checkpoint the connection starts at.
        to_id: Id of the checkpoint the connection ends at.
        speed_limit: Speed limit in km/h.
        distance: Road distance in meters.
        min_traversal_time: Fastest probe time in seconds; 0 until calibrated.
        occupancy: Number of vehicles currently driving the connection.
    """

    def __init__(self, from_id: int, to_id: int, speed_limit: float, distance: float):
        self.from_id = from_id
        self.to_id = to_id
        self.speed_limit = float(speed_limit)
        self.distance = max(0.0, float(distance))
        self.min_traversal_time = 0.0
        self._occupancy = 0
        self._lock = Lock()

    def __repr__(self):
        return (f'Connection({self.from_id}->{self.to_id}, limit={self.speed_limit}km/h, '
                f'distance={self.distance:.1f}m, min_time={self.min_traversal_time:.2f}s, occupancy={self._occupancy})')

    @property
    def key(self):
        return self.from_id, self.to_id

    @property
    def occupancy(self) -> int:
        return self._occupancy

    def min_legal_time(self) -> float:
        """Shortest legal traversal time in seconds at the speed limit; 0 for a non-positive limit."""
        speed_ms = self.speed_limit / SPEED_CONVERSION
        if speed_ms <= 0:
            return 0.0
        return self.distance / speed_ms

    def set_min_traversal_time(self, seconds: float) -> None:
        self.min_traversal_time = max(0.0, float(seconds))

    def increment_occupancy(self) -> int:
        with self._lock:
            self._occupancy += 1
            return self._occupancy

    def decrement_occupancy(self) -> int:
        with self._lock:
            self._occupancy = max(0, self._occupancy - 1)
            return self._occupancy

    def density(self) -> float:
        """Vehicles per 100 meters, for display."""
        if self.distance <= 0:
            return 0.0
        return self._occupancy / self.distance * 100.0

    def to_dict(self) -> dict:
        return {
            'from_id': self.from_id,
            'to_id': self.to_id,
            'speed_limit': self.speed_limit,
            'distance': self.distance,
            'min_traversal_time': self.min_traversal_time,
            'occupancy': self._occupancy,
            'density': self.density(),
        }
