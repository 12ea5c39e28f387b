"""Base agent class for all moving agents in the simulation."""
import math

from speedwatch.utils.vector import Vector


class BaseAgent:
    """Base class for agents that move on the road graph."""

    def __init__(self, position: Vector, direction: Vector):
        """Initialize the base agent.

        Args:
            position: Initial position vector.
            direction: Initial direction of travel.
        """
        self._position = position
        self._direction = direction.normalize()
        self._yaw = math.degrees(math.atan2(self._direction.y, self._direction.x))

    @property
    def position(self) -> Vector:
        """Get the position of the agent.

        Returns:
            Vector: The position of the agent.
        """
        return self._position

    @position.setter
    def position(self, position: Vector):
        self._position = position

    @property
    def direction(self) -> Vector:
        """Unit direction of travel."""
        return self._direction

    @direction.setter
    def direction(self, direction: Vector):
        """Set the direction of travel; a zero vector keeps the previous heading.

        Args:
            direction: New direction, not necessarily normalized.
        """
        if direction.length() == 0:
            return
        self._direction = direction.normalize()
        self._yaw = math.degrees(math.atan2(self._direction.y, self._direction.x))

    @property
    def yaw(self) -> float:
        """Heading in degrees around the vertical axis."""
        return self._yaw
