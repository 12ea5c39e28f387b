"""Three-dimensional vector utilities module, providing the Vector class and related operations."""
from dataclasses import dataclass


@dataclass
class Vector:
    """Three-dimensional vector class.

    Used for positions and directions in world space (meters). The ground plane
    is (x, y); z is height and defaults to zero.

    Attributes:
        x: X coordinate.
        y: Y coordinate.
        z: Z coordinate.
    """

    x: float
    y: float
    z: float

    def __init__(self, x, y=None, z=None):
        """Initialize the vector.

        Accepts three scalars, two scalars (z = 0), a list/tuple of two or three
        values, or a dict with 'x', 'y' and optional 'z' keys.

        Args:
            x: X coordinate, or a sequence/dict holding all coordinates.
            y: Y coordinate.
            z: Z coordinate.
        """
        if y is None and isinstance(x, (list, tuple)):
            if len(x) not in (2, 3):
                raise ValueError(f'Invalid vector sequence: {x}')
            self.x = float(x[0])
            self.y = float(x[1])
            self.z = float(x[2]) if len(x) == 3 else 0.0
        elif y is None and isinstance(x, dict):
            self.x = float(x.get('x', 0))
            self.y = float(x.get('y', 0))
            self.z = float(x.get('z', 0))
        else:
            self.x = float(x)
            self.y = float(y) if y is not None else 0.0
            self.z = float(z) if z is not None else 0.0

    def normalize(self) -> 'Vector':
        """Normalize the vector.

        Returns:
            Normalized vector, or the zero vector when the length is zero.
        """
        magnitude = self.length()
        if magnitude == 0:
            return Vector(0, 0, 0)
        return Vector(self.x / magnitude, self.y / magnitude, self.z / magnitude)

    def __add__(self, other: 'Vector') -> 'Vector':
        """Vector addition."""
        return Vector(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: 'Vector') -> 'Vector':
        """Vector subtraction."""
        return Vector(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, other: float) -> 'Vector':
        """Vector multiplication by a scalar."""
        return Vector(self.x * other, self.y * other, self.z * other)

    __rmul__ = __mul__

    def __truediv__(self, other: float) -> 'Vector':
        """Vector division by a scalar."""
        return Vector(self.x / other, self.y / other, self.z / other)

    def __neg__(self) -> 'Vector':
        return Vector(-self.x, -self.y, -self.z)

    def distance(self, other: 'Vector') -> float:
        """Calculate distance to another vector.

        Args:
            other: Another vector.

        Returns:
            Euclidean distance between the two vectors.
        """
        return ((self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2) ** 0.5

    def __eq__(self, other: 'Vector') -> bool:
        """Check if two vectors are equal within a 1e-3 tolerance per axis."""
        if not isinstance(other, Vector):
            return NotImplemented
        return abs(self.x - other.x) < 1e-3 and abs(self.y - other.y) < 1e-3 and abs(self.z - other.z) < 1e-3

    # tolerance equality is not transitive, so no hash can agree with it
    __hash__ = None

    def dot(self, other: 'Vector') -> float:
        """Calculate dot product with another vector."""
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: 'Vector') -> 'Vector':
        """Calculate cross product with another vector."""
        return Vector(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def length(self) -> float:
        """Calculate length of the vector."""
        return (self.x ** 2 + self.y ** 2 + self.z ** 2) ** 0.5

    def to_dict(self) -> dict:
        return {'x': self.x, 'y': self.y, 'z': self.z}
