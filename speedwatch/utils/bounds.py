"""Axis-aligned bounds on the ground plane."""
from dataclasses import dataclass


@dataclass
class Bounds:
    """A bounding box with x, y, width and height.

    (x, y) is the bottom-left corner of the bounding box
    width: extent along x
    height: extent along y
    """
    x: float
    y: float
    width: float
    height: float

    def __hash__(self):
        """Return the hash value of the bounds."""
        return hash((self.x, self.y, self.width, self.height))

    @classmethod
    def around(cls, x: float, y: float, radius: float) -> 'Bounds':
        """Square bounds centered on (x, y) with the given half-size."""
        return cls(x - radius, y - radius, 2 * radius, 2 * radius)

    def to_dict(self):
        """Convert the bounds to dictionary representation."""
        return {
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
        }

    def intersects(self, other: 'Bounds') -> bool:
        """Checks if two Bounds objects' bounding boxes intersect."""
        return not (self.x + self.width < other.x or
                    self.x > other.x + other.width or
                    self.y + self.height < other.y or
                    self.y > other.y + other.height)
