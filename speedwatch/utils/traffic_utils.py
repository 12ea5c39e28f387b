"""Utility functions for path geometry: spline interpolation and path lengths."""
from typing import List, Sequence, Tuple

from speedwatch.utils.vector import Vector


def catmull_rom(t: float, p0: Vector, p1: Vector, p2: Vector, p3: Vector) -> Vector:
    """Calculate a point on a uniform Catmull-Rom spline between p1 and p2.

    Args:
        t: Parameter value between 0 and 1 representing progress from p1 to p2.
        p0: Control point before p1.
        p1: Segment start.
        p2: Segment end.
        p3: Control point after p2.

    Returns:
        A Vector representing the point on the curve at parameter t.
    """
    a = p1 * 2
    b = p2 - p0
    c = p0 * 2 - p1 * 5 + p2 * 4 - p3
    d = p1 * 3 - p0 - p2 * 3 + p3
    return (a + b * t + c * (t * t) + d * (t * t * t)) * 0.5


def catmull_rom_heading(t: float, p0: Vector, p1: Vector, p2: Vector, p3: Vector, lookahead: float = 0.1) -> Vector:
    """Unit direction of travel at parameter t, sampled a little further along the curve.

    Falls back to the chord direction p1 -> p2 when the sampled points coincide.
    """
    here = catmull_rom(t, p0, p1, p2, p3)
    ahead = catmull_rom(min(t + lookahead, 1.0), p0, p1, p2, p3)
    direction = (ahead - here).normalize()
    if direction.length() == 0:
        return (p2 - p1).normalize()
    return direction


def spline_window(points: Sequence[Vector], index: int) -> Tuple[Vector, Vector, Vector, Vector]:
    """Four-point window for the segment points[index] -> points[index + 1].

    The path ends duplicate their boundary points.

    Args:
        points: Ordered path positions, at least two.
        index: Segment index in [0, len(points) - 2].

    Returns:
        Tuple (p0, p1, p2, p3).
    """
    p1 = points[index]
    p2 = points[index + 1]
    p0 = points[index - 1] if index - 1 >= 0 else p1
    p3 = points[index + 2] if index + 2 < len(points) else p2
    return p0, p1, p2, p3


def path_length(points: Sequence[Vector]) -> float:
    """Sum of the straight-line lengths between consecutive points."""
    return sum(points[i].distance(points[i + 1]) for i in range(len(points) - 1))


def lerp(start: float, end: float, t: float) -> float:
    """Linear interpolation with t clamped to [0, 1]."""
    t = max(0.0, min(1.0, t))
    return start + (end - start) * t


def sample_segment(start: Vector, end: Vector, step: float) -> List[Vector]:
    """Points spaced `step` apart from start to end, end point included.

    Args:
        start: Starting point.
        end: Ending point.
        step: Distance between consecutive samples.

    Returns:
        List of points after start up to and including end.
    """
    distance = start.distance(end)
    if distance == 0 or step <= 0:
        return [end]
    num_samples = int(distance // step)
    samples = []
    for i in range(1, num_samples + 1):
        fraction = i * step / distance
        if fraction >= 1.0:
            break
        samples.append(start + (end - start) * fraction)
    samples.append(end)
    return samples
