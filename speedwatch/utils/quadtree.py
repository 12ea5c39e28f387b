"""Quadtree implementation for spatial partitioning and neighbor queries."""
from typing import Callable, Generic, List, Optional, TypeVar

from speedwatch.utils.bounds import Bounds
from speedwatch.utils.vector import Vector

T = TypeVar('T')


class QuadTree(Generic[T]):
    """Quadtree data structure for spatial partitioning and querying.

    A quadtree recursively divides the ground plane into four quadrants so that
    neighbor queries only visit the quadrants overlapping the query area. The
    vehicle manager rebuilds one every tick; nothing is cached across ticks.

    Attributes:
        bounds: The spatial bounds of this quadtree node.
        max_objects: Maximum number of objects before splitting.
        max_levels: Maximum depth of the quadtree.
        level: Current depth level of this node.
        objects: List of object bounds in this node.
        items: List of items corresponding to the bounds.
        nodes: Child nodes of this quadtree.
    """

    def __init__(self, bounds: Bounds, max_objects=10, max_levels=6, level=0):
        """Initialize a new quadtree node.

        Args:
            bounds: The spatial bounds of this quadtree node.
            max_objects: Maximum number of objects before splitting.
            max_levels: Maximum depth of the quadtree.
            level: Current depth level of this node.
        """
        self.bounds = bounds
        self.max_objects = max_objects
        self.max_levels = max_levels
        self.level = level
        self.objects: List[Bounds] = []
        self.items: List[T] = []
        self.nodes: List[Optional[QuadTree]] = [None] * 4

    @classmethod
    def from_points(cls, items: List[T], position_of: Callable[[T], Vector], margin: float = 1.0) -> 'QuadTree[T]':
        """Build a tree sized to enclose every item position.

        Args:
            items: Items to index.
            position_of: Returns the world position of an item.
            margin: Padding added around the enclosing box.

        Returns:
            A populated quadtree.
        """
        if items:
            xs = [position_of(item).x for item in items]
            ys = [position_of(item).y for item in items]
            min_x, max_x = min(xs), max(xs)
            min_y, max_y = min(ys), max(ys)
        else:
            min_x = max_x = min_y = max_y = 0.0
        side = max(max_x - min_x, max_y - min_y) + 2 * margin
        tree = cls(Bounds(min_x - margin, min_y - margin, side, side))
        for item in items:
            position = position_of(item)
            tree.insert(Bounds(position.x, position.y, 0, 0), item)
        return tree

    def split(self):
        """Split this node into four child nodes.

        Divides the current node into four equal quadrants and redistributes
        the contained objects among them.
        """
        width = self.bounds.width / 2
        height = self.bounds.height / 2
        x = self.bounds.x
        y = self.bounds.y

        self.nodes[0] = QuadTree(Bounds(x + width, y, width, height), self.max_objects, self.max_levels, self.level + 1)
        self.nodes[1] = QuadTree(Bounds(x, y, width, height), self.max_objects, self.max_levels, self.level + 1)
        self.nodes[2] = QuadTree(Bounds(x, y + height, width, height), self.max_objects, self.max_levels, self.level + 1)
        self.nodes[3] = QuadTree(Bounds(x + width, y + height, width, height), self.max_objects, self.max_levels, self.level + 1)

        for i, rect in enumerate(self.objects):
            for node in self.get_relevant_nodes(rect):
                node.insert(rect, self.items[i])
        self.objects = []
        self.items = []

    def get_relevant_nodes(self, rect: Bounds) -> List['QuadTree[T]']:
        """Get the child nodes that intersect with the given rectangle.

        Args:
            rect: The bounding rectangle to test intersection with.

        Returns:
            List of child nodes that intersect with the rectangle.
        """
        nodes = []
        mid_x = self.bounds.x + self.bounds.width / 2
        mid_y = self.bounds.y + self.bounds.height / 2

        top = rect.y <= mid_y
        bottom = rect.y + rect.height > mid_y

        if rect.x <= mid_x:
            if top:
                nodes.append(self.nodes[1])
            if bottom:
                nodes.append(self.nodes[2])
        if rect.x + rect.width > mid_x:
            if top:
                nodes.append(self.nodes[0])
            if bottom:
                nodes.append(self.nodes[3])
        return [n for n in nodes if n is not None]

    def insert(self, rect: Bounds, item: T):
        """Insert an item with its bounds into the quadtree.

        Args:
            rect: The bounding rectangle of the item.
            item: The item to insert.
        """
        if any(self.nodes):
            for node in self.get_relevant_nodes(rect):
                node.insert(rect, item)
            return
        self.objects.append(rect)
        self.items.append(item)

        if len(self.objects) > self.max_objects and self.level < self.max_levels:
            self.split()

    def retrieve(self, rect: Bounds) -> List[T]:
        """Retrieve all items that might intersect with the given rectangle.

        Args:
            rect: The bounding rectangle to query.

        Returns:
            List of items that might intersect with the rectangle.
        """
        if any(self.nodes):
            result = []
            for node in self.get_relevant_nodes(rect):
                result.extend(node.retrieve(rect))
            return result
        return list(self.items)

    def retrieve_exact(self, query_rect: Bounds) -> List[T]:
        """Retrieve all items whose bounds intersect with the given rectangle.

        Args:
            query_rect: The bounding rectangle to query.

        Returns:
            List of distinct items that intersect with the rectangle.
        """
        result = []
        seen = set()
        for item, item_rect in self._pairs(query_rect):
            if id(item) in seen:
                continue
            if query_rect.intersects(item_rect):
                seen.add(id(item))
                result.append(item)
        return result

    def query_radius(self, center: Vector, radius: float, position_of: Callable[[T], Vector]) -> List[T]:
        """Retrieve the items lying within `radius` of `center` on the ground plane.

        Args:
            center: Query center.
            radius: Query radius in meters.
            position_of: Returns the world position of an item.

        Returns:
            List of distinct items within the radius.
        """
        candidates = self.retrieve_exact(Bounds.around(center.x, center.y, radius))
        return [item for item in candidates if position_of(item).distance(center) <= radius]

    def _pairs(self, rect: Bounds):
        if any(self.nodes):
            for node in self.get_relevant_nodes(rect):
                yield from node._pairs(rect)
        else:
            yield from zip(self.items, self.objects)

    def clear(self):
        """Clear the quadtree, removing all items and resetting to initial state."""
        self.objects = []
        self.items = []
        self.nodes = [None] * 4
