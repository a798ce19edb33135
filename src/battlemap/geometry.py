"""Spatial primitives shared by every layer."""

import math
from collections.abc import Iterator
from dataclasses import dataclass

from shapely.geometry import Polygon, box

from battlemap import errors


@dataclass(frozen=True)
class Position:
    """A finite point in tile units."""

    x: float
    y: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.x) and math.isfinite(self.y)):
            raise errors.invalid_geometry("Position", "coordinates must be finite", x=self.x, y=self.y)

    def distance_to(self, other: "Position") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def offset(self, dx: float, dy: float) -> "Position":
        return Position(self.x + dx, self.y + dy)

    def tile(self) -> tuple[int, int]:
        """Integer tile coordinate containing this point."""
        return math.floor(self.x), math.floor(self.y)


@dataclass(frozen=True)
class SubTilePosition:
    """Integer tile coordinate plus a fractional offset in [0, 1)."""

    tile_x: int
    tile_y: int
    offset_x: float = 0.5
    offset_y: float = 0.5

    def __post_init__(self) -> None:
        if not (isinstance(self.tile_x, int) and isinstance(self.tile_y, int)):
            raise errors.invalid_geometry(
                "SubTilePosition", "tile coordinates must be integers", tile_x=self.tile_x, tile_y=self.tile_y
            )
        if not (0.0 <= self.offset_x < 1.0 and 0.0 <= self.offset_y < 1.0):
            raise errors.invalid_geometry(
                "SubTilePosition", "offsets must be in [0, 1)", offset_x=self.offset_x, offset_y=self.offset_y
            )

    @classmethod
    def from_absolute(cls, x: float, y: float) -> "SubTilePosition":
        tx, ty = math.floor(x), math.floor(y)
        # float rounding can push x - floor(x) to exactly 1.0
        ox = min(x - tx, math.nextafter(1.0, 0.0))
        oy = min(y - ty, math.nextafter(1.0, 0.0))
        return cls(tx, ty, ox, oy)

    @property
    def absolute(self) -> Position:
        return Position(self.tile_x + self.offset_x, self.tile_y + self.offset_y)

    def distance_to(self, other: "SubTilePosition") -> float:
        return self.absolute.distance_to(other.absolute)


@dataclass(frozen=True)
class Dimensions:
    """Positive integer width and height."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise errors.invalid_geometry(
                "Dimensions", "width and height must be positive", width=self.width, height=self.height
            )

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class SpatialBounds:
    """Axis-aligned rectangle, half-open on the right and bottom edges."""

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise errors.invalid_geometry(
                "SpatialBounds", "width and height must be positive", width=self.width, height=self.height
            )

    @classmethod
    def from_position(cls, position: Position, dimensions: Dimensions) -> "SpatialBounds":
        return cls(math.floor(position.x), math.floor(position.y), dimensions.width, dimensions.height)

    @classmethod
    def around(cls, cells: list[tuple[int, int]]) -> "SpatialBounds":
        """Smallest bounds covering every (x, y) tile in ``cells``."""
        xs = [c[0] for c in cells]
        ys = [c[1] for c in cells]
        return cls(min(xs), min(ys), max(xs) - min(xs) + 1, max(ys) - min(ys) + 1)

    @property
    def left(self) -> int:
        return self.x

    @property
    def top(self) -> int:
        return self.y

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Position:
        return Position(self.x + self.width / 2, self.y + self.height / 2)

    def contains(self, position: Position) -> bool:
        return self.left <= position.x < self.right and self.top <= position.y < self.bottom

    def contains_tile(self, x: int, y: int) -> bool:
        return self.left <= x < self.right and self.top <= y < self.bottom

    def contains_bounds(self, other: "SpatialBounds") -> bool:
        return (
            self.left <= other.left
            and other.right <= self.right
            and self.top <= other.top
            and other.bottom <= self.bottom
        )

    def intersects(self, other: "SpatialBounds") -> bool:
        return not (
            self.right <= other.left
            or other.right <= self.left
            or self.bottom <= other.top
            or other.bottom <= self.top
        )

    def intersection(self, other: "SpatialBounds") -> "SpatialBounds | None":
        left = max(self.left, other.left)
        right = min(self.right, other.right)
        top = max(self.top, other.top)
        bottom = min(self.bottom, other.bottom)
        if left >= right or top >= bottom:
            return None
        return SpatialBounds(left, top, right - left, bottom - top)

    def expand(self, margin: int) -> "SpatialBounds":
        return SpatialBounds(self.x - margin, self.y - margin, self.width + 2 * margin, self.height + 2 * margin)

    def clamp_to(self, width: int, height: int) -> "SpatialBounds | None":
        """Intersection with a ``width`` x ``height`` grid anchored at the origin."""
        return self.intersection(SpatialBounds(0, 0, width, height))

    def tiles(self) -> Iterator[tuple[int, int]]:
        """Iterate (x, y) tile coordinates row by row."""
        for ty in range(self.top, self.bottom):
            for tx in range(self.left, self.right):
                yield tx, ty

    def to_polygon(self) -> Polygon:
        return box(self.left, self.top, self.right, self.bottom)


# Features describe the ground they claim with the same rectangle type.
FeatureArea = SpatialBounds
