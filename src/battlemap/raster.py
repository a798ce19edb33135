"""Grid helpers shared by the layers: D8 neighborhoods and region finding.

Arrays are indexed ``[y, x]`` like the tile grid.
"""

import numpy as np
from numpy.typing import NDArray

# D8 neighbor order, clockwise from north. Index i is the flow direction
# code stored on tiles; ties between equally steep descents go to the
# lowest index.
D8_OFFSETS: tuple[tuple[int, int], ...] = (
    (0, -1),  # N
    (1, -1),  # NE
    (1, 0),  # E
    (1, 1),  # SE
    (0, 1),  # S
    (-1, 1),  # SW
    (-1, 0),  # W
    (-1, -1),  # NW
)
D8_DISTANCES: tuple[float, ...] = tuple(1.0 if dx == 0 or dy == 0 else 2**0.5 for dx, dy in D8_OFFSETS)
D8_BEARINGS: tuple[float, ...] = (0.0, 45.0, 90.0, 135.0, 180.0, 225.0, 270.0, 315.0)
NO_FLOW = -1


def in_bounds(x: int, y: int, width: int, height: int) -> bool:
    return 0 <= x < width and 0 <= y < height


def neighbors4(x: int, y: int, width: int, height: int) -> list[tuple[int, int]]:
    return [
        (nx, ny)
        for nx, ny in ((x, y - 1), (x + 1, y), (x, y + 1), (x - 1, y))
        if in_bounds(nx, ny, width, height)
    ]


def neighbors8(x: int, y: int, width: int, height: int) -> list[tuple[int, int, int]]:
    """In-bounds D8 neighbors as (direction, x, y)."""
    result = []
    for direction, (dx, dy) in enumerate(D8_OFFSETS):
        nx, ny = x + dx, y + dy
        if in_bounds(nx, ny, width, height):
            result.append((direction, nx, ny))
    return result


def flood_fill(
    mask: NDArray[np.bool_],
    visited: NDArray[np.bool_],
    start_x: int,
    start_y: int,
) -> list[tuple[int, int]]:
    """Flood fill to find the 4-connected region of ``mask`` containing the start."""
    h, w = mask.shape
    stack = [(start_x, start_y)]
    cells = []

    while stack:
        x, y = stack.pop()
        if x < 0 or x >= w or y < 0 or y >= h:
            continue
        if visited[y, x] or not mask[y, x]:
            continue

        visited[y, x] = True
        cells.append((x, y))

        stack.extend([(x, y - 1), (x + 1, y), (x, y + 1), (x - 1, y)])

    return sorted(cells, key=lambda c: (c[1], c[0]))


def connected_regions(mask: NDArray[np.bool_], min_size: int = 1) -> list[list[tuple[int, int]]]:
    """All 4-connected regions of ``mask``, in row-major order of their first tile."""
    h, w = mask.shape
    visited = np.zeros_like(mask, dtype=bool)
    regions = []
    for y in range(h):
        for x in range(w):
            if mask[y, x] and not visited[y, x]:
                cells = flood_fill(mask, visited, x, y)
                if len(cells) >= min_size:
                    regions.append(cells)
    return regions


def normalize(field: NDArray[np.float64]) -> NDArray[np.float64]:
    """Stretch ``field`` to [0, 1]; a flat field becomes all zeros."""
    low, high = float(field.min()), float(field.max())
    if high - low < 1e-12:
        return np.zeros_like(field)
    return (field - low) / (high - low)
