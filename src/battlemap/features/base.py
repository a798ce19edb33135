"""Common shape of every placed map feature.

Features form a tagged union: each variant dataclass carries a ``kind`` tag
and the mixing engine dispatches on that tag through rule tables rather
than on methods of the variants. Cross-feature references (tributaries,
bridges, grafted trees) are stored as ids and resolved through the map's
feature index.
"""

from dataclasses import dataclass, field
from typing import Any

from battlemap import errors
from battlemap.geometry import SpatialBounds
from battlemap.models import CATEGORY_BY_KIND, FeatureCategory, FeatureKind
from battlemap.seed import Seed

DEFAULT_PRIORITY: dict[FeatureKind, int] = {
    FeatureKind.HILL: 1,
    FeatureKind.RIDGE: 1,
    FeatureKind.VALLEY: 1,
    FeatureKind.CLIFF: 2,
    FeatureKind.RIVER: 3,
    FeatureKind.LAKE: 2,
    FeatureKind.SPRING: 1,
    FeatureKind.WETLAND: 2,
    FeatureKind.FOREST: 2,
    FeatureKind.GRASSLAND: 1,
    FeatureKind.BUILDING: 4,
    FeatureKind.ROAD: 3,
    FeatureKind.BRIDGE: 4,
}


def feature_id(seed: Seed, kind: FeatureKind, x: int, y: int, ordinal: int = 0) -> str:
    """Deterministic id from the layer seed and the placement anchor."""
    derived = seed.derive(kind.value, x, y, ordinal)
    return f"{kind.value}_{derived.value:08x}"


@dataclass(kw_only=True)
class MapFeature:
    """Fields shared by every feature variant."""

    id: str
    name: str
    kind: FeatureKind
    area: SpatialBounds
    priority: int = -1
    cells: list[tuple[int, int]] = field(default_factory=list)
    properties: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.priority < 0:
            self.priority = DEFAULT_PRIORITY[self.kind]

    @property
    def category(self) -> FeatureCategory:
        return CATEGORY_BY_KIND[self.kind]

    def claimed_cells(self) -> list[tuple[int, int]]:
        """Tiles this feature occupies; the whole area unless narrowed."""
        if self.cells:
            return list(self.cells)
        return list(self.area.tiles())

    def overlaps(self, other: "MapFeature") -> bool:
        return self.area.intersects(other.area)

    def intersection(self, other: "MapFeature") -> SpatialBounds | None:
        return self.area.intersection(other.area)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "category": self.category.value,
            "priority": self.priority,
            "area": [self.area.x, self.area.y, self.area.width, self.area.height],
            "cells": len(self.claimed_cells()),
        }


RELIEF_KINDS = frozenset({FeatureKind.HILL, FeatureKind.RIDGE, FeatureKind.VALLEY, FeatureKind.CLIFF})


@dataclass(kw_only=True)
class ReliefFeature(MapFeature):
    """Hill, ridge, valley or cliff detected from the elevation field."""

    prominence: float = 0.0

    def __post_init__(self) -> None:
        if self.kind not in RELIEF_KINDS:
            raise errors.invalid_geometry("ReliefFeature", f"{self.kind} is not a relief kind", kind=str(self.kind))
        super().__post_init__()
