"""The map aggregate returned by the generation pipeline."""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from battlemap.features.base import MapFeature
from battlemap.geometry import Dimensions
from battlemap.models import Biome, FeatureKind
from battlemap.seed import Seed
from battlemap.tile import Tile, empty_grid

# Generated maps are stamped relative to this instant so that two runs with
# the same seed serialize identically.
EPOCH = datetime(2024, 1, 1, tzinfo=UTC)

# half cover or better counts as a defensible position
DEFENSIBLE_BONUS = 2


@dataclass
class MapMetadata:
    created_at: datetime
    updated_at: datetime
    author: str = "battlemap"
    description: str = ""
    tags: list[str] = field(default_factory=list)

    @classmethod
    def for_seed(cls, seed: Seed, author: str = "battlemap", description: str = "", tags: list[str] | None = None):
        stamp = EPOCH + timedelta(seconds=seed.value % (365 * 24 * 3600))
        return cls(
            created_at=stamp,
            updated_at=stamp,
            author=author,
            description=description,
            tags=list(tags or []),
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass
class GridMap:
    """A generated battle map: tile grid, features and metadata.

    Tiles are stored row-major (``tiles[y][x]``). Features are kept in the
    order the pipeline committed them, keyed by id.
    """

    id: str
    name: str
    dimensions: Dimensions
    cell_size: float
    seed: Seed
    biome: Biome
    tiles: list[list[Tile]]
    metadata: MapMetadata
    features: dict[str, MapFeature] = field(default_factory=dict)

    @classmethod
    def create_empty(
        cls, name: str, width: int, height: int, seed: Seed, biome: Biome, cell_size: float = 5.0, **metadata: Any
    ) -> "GridMap":
        return cls(
            id=f"map_{seed.derive('map', width, height).value:08x}",
            name=name,
            dimensions=Dimensions(width, height),
            cell_size=cell_size,
            seed=seed,
            biome=biome,
            tiles=empty_grid(width, height),
            metadata=MapMetadata.for_seed(seed, **metadata),
        )

    @property
    def width(self) -> int:
        return self.dimensions.width

    @property
    def height(self) -> int:
        return self.dimensions.height

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def tile_at(self, x: int, y: int) -> Tile | None:
        if not self.in_bounds(x, y):
            return None
        return self.tiles[y][x]

    def iter_tiles(self):
        for row in self.tiles:
            yield from row

    def add_feature(self, feature: MapFeature) -> None:
        self.features[feature.id] = feature

    def feature(self, feature_id: str) -> MapFeature | None:
        return self.features.get(feature_id)

    def features_at(self, x: int, y: int) -> list[MapFeature]:
        """Features referenced by the tile at (x, y), primary first."""
        tile = self.tile_at(x, y)
        if tile is None:
            return []
        return [self.features[fid] for fid in tile.feature_ids if fid in self.features]

    def features_of(self, kind: FeatureKind) -> list[MapFeature]:
        return [f for f in self.features.values() if f.kind == kind]

    @property
    def referenced_feature_ids(self) -> set[str]:
        ids: set[str] = set()
        for tile in self.iter_tiles():
            ids.update(tile.feature_ids)
        return ids

    def summary(self) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for f in self.features.values():
            counts[f.kind.value] = counts.get(f.kind.value, 0) + 1
        terrain: dict[str, int] = {}
        defensible = 0
        for tile in self.iter_tiles():
            terrain[tile.terrain.value] = terrain.get(tile.terrain.value, 0) + 1
            if tile.tactical.defense_bonus() >= DEFENSIBLE_BONUS:
                defensible += 1
        return {
            "id": self.id,
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "seed": self.seed.value,
            "biome": self.biome.value,
            "tiles": self.width * self.height,
            "features": dict(sorted(counts.items())),
            "terrain": dict(sorted(terrain.items())),
            "defensible_tiles": defensible,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "cell_size": self.cell_size,
            "seed": self.seed.value,
            "biome": self.biome.value,
            "metadata": asdict(self.metadata),
            "tiles": [[tile.to_dict() for tile in row] for row in self.tiles],
            "features": [asdict(f) for f in self.features.values()],
        }

    def fingerprint(self) -> str:
        """SHA-256 of the canonical JSON form; equal maps have equal fingerprints."""
        payload = json.dumps(self.to_dict(), sort_keys=True, default=_jsonable)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
