"""Feature placement: index every committed feature by tile and mix them."""

import logging
from dataclasses import dataclass, field

from battlemap import errors
from battlemap.features.base import MapFeature
from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.mixing import FeatureMixingEngine, TileResolution

logger = logging.getLogger(__name__)


@dataclass
class FeaturePlacementOutput(LayerOutput):
    """Resolved feature references and tactical properties for every tile."""

    resolutions: dict[tuple[int, int], TileResolution] = field(default_factory=dict)

    @property
    def conflicts(self) -> int:
        return sum(len(r.conflicts) for r in self.resolutions.values())

    def commit(self, grid: GridMap) -> None:
        for tile in grid.iter_tiles():
            resolution = self.resolutions.get(tile.coord)
            if resolution is not None:
                FeatureMixingEngine.apply(tile, resolution)

    def summary(self) -> dict[str, int]:
        return {
            "featured_tiles": sum(1 for r in self.resolutions.values() if r.primary_id is not None),
            "mixed_tiles": sum(1 for r in self.resolutions.values() if r.mixed_ids),
            "conflicts": self.conflicts,
        }


def index_by_tile(grid: GridMap) -> dict[tuple[int, int], list[MapFeature]]:
    """Features claiming each tile, in commit order."""
    by_tile: dict[tuple[int, int], list[MapFeature]] = {}
    for feature in grid.features.values():
        for x, y in feature.claimed_cells():
            if not grid.in_bounds(x, y):
                raise errors.feature_placement_failed(feature.id, f"claims tile ({x}, {y}) outside the map")
            by_tile.setdefault((x, y), []).append(feature)
    return by_tile


class FeaturePlacementLayer(GenerationLayer):
    """Assigns each tile one primary feature and resolves its tactical properties."""

    name = "features"
    requires = ("geology", "topography", "hydrology", "vegetation", "structures")

    def generate(self, ctx: GenerationContext) -> FeaturePlacementOutput:
        grid = ctx.map
        engine = FeatureMixingEngine(order={fid: i for i, fid in enumerate(grid.features)})
        by_tile = index_by_tile(grid)
        output = FeaturePlacementOutput()
        for tile in grid.iter_tiles():
            output.resolutions[tile.coord] = engine.resolve(tile, by_tile.get(tile.coord, []))
        if output.conflicts:
            logger.debug("%d incompatible feature pairs share tiles", output.conflicts)
        return output
