"""Per-biome tuning tables read by the layer generators."""

from dataclasses import dataclass

from battlemap.models import Biome, TerrainType


@dataclass(frozen=True)
class BiomeProfile:
    """Biome-dependent weights and base values."""

    formations: tuple[str, ...]
    tree_species: tuple[str, ...]
    stream_threshold: float  # base flow accumulation for a stream, before abundance scaling
    base_moisture: float
    grass_height: float  # feet
    forest_affinity: float  # scales vegetation coverage
    material_setting: str  # biome tag used to pick building materials
    ground: TerrainType = TerrainType.GRASS


PROFILES: dict[Biome, BiomeProfile] = {
    Biome.TEMPERATE_FOREST: BiomeProfile(
        formations=("granite", "sandstone", "slate", "limestone"),
        tree_species=("oak", "maple", "birch", "pine", "cedar", "willow"),
        stream_threshold=8,
        base_moisture=0.5,
        grass_height=1.5,
        forest_affinity=1.0,
        material_setting="forest",
    ),
    Biome.BOREAL_FOREST: BiomeProfile(
        formations=("granite", "slate", "basalt"),
        tree_species=("pine", "cedar", "birch"),
        stream_threshold=8,
        base_moisture=0.55,
        grass_height=1.0,
        forest_affinity=1.1,
        material_setting="forest",
    ),
    Biome.TROPICAL_RAINFOREST: BiomeProfile(
        formations=("basalt", "limestone", "shale"),
        tree_species=("fruit", "willow", "maple", "oak"),
        stream_threshold=5,
        base_moisture=0.8,
        grass_height=3.0,
        forest_affinity=1.3,
        material_setting="forest",
    ),
    Biome.TEMPERATE_GRASSLAND: BiomeProfile(
        formations=("limestone", "sandstone", "slate"),
        tree_species=("oak", "birch", "fruit"),
        stream_threshold=15,
        base_moisture=0.35,
        grass_height=3.0,
        forest_affinity=0.35,
        material_setting="plains",
    ),
    Biome.DESERT: BiomeProfile(
        formations=("sandstone", "basalt", "shale"),
        tree_species=("dead", "cedar"),
        stream_threshold=25,
        base_moisture=0.1,
        grass_height=0.5,
        forest_affinity=0.1,
        material_setting="desert",
        ground=TerrainType.SAND,
    ),
    Biome.TUNDRA: BiomeProfile(
        formations=("granite", "slate"),
        tree_species=("pine", "birch", "dead"),
        stream_threshold=15,
        base_moisture=0.4,
        grass_height=0.5,
        forest_affinity=0.2,
        material_setting="mountain",
        ground=TerrainType.SNOW,
    ),
    Biome.WETLAND: BiomeProfile(
        formations=("limestone", "shale"),
        tree_species=("willow", "cedar", "birch"),
        stream_threshold=3,
        base_moisture=0.8,
        grass_height=2.5,
        forest_affinity=0.7,
        material_setting="swamp",
        ground=TerrainType.MUD,
    ),
    Biome.MOUNTAIN: BiomeProfile(
        formations=("granite", "limestone", "basalt", "slate"),
        tree_species=("pine", "cedar", "birch"),
        stream_threshold=10,
        base_moisture=0.4,
        grass_height=0.8,
        forest_affinity=0.6,
        material_setting="mountain",
        ground=TerrainType.ROCK,
    ),
    Biome.COASTAL: BiomeProfile(
        formations=("sandstone", "basalt", "limestone"),
        tree_species=("pine", "willow", "oak"),
        stream_threshold=10,
        base_moisture=0.6,
        grass_height=1.5,
        forest_affinity=0.6,
        material_setting="coastal",
        ground=TerrainType.SAND,
    ),
}


def profile_for(biome: Biome) -> BiomeProfile:
    return PROFILES[biome]
