"""Feature mixing: compatibility between features sharing a tile and the
tactical properties that result.

Compatibility is looked up in two rule tables. Variant-specific rules keyed
by the pair of feature kinds take precedence; anything else falls back to
the rule for the pair of categories. For every aspect of a tile (terrain,
height, movement, blocking, visual) one feature dominates: categories with
authority over the aspect first, then the higher priority, then the feature
committed to the map first, then the id. None of these depend on the order
in which the features were proposed.
"""

import logging
from dataclasses import dataclass, field
from typing import Literal

from battlemap import errors
from battlemap.features.base import MapFeature, ReliefFeature
from battlemap.features.structures import Building, Road
from battlemap.features.vegetation import Grassland
from battlemap.features.water import Lake, River, Spring, SpringType
from battlemap.models import (
    Compatibility,
    ConcealmentLevel,
    CoverLevel,
    FeatureCategory,
    FeatureKind,
    LineOfSight,
    TacticalAspect,
)
from battlemap.tile import TacticalProperties, Tile

logger = logging.getLogger(__name__)

K = FeatureKind
C = FeatureCategory

KIND_RULES: dict[frozenset[FeatureKind], Compatibility] = {
    frozenset({K.RIVER, K.BRIDGE}): Compatibility.COMPATIBLE,
    frozenset({K.RIVER, K.BUILDING}): Compatibility.INCOMPATIBLE,
    frozenset({K.RIVER, K.ROAD}): Compatibility.INCOMPATIBLE,
    frozenset({K.LAKE, K.BUILDING}): Compatibility.INCOMPATIBLE,
    frozenset({K.LAKE, K.ROAD}): Compatibility.INCOMPATIBLE,
    frozenset({K.WETLAND, K.BUILDING}): Compatibility.INCOMPATIBLE,
    frozenset({K.BUILDING}): Compatibility.INCOMPATIBLE,
    frozenset({K.CLIFF, K.BUILDING}): Compatibility.INCOMPATIBLE,
    frozenset({K.CLIFF, K.ROAD}): Compatibility.INCOMPATIBLE,
    frozenset({K.VALLEY, K.RIVER}): Compatibility.SYNERGISTIC,
    frozenset({K.RIDGE, K.FOREST}): Compatibility.SYNERGISTIC,
    frozenset({K.HILL, K.FOREST}): Compatibility.COMPATIBLE,
    frozenset({K.HILL, K.BUILDING}): Compatibility.SYNERGISTIC,
    frozenset({K.ROAD, K.BRIDGE}): Compatibility.COMPATIBLE,
}

CATEGORY_RULES: dict[frozenset[FeatureCategory], Compatibility] = {
    frozenset({C.RELIEF}): Compatibility.COMPATIBLE,
    frozenset({C.NATURAL}): Compatibility.COMPATIBLE,
    frozenset({C.ARTIFICIAL}): Compatibility.COMPATIBLE,
    frozenset({C.CULTURAL}): Compatibility.COMPATIBLE,
    frozenset({C.RELIEF, C.NATURAL}): Compatibility.SYNERGISTIC,
    frozenset({C.RELIEF, C.ARTIFICIAL}): Compatibility.NEUTRAL,
    frozenset({C.RELIEF, C.CULTURAL}): Compatibility.NEUTRAL,
    frozenset({C.NATURAL, C.ARTIFICIAL}): Compatibility.NEUTRAL,
    frozenset({C.NATURAL, C.CULTURAL}): Compatibility.NEUTRAL,
    frozenset({C.ARTIFICIAL, C.CULTURAL}): Compatibility.NEUTRAL,
}

# Categories with authority over an aspect, strongest first
ASPECT_AUTHORITY: dict[TacticalAspect, tuple[FeatureCategory, ...]] = {
    TacticalAspect.TERRAIN: (C.ARTIFICIAL, C.CULTURAL, C.NATURAL, C.RELIEF),
    TacticalAspect.HEIGHT: (C.RELIEF, C.ARTIFICIAL, C.CULTURAL, C.NATURAL),
    TacticalAspect.MOVEMENT: (C.ARTIFICIAL, C.CULTURAL, C.NATURAL, C.RELIEF),
    TacticalAspect.BLOCKING: (C.ARTIFICIAL, C.CULTURAL, C.RELIEF, C.NATURAL),
    TacticalAspect.VISUAL: (),
}

HeightBlending = Literal["average", "dominant"]


@dataclass(frozen=True)
class FeatureInteraction:
    """How two features on one tile combine."""

    first_id: str
    second_id: str
    compatibility: Compatibility
    dominant: dict[TacticalAspect, str]
    height_blending: HeightBlending

    @property
    def can_mix(self) -> bool:
        return self.compatibility != Compatibility.INCOMPATIBLE


@dataclass(frozen=True)
class FeatureEffect:
    """Tactical contribution of one feature to a tile."""

    movement: float = 1.0
    cover: CoverLevel = CoverLevel.NONE
    concealment: ConcealmentLevel = ConcealmentLevel.NONE
    line_of_sight: LineOfSight = LineOfSight.CLEAR
    hazard: float = 0.0
    height: float = 0.0  # feet above (or below) the surrounding ground


@dataclass
class TileResolution:
    """Outcome of mixing every feature that claims one tile."""

    primary_id: str | None
    mixed_ids: set[str] = field(default_factory=set)
    interactions: list[FeatureInteraction] = field(default_factory=list)
    tactical: TacticalProperties = field(default_factory=TacticalProperties)

    @property
    def conflicts(self) -> list[FeatureInteraction]:
        return [i for i in self.interactions if not i.can_mix]


def slope_factor(slope: float) -> float:
    if slope < 10:
        return 1.0
    if slope < 25:
        return 1.5
    if slope < 35:
        return 2.0
    return 3.0


def effect_of(feature: MapFeature, tile: Tile) -> FeatureEffect:
    """Tactical contribution of ``feature`` at ``tile``."""
    kind = feature.kind
    if kind == K.FOREST:
        canopy = tile.vegetation.canopy
        return FeatureEffect(
            movement=2.0 if canopy >= 0.6 else 1.5,
            cover=CoverLevel.HALF if tile.vegetation.tree_count else CoverLevel.QUARTER,
            concealment=ConcealmentLevel.HEAVY if canopy >= 0.6 else ConcealmentLevel.LIGHT,
            line_of_sight=LineOfSight.OBSTRUCTED if canopy >= 0.4 else LineOfSight.CLEAR,
        )
    if isinstance(feature, Grassland):
        tall = feature.provides_concealment
        return FeatureEffect(
            movement=1.25 if tall else 1.0,
            concealment=ConcealmentLevel.LIGHT if tall else ConcealmentLevel.NONE,
        )
    if kind == K.WETLAND:
        return FeatureEffect(movement=2.0, concealment=ConcealmentLevel.LIGHT, hazard=0.2)
    if isinstance(feature, River):
        depth = tile.hydrology.water_depth or feature.average_depth
        return FeatureEffect(
            movement=4.0 if depth >= 3 else 2.0,
            hazard=0.5 if feature.has_rapids else 0.3,
            height=-round(depth, 2),
        )
    if isinstance(feature, Lake):
        return FeatureEffect(movement=4.0, hazard=0.4, height=-round(feature.average_depth, 2))
    if isinstance(feature, Spring):
        return FeatureEffect(hazard=0.1 if feature.spring_type == SpringType.THERMAL else 0.0)
    if isinstance(feature, ReliefFeature):
        if kind == K.CLIFF:
            return FeatureEffect(
                movement=3.0,
                cover=CoverLevel.THREE_QUARTERS,
                line_of_sight=LineOfSight.OBSTRUCTED,
                hazard=0.6,
                height=feature.prominence,
            )
        if kind == K.RIDGE:
            return FeatureEffect(cover=CoverLevel.HALF, line_of_sight=LineOfSight.OBSTRUCTED, height=feature.prominence)
        if kind == K.HILL:
            return FeatureEffect(cover=CoverLevel.QUARTER, height=feature.prominence)
        return FeatureEffect(height=-feature.prominence)
    if isinstance(feature, Building):
        ground = feature.floor(0)
        height = feature.stories * (ground.ceiling_height if ground else 10.0)
        return FeatureEffect(
            cover=CoverLevel.TOTAL,
            concealment=ConcealmentLevel.HEAVY,
            line_of_sight=LineOfSight.BLOCKED,
            hazard=round((1.0 - feature.condition) * 0.3, 3),
            height=height,
        )
    if isinstance(feature, Road):
        return FeatureEffect(movement=round(feature.movement_factor, 3))
    if kind == K.BRIDGE:
        return FeatureEffect(cover=CoverLevel.QUARTER, height=5.0)
    return FeatureEffect()


class FeatureMixingEngine:
    """Resolves which feature dominates a tile and what that tile offers tactically.

    Args:
        order: Commit order of features on the map (id -> index), used as the
            tie-break after priority. Unknown ids sort after known ones.
    """

    def __init__(self, order: dict[str, int] | None = None):
        self.order = order or {}

    def compatibility(self, first: MapFeature, second: MapFeature) -> Compatibility:
        kinds = frozenset({first.kind, second.kind})
        if kinds in KIND_RULES:
            return KIND_RULES[kinds]
        return CATEGORY_RULES[frozenset({first.category, second.category})]

    def can_mix(self, first: MapFeature, second: MapFeature) -> bool:
        return self.compatibility(first, second) != Compatibility.INCOMPATIBLE

    def ensure_compatible(self, first: MapFeature, second: MapFeature) -> None:
        """Raise FEATURE_INCOMPATIBLE if the two features may not share a tile."""
        if not self.can_mix(first, second):
            raise errors.feature_incompatible(first.id, second.id)

    def _key(self, feature: MapFeature, aspect: TacticalAspect | None = None) -> tuple:
        authority = ASPECT_AUTHORITY.get(aspect, ()) if aspect else ()
        rank = authority.index(feature.category) if feature.category in authority else len(authority)
        return (rank, -feature.priority, self.order.get(feature.id, len(self.order)), feature.id)

    def rank(self, features: list[MapFeature], aspect: TacticalAspect | None = None) -> list[MapFeature]:
        """Features ordered strongest first, overall or for one aspect."""
        return sorted(features, key=lambda f: self._key(f, aspect))

    def interaction(self, first: MapFeature, second: MapFeature) -> FeatureInteraction:
        compatibility = self.compatibility(first, second)
        dominant = {aspect: self.rank([first, second], aspect)[0].id for aspect in TacticalAspect}
        return FeatureInteraction(
            first_id=first.id,
            second_id=second.id,
            compatibility=compatibility,
            dominant=dominant,
            height_blending="average" if compatibility == Compatibility.SYNERGISTIC else "dominant",
        )

    def resolve(self, tile: Tile, features: list[MapFeature]) -> TileResolution:
        """Mix ``features`` on ``tile``; an empty list yields terrain-only tactics."""
        tactical = TacticalProperties(elevation_advantage=tile.tactical.elevation_advantage)
        base_cost = slope_factor(tile.topography.slope) * self._open_water_factor(tile, features)
        if not features:
            tactical.movement_cost = round(base_cost, 4)
            tactical.hazard_level = 0.3 if tile.hydrology.water_depth >= 3 else 0.0
            return TileResolution(primary_id=None, tactical=tactical)

        ranked = self.rank(features)
        primary = ranked[0]
        others = ranked[1:]
        interactions = [self.interaction(primary, other) for other in others]
        for i, a in enumerate(others):
            for b in others[i + 1 :]:
                interactions.append(self.interaction(a, b))

        for clash in (i for i in interactions if not i.can_mix):
            logger.debug("Tile (%d, %d): %s cannot mix with %s", tile.x, tile.y, clash.first_id, clash.second_id)

        # features that cannot coexist with the primary do not contribute
        active = [primary, *(f for f in others if self.can_mix(primary, f))]
        effects = {f.id: effect_of(f, tile) for f in active}

        mover = self.rank(active, TacticalAspect.MOVEMENT)[0]
        if mover.category == C.ARTIFICIAL:
            movers = [f for f in active if f.category == C.ARTIFICIAL]
        else:
            movers = active
        movement = base_cost
        for f in movers:
            movement *= effects[f.id].movement

        tactical.movement_cost = round(movement, 4)
        tactical.cover = max((effects[f.id].cover for f in active), key=lambda c: c.rank)
        tactical.concealment = max((effects[f.id].concealment for f in active), key=lambda c: c.rank)
        tactical.line_of_sight = max((effects[f.id].line_of_sight for f in active), key=lambda c: c.rank)
        tactical.hazard_level = round(max(effects[f.id].hazard for f in active), 4)
        tactical.feature_height = self._height(active, effects)

        return TileResolution(
            primary_id=primary.id,
            mixed_ids={f.id for f in others},
            interactions=interactions,
            tactical=tactical,
        )

    def _height(self, active: list[MapFeature], effects: dict[str, FeatureEffect]) -> float:
        """Height of the dominant feature, averaged with the features synergistic with it."""
        dominant = self.rank(active, TacticalAspect.HEIGHT)[0]
        blend = [dominant] + [
            f for f in active if f is not dominant and self.compatibility(dominant, f) == Compatibility.SYNERGISTIC
        ]
        return round(sum(effects[f.id].height for f in blend) / len(blend), 4)

    @staticmethod
    def _open_water_factor(tile: Tile, features: list[MapFeature]) -> float:
        """Water not represented by a feature (pools, small streams)."""
        if any(f.kind in (K.RIVER, K.LAKE, K.BRIDGE) for f in features):
            return 1.0
        depth = tile.hydrology.water_depth
        if depth >= 3:
            return 4.0
        if depth > 0:
            return 2.0
        return 1.0

    @staticmethod
    def apply(tile: Tile, resolution: TileResolution) -> None:
        tile.primary_feature_id = resolution.primary_id
        tile.mixed_feature_ids = set(resolution.mixed_ids)
        tile.tactical = resolution.tactical
