"""Error taxonomy for map generation.

Every failure raised by the generator is a ``DomainError`` with a stable
machine-readable code, a human-readable message and structured context so
the surrounding application can report it without parsing strings.

Categories:
    validation      bad input, never retried
    domain_rule     legal input that conflicts at generation time
    deterministic   a reproducibility invariant broke, always fatal
    infrastructure  resource exhaustion, retryable with bounded attempts
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Error categories."""

    VALIDATION = "validation"
    DOMAIN_RULE = "domain_rule"
    DETERMINISTIC = "deterministic"
    INFRASTRUCTURE = "infrastructure"


class ErrorSeverity(StrEnum):
    """Error severity values."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Where an error happened and with which values."""

    component: str
    operation: str
    metadata: dict[str, Any] = field(default_factory=dict)


class DomainError(Exception):
    """Base class for all generation errors.

    Does not subclass ValueError so that pydantic validators propagate it
    unchanged instead of wrapping it in a pydantic ValidationError.
    """

    category: ErrorCategory = ErrorCategory.DOMAIN_RULE
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    can_retry: bool = False

    def __init__(
        self,
        code: str,
        message: str,
        context: ErrorContext,
        user_message: str | None = None,
        suggestions: list[str] | None = None,
        can_retry: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context
        self.user_message = user_message or message
        self.suggestions = suggestions or []
        if can_retry is not None:
            self.can_retry = can_retry

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_api_response(self) -> dict[str, Any]:
        """Shape the error for the transport layer."""
        return {
            "code": self.code,
            "message": self.user_message,
            "category": self.category.value,
            "suggestions": list(self.suggestions),
            "retryable": self.can_retry,
        }

    def to_log_data(self) -> dict[str, Any]:
        """Shape the error for structured logging."""
        return {
            "code": self.code,
            "error_message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "component": self.context.component,
            "operation": self.context.operation,
            "metadata": dict(self.context.metadata),
            "retryable": self.can_retry,
        }


class ValidationError(DomainError):
    """Bad input: out-of-range dimensions, seed or layer parameter."""

    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW


class DomainRuleError(DomainError):
    """Legal input that conflicts with a rule at generation time."""

    category = ErrorCategory.DOMAIN_RULE
    severity = ErrorSeverity.MEDIUM


class DeterministicError(DomainError):
    """A reproducibility invariant was broken."""

    category = ErrorCategory.DETERMINISTIC
    severity = ErrorSeverity.CRITICAL


class InfrastructureError(DomainError):
    """Resource exhaustion or other environmental failure."""

    category = ErrorCategory.INFRASTRUCTURE
    severity = ErrorSeverity.HIGH
    can_retry = True


# --- Seed -------------------------------------------------------------------


def seed_empty_string() -> ValidationError:
    return ValidationError(
        "SEED_EMPTY_STRING",
        "Seed string cannot be empty",
        ErrorContext("Seed", "from_string"),
        user_message="Please enter a seed value",
        suggestions=["Enter any word or number as a seed"],
    )


def seed_invalid_type(value: Any) -> ValidationError:
    return ValidationError(
        "SEED_INVALID_TYPE",
        f"Seed must be a number or string, got {type(value).__name__}",
        ErrorContext("Seed", "from_input", {"type": type(value).__name__}),
    )


def seed_not_finite(value: float) -> ValidationError:
    return ValidationError(
        "SEED_NOT_FINITE",
        f"Seed must be a finite number, got {value}",
        ErrorContext("Seed", "from_number", {"value": str(value)}),
    )


def seed_out_of_range(value: Any, min_value: int, max_value: int) -> ValidationError:
    return ValidationError(
        "SEED_OUT_OF_RANGE",
        f"Seed {value} is outside the valid range [{min_value}, {max_value}]",
        ErrorContext(
            "Seed",
            "from_number",
            {"value": value, "min": min_value, "max": max_value},
        ),
        user_message=f"Seed must be a whole number between {min_value} and {max_value}",
    )


# --- Map generation ---------------------------------------------------------


def map_invalid_dimensions(width: Any, height: Any, min_size: int, max_size: int) -> ValidationError:
    return ValidationError(
        "MAP_INVALID_DIMENSIONS",
        f"Map dimensions {width}x{height} are outside [{min_size}, {max_size}]",
        ErrorContext(
            "MapGenerationPipeline",
            "validate",
            {"width": width, "height": height, "min": min_size, "max": max_size},
        ),
        user_message=f"Map width and height must be between {min_size} and {max_size} tiles",
        suggestions=[f"Try a {min_size * 5}x{min_size * 4} map"],
    )


def map_invalid_seed(value: Any) -> ValidationError:
    return ValidationError(
        "MAP_INVALID_SEED",
        f"Invalid seed value {value!r}: seed must be a string or a whole number",
        ErrorContext("MapGenerationRequest", "validate", {"seed": repr(value), "seed_type": type(value).__name__}),
        user_message="Invalid seed value provided",
        suggestions=["Provide a string or a whole number as the seed"],
    )


def map_invalid_terrain_distribution(terrain: str, reason: str) -> ValidationError:
    return ValidationError(
        "MAP_INVALID_TERRAIN_DISTRIBUTION",
        f"Invalid terrain distribution entry {terrain!r}: {reason}",
        ErrorContext("MapGenerationRequest", "validate", {"terrain": terrain, "reason": reason}),
        suggestions=["Weight ground terrain such as grass, sand or rock"],
    )


def layer_generation_failed(layer: str, cause: BaseException) -> InfrastructureError:
    return InfrastructureError(
        "LAYER_GENERATION_FAILED",
        f"Failed to generate {layer} layer: {cause}",
        ErrorContext(f"{layer.capitalize()}Layer", "apply", {"cause": type(cause).__name__}),
        user_message="Map generation failed, please try again",
    )


def invalid_layer_dependency(layer: str, missing: str) -> DomainRuleError:
    return DomainRuleError(
        "INVALID_LAYER_DEPENDENCY",
        f"Layer {layer} requires {missing} to be generated first",
        ErrorContext(f"{layer.capitalize()}Layer", "apply", {"missing": missing}),
    )


def feature_placement_failed(feature: str, reason: str) -> DomainRuleError:
    return DomainRuleError(
        "FEATURE_PLACEMENT_FAILED",
        f"Could not place {feature}: {reason}",
        ErrorContext("FeaturesLayer", "place", {"feature": feature}),
        can_retry=True,
    )


def water_flow_calculation_failed(reason: str) -> InfrastructureError:
    return InfrastructureError(
        "WATER_FLOW_CALCULATION_FAILED",
        f"Water flow calculation failed: {reason}",
        ErrorContext("HydrologyLayer", "flow_accumulation"),
    )


def vegetation_distribution_failed(reason: str) -> InfrastructureError:
    return InfrastructureError(
        "VEGETATION_DISTRIBUTION_FAILED",
        f"Vegetation distribution failed: {reason}",
        ErrorContext("VegetationLayer", "distribute"),
    )


def structure_placement_conflict(structure_type: str, x: int, y: int, reason: str) -> DomainRuleError:
    return DomainRuleError(
        "STRUCTURE_PLACEMENT_CONFLICT",
        f"Cannot place {structure_type} at ({x}, {y}): {reason}",
        ErrorContext(
            "StructuresLayer",
            "place",
            {"structure_type": structure_type, "x": x, "y": y, "reason": reason},
        ),
        user_message=f"Cannot place {structure_type} here",
        suggestions=["Find an alternative location"],
        can_retry=True,
    )


def generation_non_deterministic(seed: int, first: str, second: str) -> DeterministicError:
    return DeterministicError(
        "MAP_GENERATION_NON_DETERMINISTIC",
        f"Two runs with seed {seed} produced different maps",
        ErrorContext(
            "MapGenerationPipeline",
            "verify_determinism",
            {"seed": seed, "first": first, "second": second},
        ),
        user_message="Map generation is not reproducible; please report this seed",
    )


# --- Layer configuration ----------------------------------------------------


def config_out_of_range(
    code_prefix: str, component: str, parameter: str, value: float, min_value: float, max_value: float
) -> ValidationError:
    bound = "MIN" if value < min_value else "MAX"
    return ValidationError(
        f"{code_prefix}_{bound}",
        f"{parameter} must be between {min_value} and {max_value}, got {value}",
        ErrorContext(component, "validate", {parameter: value, "min": min_value, "max": max_value}),
        suggestions=[f"Use {parameter}={min(max(value, min_value), max_value)}"],
    )


# --- Water ------------------------------------------------------------------


def river_point_invalid_width(width: float) -> ValidationError:
    return ValidationError(
        "RIVER_POINT_INVALID_WIDTH",
        f"River width must be positive, got {width}",
        ErrorContext("RiverPoint", "create", {"width": width}),
    )


def river_point_invalid_depth(depth: float) -> ValidationError:
    return ValidationError(
        "RIVER_POINT_INVALID_DEPTH",
        f"River depth cannot be negative, got {depth}",
        ErrorContext("RiverPoint", "create", {"depth": depth}),
    )


def river_point_out_of_bounds(river_id: str, x: float, y: float) -> DomainRuleError:
    return DomainRuleError(
        "RIVER_POINT_OUT_OF_BOUNDS",
        f"Point ({x}, {y}) lies outside river {river_id}",
        ErrorContext("River", "add_path_point", {"river": river_id, "x": x, "y": y}),
    )


def river_tributary_no_confluence(river_id: str, tributary_id: str) -> DomainRuleError:
    return DomainRuleError(
        "RIVER_TRIBUTARY_NO_CONFLUENCE",
        f"Tributary {tributary_id} does not intersect river {river_id}",
        ErrorContext("River", "add_tributary", {"river": river_id, "tributary": tributary_id}),
    )


def river_invalid_width(width: float) -> ValidationError:
    return ValidationError(
        "RIVER_INVALID_WIDTH",
        f"River average width must be positive, got {width}",
        ErrorContext("River", "create", {"width": width}),
    )


def lake_invalid_depth(max_depth: float, average_depth: float) -> ValidationError:
    return ValidationError(
        "LAKE_INVALID_DEPTH",
        f"Lake depths are invalid (max {max_depth}, average {average_depth})",
        ErrorContext("Lake", "create", {"max_depth": max_depth, "average_depth": average_depth}),
    )


def lake_island_out_of_bounds(lake_id: str, x: float, y: float) -> DomainRuleError:
    return DomainRuleError(
        "LAKE_ISLAND_OUT_OF_BOUNDS",
        f"Island at ({x}, {y}) lies outside lake {lake_id}",
        ErrorContext("Lake", "add_island", {"lake": lake_id, "x": x, "y": y}),
    )


# --- Vegetation -------------------------------------------------------------


def tree_out_of_bounds(forest_id: str, tree_id: str) -> DomainRuleError:
    return DomainRuleError(
        "TREE_OUT_OF_BOUNDS",
        f"Tree {tree_id} lies outside forest {forest_id}",
        ErrorContext("Forest", "add_tree", {"forest": forest_id, "tree": tree_id}),
    )


def plant_invalid_health(health: float) -> ValidationError:
    return ValidationError(
        "PLANT_INVALID_HEALTH",
        f"Plant health must be between 0 and 1, got {health}",
        ErrorContext("Plant", "create", {"health": health}),
    )


def forest_invalid_underbrush(density: float) -> ValidationError:
    return ValidationError(
        "FOREST_INVALID_UNDERBRUSH",
        f"Underbrush density must be between 0 and 1, got {density}",
        ErrorContext("Forest", "create", {"underbrush_density": density}),
    )


# --- Structures -------------------------------------------------------------


def footprint_too_small(width: float, height: float, min_size: float) -> ValidationError:
    return ValidationError(
        "BUILDING_FOOTPRINT_TOO_SMALL",
        f"Footprint {width}x{height} is smaller than {min_size} tiles per edge",
        ErrorContext("BuildingFootprint", "from_rectangle", {"width": width, "height": height}),
    )


def footprint_too_large(width: float, height: float, max_size: float) -> ValidationError:
    return ValidationError(
        "BUILDING_FOOTPRINT_TOO_LARGE",
        f"Footprint {width}x{height} exceeds {max_size} tiles per edge",
        ErrorContext("BuildingFootprint", "from_rectangle", {"width": width, "height": height}),
    )


def footprint_invalid_polygon(points: int) -> ValidationError:
    return ValidationError(
        "BUILDING_FOOTPRINT_INVALID_POLYGON",
        f"A footprint polygon needs at least 3 points, got {points}",
        ErrorContext("BuildingFootprint", "from_polygon", {"points": points}),
    )


def structure_collision(structure_id: str, other_id: str) -> DomainRuleError:
    return DomainRuleError(
        "STRUCTURE_COLLISION",
        f"Structure {structure_id} overlaps {other_id}",
        ErrorContext("StructuresLayer", "commit_building", {"structure": structure_id, "other": other_id}),
        suggestions=["Move the structure or reduce its footprint"],
        can_retry=True,
    )


def structure_terrain_unsuitable(structure_id: str, reason: str) -> DomainRuleError:
    return DomainRuleError(
        "STRUCTURE_TERRAIN_UNSUITABLE",
        f"Terrain under {structure_id} is unsuitable: {reason}",
        ErrorContext("StructuresLayer", "check_site", {"structure": structure_id}),
        can_retry=True,
    )


def room_exceeds_floor_area(room_id: str, room_area: float, remaining: float) -> DomainRuleError:
    return DomainRuleError(
        "ROOM_EXCEEDS_FLOOR_AREA",
        f"Room {room_id} ({room_area:.1f} sq ft) exceeds remaining floor area ({remaining:.1f} sq ft)",
        ErrorContext("Floor", "with_room", {"room": room_id, "area": room_area, "remaining": remaining}),
    )


def road_generation_failed(reason: str, attempts: int) -> DomainRuleError:
    return DomainRuleError(
        "ROAD_GENERATION_FAILED",
        f"Road generation failed after {attempts} attempts: {reason}",
        ErrorContext("StructuresLayer", "route_road", {"attempts": attempts}),
    )


def bridge_generation_failed(reason: str) -> DomainRuleError:
    return DomainRuleError(
        "BRIDGE_GENERATION_FAILED",
        f"Bridge generation failed: {reason}",
        ErrorContext("StructuresLayer", "place_bridge"),
    )


# --- Mixing -----------------------------------------------------------------


def feature_incompatible(first_id: str, second_id: str) -> DomainRuleError:
    return DomainRuleError(
        "FEATURE_INCOMPATIBLE",
        f"Features {first_id} and {second_id} cannot share a tile",
        ErrorContext("FeatureMixingEngine", "mix", {"first": first_id, "second": second_id}),
    )


# --- Geometry ---------------------------------------------------------------


def invalid_geometry(kind: str, reason: str, **metadata: Any) -> ValidationError:
    return ValidationError(
        "INVALID_GEOMETRY",
        f"Invalid {kind}: {reason}",
        ErrorContext(kind, "create", metadata),
    )
