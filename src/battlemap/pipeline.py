"""Layered map generation pipeline."""

import logging
import time

from battlemap import errors
from battlemap.config import Settings, settings as default_settings
from battlemap.errors import DomainError
from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.layers.features import FeaturePlacementLayer
from battlemap.layers.geology import GeologyLayer
from battlemap.layers.hydrology import HydrologyLayer
from battlemap.layers.structures import StructureLayer
from battlemap.layers.topography import TopographyLayer
from battlemap.layers.vegetation import VegetationLayer
from battlemap.request import MapGenerationRequest

logger = logging.getLogger(__name__)


def default_layers() -> list[GenerationLayer]:
    return [
        GeologyLayer(),
        TopographyLayer(),
        HydrologyLayer(),
        VegetationLayer(),
        StructureLayer(),
        FeaturePlacementLayer(),
    ]


class MapGenerationPipeline:
    """Runs the layers in order against one map.

    Each layer computes its output from the committed state of the layers
    before it. The output is committed to the map only once the layer has
    finished, so a failing layer leaves the map as the previous layer left
    it. Infrastructure failures are retried up to ``max_stage_attempts``;
    every other domain error aborts the run.
    """

    def __init__(self, layers: list[GenerationLayer] | None = None, config: Settings | None = None):
        self.layers = layers if layers is not None else default_layers()
        self.settings = config or default_settings

    def generate(self, request: MapGenerationRequest, verify: bool | None = None) -> GridMap:
        """Generate a map for ``request``.

        Args:
            request: Validated generation request.
            verify: Run the pipeline a second time and compare fingerprints.
                Defaults to ``Settings.verify_determinism``.

        Raises:
            DomainError: On invalid dependencies, domain rule violations,
                exhausted retries or, when verifying, diverging runs.
        """
        grid = self._run(request)
        if verify if verify is not None else self.settings.verify_determinism:
            first = grid.fingerprint()
            second = self._run(request).fingerprint()
            if first != second:
                raise errors.generation_non_deterministic(grid.seed.value, first, second)
            logger.info("[Pipeline] Determinism verified for seed %d (%s)", grid.seed.value, first[:12])
        return grid

    def _run(self, request: MapGenerationRequest) -> GridMap:
        ctx = GenerationContext.create_empty(request)
        logger.info(
            "Generating %dx%d %s map '%s' with seed %d",
            request.width,
            request.height,
            request.biome.value,
            request.name,
            ctx.seed.value,
        )
        t_start = time.perf_counter()
        for layer in self.layers:
            layer.check_dependencies(ctx)
            t_layer = time.perf_counter()
            output = self._run_layer(layer, ctx)
            ctx.record(layer.name, output)
            counts = " ".join(f"{k}={v}" for k, v in output.summary().items())
            logger.info(
                "[%s] complete in %.1fms %s",
                layer.name.title(),
                (time.perf_counter() - t_layer) * 1000,
                counts,
            )

        logger.info(
            "[Pipeline] Map %s generated in %.1fms (%d tiles, %d features)",
            ctx.map.id,
            (time.perf_counter() - t_start) * 1000,
            ctx.map.width * ctx.map.height,
            len(ctx.map.features),
        )
        return ctx.map

    def _run_layer(self, layer: GenerationLayer, ctx: GenerationContext) -> LayerOutput:
        attempts = max(1, self.settings.max_stage_attempts)
        for attempt in range(1, attempts + 1):
            logger.debug("[%s] starting (attempt %d/%d)", layer.name.title(), attempt, attempts)
            try:
                return layer.generate(ctx)
            except DomainError as e:
                error = e
            except Exception as e:
                logger.debug("[%s] unexpected failure", layer.name.title(), exc_info=True)
                error = errors.layer_generation_failed(layer.name, e)
                error.__cause__ = e
            if not error.can_retry or attempt == attempts:
                logger.error("[%s] failed: %s", layer.name.title(), error.message, extra=error.to_log_data())
                raise error
            logger.warning(
                "[%s] attempt %d/%d failed, retrying: %s", layer.name.title(), attempt, attempts, error.message
            )
            if self.settings.retry_backoff_seconds > 0:
                time.sleep(self.settings.retry_backoff_seconds * attempt)
        raise errors.layer_generation_failed(layer.name, RuntimeError("no attempts were made"))


def generate_map(request: MapGenerationRequest | None = None, **fields) -> GridMap:
    """Generate a map from a request, or from request fields."""
    if request is None:
        request = MapGenerationRequest(**fields)
    return MapGenerationPipeline().generate(request)
