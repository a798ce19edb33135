"""Command-line entry point: generate one map from the environment settings."""

import json
import logging
import sys

from battlemap.config import settings
from battlemap.errors import DomainError
from battlemap.pipeline import MapGenerationPipeline
from battlemap.request import MapGenerationRequest


def setup_logging() -> None:
    """Configure logging for the generator."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def main() -> int:
    """Generate a default map and print its summary. Returns the exit code."""
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("Battle map generator starting...")

    try:
        request = MapGenerationRequest(seed=settings.default_seed, cell_size=settings.default_cell_size)
        grid = MapGenerationPipeline().generate(request)
    except DomainError as e:
        logger.error("Generation failed: %s", e, extra=e.to_log_data())
        return 1

    print(json.dumps(grid.summary(), indent=2))
    return 0


def run() -> None:
    """Entry point for the ``battlemap`` script."""
    sys.exit(main())


if __name__ == "__main__":
    run()
