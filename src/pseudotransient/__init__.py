"""pseudotransient: steady-state adjoint sensitivities by pseudo-transient continuation."""

import logging

from . import (
    integration,
    model_evaluator,
    sensitivity,
)

__all__ = [
    "configure_logging",
    "integration",
    "model_evaluator",
    "sensitivity",
]

__version__ = "0.1.0"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure a minimal logging setup for scripts."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
