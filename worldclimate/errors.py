"""Error taxonomy for world generation failures."""

from __future__ import annotations

from typing import Any


class WorldGenError(Exception):
    """Base failure carrying the stage, seed, and effective parameters of a run."""

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        seed: int | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.seed = seed
        self.parameters = dict(parameters) if parameters else {}

    def with_context(
        self,
        *,
        stage: str | None = None,
        seed: int | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> "WorldGenError":
        """Fill missing context in place and return self for re-raising."""

        if self.stage is None:
            self.stage = stage
        if self.seed is None:
            self.seed = seed
        if parameters and not self.parameters:
            self.parameters = dict(parameters)
        return self

    def __str__(self) -> str:
        context = []
        if self.stage is not None:
            context.append(f"stage={self.stage}")
        if self.seed is not None:
            context.append(f"seed={self.seed}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"


class ConfigurationError(WorldGenError, ValueError):
    """Invalid dimensions or non-finite / out-of-range parameters."""


class UpstreamContractViolation(WorldGenError, ValueError):
    """Input fields disagree in shape or the ocean mask contradicts the heightmap."""


class NumericalDivergence(WorldGenError, ArithmeticError):
    """A field or particle state escaped its declared numeric range."""


class ResourceExhaustion(WorldGenError, RuntimeError):
    """Iteration or wall-clock budget exceeded."""


class GenerationCancelled(WorldGenError):
    """The caller asked the run to stop."""
