"""
Exception types shared across the association pipeline.

Only ``ValidationError`` is fatal for a run. The others are pair-local:
the orchestrator turns them into not-computed result rows and moves on.
"""

from __future__ import annotations

__all__ = [
    'ValidationError',
    'FitError',
    'SparsityRejection',
    'FeatureNotFoundError',
]


class ValidationError(ValueError):
    """Raised when input matrices or metadata are structurally inconsistent.

    All violations found by the eager validation pass are aggregated into
    ``violations`` so a user sees every problem at once.
    """

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        bullet_list = "\n".join(f"  - {v}" for v in self.violations)
        super().__init__(
            f"{len(self.violations)} input validation error(s):\n{bullet_list}"
        )


class FitError(RuntimeError):
    """Raised when a regression fit fails to converge or the design is singular."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class SparsityRejection(Exception):
    """Raised when a working set is too sparse to test."""

    def __init__(self, frac_exprs: float, frac_atac: float, threshold: float):
        self.frac_exprs = frac_exprs
        self.frac_atac = frac_atac
        self.threshold = threshold
        super().__init__(
            f"nonzero fractions exprs={frac_exprs:.3f}, atac={frac_atac:.3f} "
            f"not both above {threshold}"
        )


class FeatureNotFoundError(KeyError):
    """Raised when a gene or peak identifier is absent from its matrix."""
    pass
