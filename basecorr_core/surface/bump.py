"""
Selector bumps of base correlation surfaces.

A ``CorrelationBump`` holds one row of node bumps per tenor of a term
structure surface. It is prepared once from the component, tenor and
detachment selectors and then applied to the correlation nodes.
"""

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np

from basecorr_core._types import Year
from basecorr_core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from basecorr_core.surface.term_struct import BaseCorrelationTermStruct

logger = logging.getLogger(__name__)

# Detachments closer than this are the same node
DETACHMENT_TOLERANCE = 1e-6

# Bump sizes below this are dropped
_ZERO_BUMP = 1e-12


@dataclass
class BumpSize:
    """
    One bump with optional bounds on the bumped value.

    Attributes
    ----------
    size : float
        Bump size, absolute or relative
    lower_bound : float
        Smallest bumped value; NaN for none
    upper_bound : float
        Largest bumped value; NaN for none

    Example
    -------
    >>> BumpSize(0.05, upper_bound=1.0).bump_absolute(0.98)
    1.0
    """

    size: float
    lower_bound: float = math.nan
    upper_bound: float = math.nan

    @classmethod
    def create_array(
        cls,
        sizes: Sequence[float] | None,
        lower_bound: float = math.nan,
        upper_bound: float = math.nan,
    ) -> list["BumpSize"]:
        if sizes is None:
            return []
        return [cls(float(s), lower_bound, upper_bound) for s in sizes]

    @property
    def is_zero(self) -> bool:
        return abs(self.size) < _ZERO_BUMP

    def _clamp(self, value: float) -> float:
        if not math.isnan(self.upper_bound) and value > self.upper_bound:
            value = self.upper_bound
        if not math.isnan(self.lower_bound) and value < self.lower_bound:
            value = self.lower_bound
        return value

    def bump_absolute(self, orig: float) -> float:
        """``orig + size``, clamped."""
        return self._clamp(orig + self.size)

    def bump_relative(self, orig: float) -> float:
        """``orig * (1 + size)`` for positive sizes, ``orig / (1 - size)`` otherwise; clamped."""
        if self.size > 0:
            return self._clamp(orig * (1.0 + self.size))
        return self._clamp(orig / (1.0 - self.size))

    def with_bounds(self, lower: float, upper: float) -> "BumpSize":
        """Copy with missing bounds filled in."""
        return dataclasses.replace(
            self,
            lower_bound=lower if math.isnan(self.lower_bound) else self.lower_bound,
            upper_bound=upper if math.isnan(self.upper_bound) else self.upper_bound,
        )


@dataclass
class BumpResult:
    """Running average of realised node changes."""

    count: int = 0
    average: float = 0.0

    def add(self, diff: float) -> None:
        self.count += 1
        self.average += (diff - self.average) / self.count


class CorrelationBump:
    """
    Prepared node bumps of a base correlation term structure.

    Parameters
    ----------
    tranche_bumps : Sequence[Sequence[BumpSize | None] | None]
        One row per tenor, one entry per detachment node; None skips
    relative : bool
        Relative instead of absolute bumps
    name : str
        Component the bump was prepared for
    """

    def __init__(
        self,
        tranche_bumps: Sequence[Sequence[BumpSize | None] | None],
        relative: bool,
        name: str = "",
    ) -> None:
        self.tranche_bumps = self._remove_zero_bumps(tranche_bumps)
        self.relative = relative
        self.name = name

    @staticmethod
    def _remove_zero_bumps(
        tranche_bumps: Sequence[Sequence[BumpSize | None] | None],
    ) -> list[list[BumpSize | None] | None]:
        rows: list[list[BumpSize | None] | None] = []
        for row in tranche_bumps:
            if row is None:
                rows.append(None)
                continue
            cleaned = [b if b is not None and not b.is_zero else None for b in row]
            rows.append(cleaned if any(b is not None for b in cleaned) else None)
        return rows

    @property
    def is_empty(self) -> bool:
        return all(row is None for row in self.tranche_bumps)

    @classmethod
    def create(
        cls,
        surface: "BaseCorrelationTermStruct",
        tenor_dates: Sequence[Year] | None,
        detachments: Sequence[float] | None,
        tranche_bumps: Sequence[BumpSize],
        relative: bool,
    ) -> "CorrelationBump | None":
        """
        Prepare the bump of a term structure.

        Parameters
        ----------
        surface : BaseCorrelationTermStruct
            Surface to bump; its first slice defines the detachment nodes
        tenor_dates : Sequence[Year] | None
            Tenors to bump; None bumps all
        detachments : Sequence[float] | None
            Detachments to bump; None bumps all
        tranche_bumps : Sequence[BumpSize]
            One bump shared by all selected nodes, or one per node
            (per selected detachment when ``detachments`` is given)
        relative : bool
            Relative instead of absolute bumps

        Returns
        -------
        CorrelationBump | None
            None when no node or tenor matches the selectors

        Raises
        ------
        ConfigurationError
            If the bump count matches neither one nor the selection
        """
        if not tranche_bumps:
            return None
        dps = surface.base_correlations[0].detachments
        if dps is None:
            raise ConfigurationError(f"Detachment points of {surface.name!r} cannot be null")
        dps = np.asarray(dps, dtype=np.float64)

        row: list[BumpSize | None] = [None] * dps.size
        if detachments is None:
            if len(tranche_bumps) != 1 and len(tranche_bumps) != dps.size:
                raise ConfigurationError(
                    f"Number of bumps ({len(tranche_bumps)}) and detachments ({dps.size}) not match"
                )
            for i in range(dps.size):
                row[i] = tranche_bumps[0] if len(tranche_bumps) == 1 else tranche_bumps[i]
        else:
            if len(tranche_bumps) != 1 and len(tranche_bumps) != len(detachments):
                raise ConfigurationError(
                    f"Number of bumps ({len(tranche_bumps)}) and selected detachments "
                    f"({len(detachments)}) not match"
                )
            found = False
            for j, d in enumerate(detachments):
                hits = np.flatnonzero(np.abs(dps - d) < DETACHMENT_TOLERANCE)
                if hits.size == 0:
                    continue
                row[int(hits[0])] = tranche_bumps[0] if len(tranche_bumps) == 1 else tranche_bumps[j]
                found = True
            if not found:
                return None

        # missing bounds default to the surface bounds
        lower, upper = surface.min_correlation, surface.max_correlation
        row = [b.with_bounds(lower, upper) if b is not None else None for b in row]

        dates = surface.dates
        if tenor_dates is None:
            rows = [list(row) for _ in dates]
        else:
            selected = {float(t) for t in tenor_dates}
            rows = [list(row) if float(t) in selected else None for t in dates]
            if all(r is None for r in rows):
                return None
        return cls(rows, relative, surface.name)

    def apply(self, surface: "BaseCorrelationTermStruct") -> BumpResult:
        """Bump the nodes of ``surface`` in place."""
        result = BumpResult()
        for t, row in enumerate(self.tranche_bumps):
            if row is None or t >= len(surface.base_correlations):
                continue
            correls = surface.base_correlations[t].correlations
            for i, b in enumerate(row):
                if b is None or i >= correls.size:
                    continue
                orig = float(correls[i])
                q = b.bump_relative(orig) if self.relative else b.bump_absolute(orig)
                diff = q - orig
                if diff != 0.0:
                    result.add(diff)
                    correls[i] = q
        logger.debug("Bumped %d nodes of %r, average %g", result.count, surface.name, result.average)
        return result

    @staticmethod
    def bump_surfaces(
        surfaces: Sequence["BaseCorrelationTermStruct"],
        bumps: Sequence["CorrelationBump | None"],
    ) -> float:
        """Apply ``bumps[i]`` to ``surfaces[i]``; returns the average of the surface averages."""
        if len(surfaces) != len(bumps):
            raise ConfigurationError(
                f"Surfaces (Length={len(surfaces)}) and bumps (Length={len(bumps)}) not match"
            )
        if not surfaces:
            return 0.0
        avg = 0.0
        for surface, bump in zip(surfaces, bumps):
            if bump is not None:
                avg += bump.apply(surface).average
        return avg / len(surfaces)
