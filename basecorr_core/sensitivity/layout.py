"""
Packed per-name sensitivity layout.

For a basket of ``N`` names whose survival curves have ``K_i`` tenors, the
flat buffer holds one block per name::

    K deltas | K(K+1)/2 gammas (lower triangle, row by row) | vod | recovery

Computations run on the flat buffer; ``NameSensitivity`` is the structured
view used at the boundary.
"""

from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import FloatArray, IntArray, SensitivityBuffer
from basecorr_core.basket.protocols import BasketPricer
from basecorr_core.exceptions import ConfigurationError


def block_size(tenors: int) -> int:
    """Length of the block of a name with ``tenors`` curve tenors."""
    return tenors + tenors * (tenors + 1) // 2 + 2


@dataclass(frozen=True)
class NameBlock:
    """Position of one name inside the packed buffer."""

    offset: int
    tenors: int

    @property
    def deltas(self) -> slice:
        return slice(self.offset, self.offset + self.tenors)

    @property
    def gammas(self) -> slice:
        start = self.offset + self.tenors
        return slice(start, start + self.tenors * (self.tenors + 1) // 2)

    @property
    def vod(self) -> int:
        return self.offset + block_size(self.tenors) - 2

    @property
    def recovery(self) -> int:
        return self.offset + block_size(self.tenors) - 1

    @property
    def end(self) -> int:
        return self.offset + block_size(self.tenors)

    def pairs(self) -> tuple[IntArray, IntArray]:
        """Row and column tenor indices of the gamma entries, in storage order."""
        return np.tril_indices(self.tenors)


@dataclass
class NameSensitivity:
    """
    Sensitivities of one name.

    Attributes
    ----------
    deltas : FloatArray
        First derivatives w.r.t. the curve ordinates
    gammas : FloatArray
        Lower triangle of the Hessian, row by row
    vod : float
        Value on default
    recovery : float
        Derivative w.r.t. the mean recovery rate
    """

    deltas: FloatArray
    gammas: FloatArray
    vod: float = 0.0
    recovery: float = 0.0

    @property
    def tenors(self) -> int:
        return int(self.deltas.size)

    @property
    def gradient(self) -> FloatArray:
        return self.deltas

    def gamma(self, j: int, k: int) -> float:
        """Hessian entry ``(j, k)``."""
        if k > j:
            j, k = k, j
        return float(self.gammas[j * (j + 1) // 2 + k])

    def hessian(self) -> FloatArray:
        """Full symmetric Hessian."""
        n = self.tenors
        h = np.zeros((n, n))
        rows, cols = np.tril_indices(n)
        h[rows, cols] = self.gammas
        h[cols, rows] = self.gammas
        return h


class SensitivityLayout:
    """
    Offsets of the per-name blocks in a packed buffer.

    Parameters
    ----------
    tenor_counts : Sequence[int]
        Number of curve tenors of each name
    names : Sequence[str] | None
        Entity names, used by :meth:`to_frame`

    Example
    -------
    >>> layout = SensitivityLayout([2, 2])
    >>> layout.size  # 2 * (2 + 3 + 2)
    14
    """

    def __init__(self, tenor_counts: Sequence[int], names: Sequence[str] | None = None) -> None:
        if names is not None and len(names) != len(tenor_counts):
            raise ConfigurationError(
                f"Names (len={len(names)}) and tenor counts (len={len(tenor_counts)}) not match"
            )
        self.names = list(names) if names is not None else None
        self._blocks = []
        offset = 0
        for k in tenor_counts:
            if k < 0:
                raise ConfigurationError(f"Negative tenor count {k}")
            self._blocks.append(NameBlock(offset, int(k)))
            offset += block_size(int(k))
        self.size = offset

    @classmethod
    def from_basket(cls, basket: BasketPricer) -> "SensitivityLayout":
        return cls([c.count for c in basket.survival_curves], basket.entity_names)

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[NameBlock]:
        return iter(self._blocks)

    def __getitem__(self, i: int) -> NameBlock:
        return self._blocks[i]

    def zeros(self) -> SensitivityBuffer:
        return np.zeros(self.size)

    def check(self, buffer: SensitivityBuffer) -> None:
        """Raise if ``buffer`` does not have the layout size."""
        if buffer.shape != (self.size,):
            raise ConfigurationError(
                f"Sensitivity buffer length {buffer.size} does not match layout size {self.size}"
            )

    def unpack(self, buffer: SensitivityBuffer) -> list[NameSensitivity]:
        self.check(buffer)
        return [
            NameSensitivity(
                buffer[b.deltas].copy(),
                buffer[b.gammas].copy(),
                float(buffer[b.vod]),
                float(buffer[b.recovery]),
            )
            for b in self._blocks
        ]

    def pack(self, records: Sequence[NameSensitivity]) -> SensitivityBuffer:
        if len(records) != len(self._blocks):
            raise ConfigurationError(
                f"Got {len(records)} name records for a layout of {len(self._blocks)} names"
            )
        buffer = self.zeros()
        for b, rec in zip(self._blocks, records):
            if rec.tenors != b.tenors:
                raise ConfigurationError(
                    f"Record with {rec.tenors} tenors does not fit a block of {b.tenors}"
                )
            buffer[b.deltas] = rec.deltas
            buffer[b.gammas] = rec.gammas
            buffer[b.vod] = rec.vod
            buffer[b.recovery] = rec.recovery
        return buffer

    def to_frame(self, buffer: SensitivityBuffer) -> pd.DataFrame:
        """
        Long table of a packed buffer.

        Columns are Name, Kind (Delta, Gamma, VOD, Recovery), Tenor, Tenor2 and
        Value; tenor columns are -1 where they do not apply.
        """
        rows = []
        for i, (b, rec) in enumerate(zip(self._blocks, self.unpack(buffer))):
            name = self.names[i] if self.names is not None else str(i)
            for t, v in enumerate(rec.deltas):
                rows.append((name, "Delta", t, -1, float(v)))
            for (j, k), v in zip(zip(*b.pairs()), rec.gammas):
                rows.append((name, "Gamma", int(j), int(k), float(v)))
            rows.append((name, "VOD", -1, -1, rec.vod))
            rows.append((name, "Recovery", -1, -1, rec.recovery))
        return pd.DataFrame(rows, columns=["Name", "Kind", "Tenor", "Tenor2", "Value"])
