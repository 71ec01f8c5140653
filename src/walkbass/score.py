from __future__ import annotations

from dataclasses import dataclass
from functools import total_ordering

from .errors import InvalidArgumentError

# harmonic, transposability, pre-target-note, post-target-note
WEIGHTS = (6, 2, 1, 1)


def _clamp(v: float) -> float:
    return max(0.0, min(100.0, float(v)))


@total_ordering
@dataclass(frozen=True, eq=False)
class CompatibilityScore:
    """How well a fragment fits a target chord sequence slice.

    Each component lies in [0;100]. The overall value is the weighted mean
    of the components and is 0 whenever harmonic compatibility is 0.
    Scores are ordered by overall value, components breaking ties.
    """

    harmonic: float = 0.0
    transposability: float = 0.0
    pre_target_note: float = 0.0
    post_target_note: float = 0.0

    def __post_init__(self) -> None:
        for name in ("harmonic", "transposability", "pre_target_note", "post_target_note"):
            object.__setattr__(self, name, _clamp(getattr(self, name)))

    @classmethod
    def from_overall(cls, value: float) -> "CompatibilityScore":
        """A sample score whose overall value is `value`."""
        if not 0 <= value <= 100:
            raise InvalidArgumentError(f"overall value out of range: {value}")
        return cls(value, value, value, value)

    @property
    def overall(self) -> float:
        if self.harmonic == 0:
            return 0.0
        w = WEIGHTS
        total = (
            w[0] * self.harmonic
            + w[1] * self.transposability
            + w[2] * self.pre_target_note
            + w[3] * self.post_target_note
        )
        return total / sum(w)

    def is_zero(self) -> bool:
        return self.overall == 0

    def _key(self):
        return (self.overall, self.harmonic, self.transposability, self.pre_target_note, self.post_target_note)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CompatibilityScore):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "CompatibilityScore") -> bool:
        if not isinstance(other, CompatibilityScore):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return (
            f"[{self.overall:.1f} h={self.harmonic:.0f} t={self.transposability:.0f}"
            f" pre={self.pre_target_note:.0f} post={self.post_target_note:.0f}]"
        )


ZERO = CompatibilityScore()
MAX = CompatibilityScore.from_overall(100)
