"""Size classes and node-count classification.

A valid configuration partitions ``[0, +inf)`` into named, non-overlapping,
gapless node-count intervals. ``SizePartition.from_configuration`` enforces
that at load time so ``classify`` can never miss.
"""
from bisect import bisect_right
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Iterator

from app.core.errors import ConfigurationInvalid
from app.core.interfaces import Effects, SizeConfiguration


@dataclass(frozen=True)
class SizeClass:
    name: str
    lower: int
    upper: Optional[int]  # inclusive; None means unbounded
    effects: Effects = field(default_factory=Effects)

    def contains(self, node_count: int) -> bool:
        return node_count >= self.lower and (self.upper is None or node_count <= self.upper)

    def describe(self) -> str:
        upper = '+inf)' if self.upper is None else f"{self.upper}]"
        return f"{self.name}[{self.lower}, {upper}"


class SizePartition:
    def __init__(self, classes: List[SizeClass]):
        # callers go through from_configuration; classes must already be sorted and valid
        self._classes = list(classes)
        self._lower_bounds = [c.lower for c in self._classes]
        self._by_name: Dict[str, SizeClass] = {c.name: c for c in self._classes}

    @classmethod
    def from_configuration(cls, sizes: List[SizeConfiguration]) -> 'SizePartition':
        if not sizes:
            raise ConfigurationInvalid(ConfigurationInvalid.NO_SIZES, "at least one size class is required")

        dupes = sorted(name for name, n in Counter(s.name for s in sizes).items() if n > 1)
        if dupes:
            raise ConfigurationInvalid(
                ConfigurationInvalid.DUPLICATE_NAME, f"size class names must be unique: {', '.join(dupes)}"
            )

        classes = [
            SizeClass(name=s.name, lower=s.criteria.from_, upper=s.criteria.to, effects=s.effects or Effects())
            for s in sizes
        ]

        for c in classes:
            if c.upper is not None and c.lower > c.upper:
                raise ConfigurationInvalid(
                    ConfigurationInvalid.INVERTED_RANGE,
                    f"size class {c.name}: lower limit {c.lower} must be less than or equal to the upper limit {c.upper}",
                )

        zero = [c.name for c in classes if c.lower == 0]
        if not zero:
            raise ConfigurationInvalid(
                ConfigurationInvalid.MISSING_ZERO_LOWER_BOUND, "exactly one size class must have a lower limit of zero"
            )
        if len(zero) > 1:
            raise ConfigurationInvalid(
                ConfigurationInvalid.MULTIPLE_ZERO_LOWER_BOUND,
                f"exactly one size class must have a lower limit of zero, got {', '.join(zero)}",
            )

        open_ended = [c.name for c in classes if c.upper is None]
        if not open_ended:
            raise ConfigurationInvalid(
                ConfigurationInvalid.MISSING_OPEN_UPPER_BOUND, "exactly one size class must have no upper limit"
            )
        if len(open_ended) > 1:
            raise ConfigurationInvalid(
                ConfigurationInvalid.MULTIPLE_OPEN_UPPER_BOUND,
                f"exactly one size class must have no upper limit, got {', '.join(open_ended)}",
            )

        classes.sort(key=lambda c: (c.lower, c.upper is None, c.upper or 0))
        for prev, nxt in zip(classes, classes[1:]):
            if prev.upper is None or prev.upper >= nxt.lower:
                raise ConfigurationInvalid(
                    ConfigurationInvalid.OVERLAP,
                    f"size classes {prev.describe()} and {nxt.describe()} overlap",
                )
            if prev.upper + 1 < nxt.lower:
                raise ConfigurationInvalid(
                    ConfigurationInvalid.GAP,
                    f"node counts {prev.upper + 1}..{nxt.lower - 1} are not covered "
                    f"between {prev.describe()} and {nxt.describe()}",
                )
        return cls(classes)

    def classify(self, node_count: int) -> str:
        if node_count < 0:
            raise ValueError(f"node count must be non-negative, got {node_count}")
        size = self._classes[bisect_right(self._lower_bounds, node_count) - 1]
        if not size.contains(node_count):
            raise ValueError(f"node count {node_count} is not covered by any size class")
        return size.name

    def get(self, name: Optional[str]) -> Optional[SizeClass]:
        if name is None:
            return None
        return self._by_name.get(name)

    def __contains__(self, name) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[SizeClass]:
        return iter(self._classes)

    def __len__(self) -> int:
        return len(self._classes)

    def direction(self, current: str, target: str) -> str:
        """'increase' if target's lower bound is above current's, else 'decrease'."""
        return 'increase' if self._by_name[target].lower > self._by_name[current].lower else 'decrease'
