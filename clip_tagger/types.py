"""
Type definitions shared by the learning, database and tagging packages.

Defines the feedback signal vocabulary and the transient tag candidate
produced by the blending engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .exceptions import InvalidSignal


class Signal(Enum):
    """User feedback on a single tag."""
    AFFIRM = "affirm"  # good tag
    REJECT = "reject"  # bad tag
    INTRODUCE = "introduce"  # new custom tag

    @property
    def target(self) -> float:
        """Binary training target for this signal."""
        return 0.0 if self is Signal.REJECT else 1.0

    @classmethod
    def coerce(cls, value: Any) -> Optional["Signal"]:
        """
        Lenient conversion used on the training path.

        Accepts Signal members, their string values (case-insensitive) and
        the legacy 'positive' / 'negative' / 'custom' spellings. Returns None
        for anything else.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        key = _LEGACY_SIGNALS.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None

    @classmethod
    def parse(cls, value: Any) -> "Signal":
        """
        Strict conversion.

        Raises:
            InvalidSignal: If value is not a recognized signal
        """
        signal = cls.coerce(value)
        if signal is None:
            raise InvalidSignal(f"Unrecognized feedback signal: {value!r}")
        return signal


_LEGACY_SIGNALS = {
    "positive": "affirm",
    "negative": "reject",
    "custom": "introduce",
}


class TagSource(Enum):
    """Where a tag candidate's confidence came from."""
    ORACLE = "oracle"
    LEARNED = "learned"
    BLENDED = "blended"
    CUSTOM = "custom"


def clamp_confidence(value: float) -> float:
    """Clamp a confidence into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


@dataclass
class TagCandidate:
    """
    One entry of a ranked tag list.

    Attributes:
        label: Tag label
        confidence: Confidence score, always within [0.0, 1.0]
        source: Which score source produced the confidence
    """
    label: str
    confidence: float
    source: TagSource

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "confidence": self.confidence,
            "source": self.source.value,
        }
