"""
Adapter around the zero-shot audio classifier.

The oracle itself is external: anything with a
``classify(samples, candidate_labels)`` method returning (label, score)
pairs or {label, score} dicts. This module prepares its input (mono
downmix) and cleans its output (sort, top-K, clamp, fallback).
"""

import logging
from typing import Any, List, Protocol, Sequence, Tuple

import numpy as np

from ..types import clamp_confidence

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5

# Returned when the oracle produces nothing usable
FALLBACK_TAGS: List[Tuple[str, float]] = [
    ("audio", 0.9),
    ("sound", 0.8),
    ("recording", 0.7),
]


class Oracle(Protocol):
    """Zero-shot scorer: raw samples + candidate labels -> label scores."""

    def classify(self, samples: np.ndarray, candidate_labels: Sequence[str]) -> Sequence[Any]:
        ...


def downmix_to_mono(samples, channel_axis: int = -1) -> np.ndarray:
    """
    Average all channels into one.

    Args:
        samples: 1-D mono samples, or 2-D frames x channels (soundfile layout)
        channel_axis: Axis holding channels for 2-D input

    Returns:
        1-D float32 array
    """
    array = np.asarray(samples, dtype=np.float32)
    if array.ndim == 1:
        return array
    if array.ndim != 2:
        raise ValueError(f"Expected 1-D or 2-D samples, got shape {array.shape}")
    return array.mean(axis=channel_axis).astype(np.float32)


def _as_pair(item: Any) -> Tuple[str, float]:
    if isinstance(item, dict):
        return str(item['label']), float(item['score'])
    label, score = item
    return str(label), float(score)


def process_oracle_results(results: Any, top_k: int = DEFAULT_TOP_K) -> List[Tuple[str, float]]:
    """
    Normalize raw oracle output.

    Sorts descending by score, keeps the first top_k and clamps scores to
    [0, 1]. Falls back to FALLBACK_TAGS when results are missing,
    malformed or empty.

    Args:
        results: Oracle output
        top_k: Number of results to keep

    Returns:
        List of (label, score) pairs
    """
    if not isinstance(results, (list, tuple)):
        logger.warning(f"Unexpected oracle results format: {type(results).__name__}")
        return list(FALLBACK_TAGS)

    try:
        pairs = [_as_pair(item) for item in results]
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Malformed oracle result entry: {e}")
        return list(FALLBACK_TAGS)

    pairs.sort(key=lambda pair: pair[1], reverse=True)
    tags = [(label, clamp_confidence(score)) for label, score in pairs[:top_k]]

    if not tags:
        logger.warning("Oracle returned no results, using fallback tags")
        return list(FALLBACK_TAGS)

    return tags


def classify_clip(
    oracle: Oracle,
    samples,
    candidate_labels: Sequence[str],
    top_k: int = DEFAULT_TOP_K,
) -> List[Tuple[str, float]]:
    """
    Run the oracle on one clip and normalize its output.

    Exceptions raised by the oracle propagate to the caller.
    """
    mono = downmix_to_mono(samples)
    logger.debug(f"Classifying {mono.shape[0]} samples against {len(candidate_labels)} labels")
    raw = oracle.classify(mono, list(candidate_labels))
    return process_oracle_results(raw, top_k=top_k)
