"""
Deterministic feature vectors from audio metadata.

The first three dimensions carry the clip's duration, sample rate and
channel count; the remaining dimensions are a pseudo-random fill seeded
from the metadata itself, so identical metadata always yields an
identical vector. The fill stands in for real audio embeddings.
"""

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Union

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_FEATURE_DIM = 512

# Scale of the seeded fill, kept small relative to the metadata dimensions
FILL_SCALE = 0.1

METADATA_DIMS = 3


@dataclass(frozen=True)
class AudioMetadata:
    """
    Decoded-audio properties the features are derived from.

    Attributes:
        duration: Clip length in seconds
        sample_rate: Samples per second
        channels: Number of audio channels
    """
    duration: float
    sample_rate: int
    channels: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AudioMetadata":
        """Build from a stored metadata mapping (accepts camelCase keys too)."""
        return cls(
            duration=float(data.get("duration", 0.0)),
            sample_rate=int(data.get("sample_rate", data.get("sampleRate", 0))),
            channels=int(data.get("channels", data.get("numberOfChannels", 0))),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def _metadata_seed(metadata: AudioMetadata) -> int:
    """Stable 64-bit seed derived from the canonical JSON form of metadata."""
    canonical = json.dumps(metadata.to_dict(), sort_keys=True)
    digest = hashlib.sha256(canonical.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def extract_features(
    metadata: Union[AudioMetadata, Mapping[str, Any]],
    feature_dim: int = DEFAULT_FEATURE_DIM,
) -> np.ndarray:
    """
    Map audio metadata to a fixed-length feature vector.

    Args:
        metadata: AudioMetadata or a mapping with duration/sample_rate/channels
        feature_dim: Output length (must be at least 3)

    Returns:
        float64 array of length feature_dim

    Raises:
        ValueError: If feature_dim is smaller than the metadata dimensions
    """
    if feature_dim < METADATA_DIMS:
        raise ValueError(f"feature_dim must be >= {METADATA_DIMS}, got {feature_dim}")

    if not isinstance(metadata, AudioMetadata):
        metadata = AudioMetadata.from_dict(metadata)

    features = np.zeros(feature_dim, dtype=np.float64)
    features[0] = metadata.duration / 60.0
    features[1] = metadata.sample_rate / 48000.0
    features[2] = float(metadata.channels)

    rng = np.random.default_rng(_metadata_seed(metadata))
    features[METADATA_DIMS:] = rng.random(feature_dim - METADATA_DIMS) * FILL_SCALE

    return features
