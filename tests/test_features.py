"""
Tests for metadata-derived feature vectors.
"""

import numpy as np
import pytest

from clip_tagger.learning.features import (
    FILL_SCALE,
    AudioMetadata,
    extract_features,
)
from tests.fixtures.test_data import BIRDS_CLIP, RAIN_CLIP, RAIN_CLIP_CAMEL


class TestExtractFeatures:
    """Deterministic feature extraction."""

    def test_metadata_dimensions(self):
        features = extract_features(RAIN_CLIP)

        assert features.shape == (512,)
        assert features[0] == pytest.approx(12.5 / 60.0)
        assert features[1] == pytest.approx(1.0)
        assert features[2] == 2.0

    def test_identical_metadata_identical_vector(self):
        assert np.array_equal(extract_features(RAIN_CLIP), extract_features(dict(RAIN_CLIP)))

    def test_camel_case_keys_match(self):
        assert np.array_equal(extract_features(RAIN_CLIP), extract_features(RAIN_CLIP_CAMEL))

    def test_different_metadata_different_fill(self):
        rain = extract_features(RAIN_CLIP)
        birds = extract_features(BIRDS_CLIP)

        assert not np.array_equal(rain[3:], birds[3:])

    def test_fill_is_small_and_non_negative(self):
        fill = extract_features(RAIN_CLIP)[3:]

        assert fill.min() >= 0.0
        assert fill.max() < FILL_SCALE

    def test_custom_dimension(self):
        features = extract_features(RAIN_CLIP, feature_dim=16)

        assert features.shape == (16,)
        assert np.array_equal(features[:3], extract_features(RAIN_CLIP)[:3])

    def test_metadata_only_dimension(self):
        assert extract_features(RAIN_CLIP, feature_dim=3).shape == (3,)

    def test_too_small_dimension_raises(self):
        with pytest.raises(ValueError):
            extract_features(RAIN_CLIP, feature_dim=2)


class TestAudioMetadata:
    """Metadata parsing."""

    def test_from_dict_camel_case(self):
        metadata = AudioMetadata.from_dict(RAIN_CLIP_CAMEL)

        assert metadata == AudioMetadata(duration=12.5, sample_rate=48000, channels=2)

    def test_to_dict(self):
        assert AudioMetadata.from_dict(RAIN_CLIP).to_dict() == RAIN_CLIP

    def test_dataclass_and_dict_inputs_agree(self):
        assert np.array_equal(
            extract_features(AudioMetadata.from_dict(BIRDS_CLIP)),
            extract_features(BIRDS_CLIP),
        )
