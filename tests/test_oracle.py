"""
Tests for the zero-shot oracle adapter.
"""

import numpy as np
import pytest

from clip_tagger.tagging.oracle import (
    FALLBACK_TAGS,
    classify_clip,
    downmix_to_mono,
    process_oracle_results,
)
from tests.fixtures.test_data import ORACLE_MALFORMED, ORACLE_OUT_OF_RANGE, ORACLE_RAIN_RESULTS


class TestDownmix:
    """Channel averaging before the oracle call."""

    def test_mono_passthrough(self):
        samples = np.array([0.1, -0.2, 0.3])

        mono = downmix_to_mono(samples)

        assert mono.dtype == np.float32
        assert np.allclose(mono, samples)

    def test_stereo_frames_by_channels(self, stereo_samples):
        mono = downmix_to_mono(stereo_samples)

        assert mono.shape == (48000,)
        assert np.allclose(mono, stereo_samples.mean(axis=1))

    def test_channels_first_layout(self):
        samples = np.array([[1.0, 1.0, 1.0], [0.0, 0.0, 0.0]])

        mono = downmix_to_mono(samples, channel_axis=0)

        assert np.allclose(mono, [0.5, 0.5, 0.5])

    def test_rejects_three_dimensions(self):
        with pytest.raises(ValueError):
            downmix_to_mono(np.zeros((2, 2, 2)))


class TestProcessResults:
    """Sorting, truncation, clamping and fallback."""

    def test_sorted_and_truncated(self):
        tags = process_oracle_results(ORACLE_RAIN_RESULTS, top_k=5)

        assert tags == [
            ('rain', 0.9),
            ('wind', 0.4),
            ('ocean waves', 0.35),
            ('applause', 0.3),
            ('thunder', 0.2),
        ]

    def test_tuple_results_clamped(self):
        tags = process_oracle_results(ORACLE_OUT_OF_RANGE)

        assert tags == [('music', 1.0), ('noise', 0.0)]

    @pytest.mark.parametrize("results", [[], None, "rain", {'label': 'rain'}, ORACLE_MALFORMED])
    def test_unusable_results_fall_back(self, results):
        assert process_oracle_results(results) == FALLBACK_TAGS

    def test_fallback_is_a_copy(self):
        tags = process_oracle_results([])
        tags.append(('extra', 0.1))

        assert ('extra', 0.1) not in FALLBACK_TAGS


class TestClassifyClip:
    """End-to-end oracle call."""

    def test_oracle_receives_mono_and_labels(self, oracle, stereo_samples):
        tags = classify_clip(oracle, stereo_samples, ['rain', 'wind'], top_k=2)

        samples, labels = oracle.calls[0]
        assert samples.ndim == 1
        assert labels == ['rain', 'wind']
        assert tags == [('rain', 0.9), ('wind', 0.4)]

    def test_oracle_errors_propagate(self):
        class FailingOracle:
            def classify(self, samples, candidate_labels):
                raise RuntimeError("model not loaded")

        with pytest.raises(RuntimeError):
            classify_clip(FailingOracle(), np.zeros(10), ['rain'])
