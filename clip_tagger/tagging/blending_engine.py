"""
Merge zero-shot and learned scores into one ranked tag list.

Blending rules, applied to the oracle's top-K and the classifier's
predictions for the same clip:
1. every oracle result becomes a candidate (source: oracle)
2. a learned prediction for a label the oracle also returned replaces the
   confidence with the mean of both (source: blended)
3. a learned prediction for any other label is admitted only when its
   confidence is strictly above the admission threshold (source: learned,
   or custom when the label is one of the user's own labels)
4. candidates are sorted by confidence, descending, and truncated

Also hosts batch retraining, which replays stored feedback through the
classifier.
"""

import logging
from itertools import groupby
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..learning.adaptive_classifier import AdaptiveClassifier
from ..learning.features import extract_features
from ..types import Signal, TagCandidate, TagSource

logger = logging.getLogger(__name__)

DEFAULT_ADMISSION_THRESHOLD = 0.6
DEFAULT_OUTPUT_SIZE = 8


class BlendingEngine:
    """
    Produces the final ranked tag list for one inference.

    The admission threshold is exclusive: a learned-only prediction of
    exactly the threshold is not admitted.
    """

    def __init__(
        self,
        admission_threshold: float = DEFAULT_ADMISSION_THRESHOLD,
        output_size: int = DEFAULT_OUTPUT_SIZE,
    ):
        """
        Initialize the blending engine.

        Args:
            admission_threshold: Minimum (exclusive) confidence for learned-only tags
            output_size: Maximum number of tags returned

        Raises:
            ValueError: If the threshold is outside [0, 1] or output_size < 1
        """
        if not 0.0 <= admission_threshold <= 1.0:
            raise ValueError(f"Admission threshold must be between 0 and 1, got {admission_threshold}")
        if output_size < 1:
            raise ValueError(f"output_size must be positive, got {output_size}")

        self.admission_threshold = admission_threshold
        self.output_size = output_size

    @classmethod
    def from_config(cls, config_manager) -> "BlendingEngine":
        """Build an engine from the 'blending' config section."""
        section = config_manager.get_section('blending')
        return cls(
            admission_threshold=section['admission_threshold'],
            output_size=section['output_size'],
        )

    def blend(
        self,
        oracle_results: Sequence[Tuple[str, float]],
        learned_predictions: Sequence[Tuple[str, float]],
        custom_labels: Iterable[str] = (),
    ) -> List[TagCandidate]:
        """
        Merge oracle results and learned predictions.

        Args:
            oracle_results: (label, score) pairs from the oracle
            learned_predictions: (label, confidence) pairs from the classifier
            custom_labels: The user's own labels; learned-only admissions of
                these are tagged as custom rather than learned

        Returns:
            Ranked TagCandidate list, at most output_size long
        """
        custom = set(custom_labels)
        candidates: Dict[str, TagCandidate] = {}

        for label, score in oracle_results:
            if label not in candidates:
                candidates[label] = TagCandidate(label, score, TagSource.ORACLE)

        for label, confidence in learned_predictions:
            existing = candidates.get(label)
            if existing is not None:
                if existing.source is TagSource.ORACLE:
                    existing.confidence = (existing.confidence + confidence) / 2.0
                    existing.source = TagSource.BLENDED
            elif confidence > self.admission_threshold:
                source = TagSource.CUSTOM if label in custom else TagSource.LEARNED
                candidates[label] = TagCandidate(label, confidence, source)
            else:
                logger.debug(
                    f"Learned tag '{label}' ({confidence:.3f}) below admission threshold "
                    f"{self.admission_threshold}"
                )

        ranked = sorted(candidates.values(), key=lambda c: c.confidence, reverse=True)
        return ranked[:self.output_size]

    def rank(
        self,
        classifier: AdaptiveClassifier,
        features,
        oracle_results: Sequence[Tuple[str, float]],
        custom_labels: Sequence[str] = (),
    ) -> List[TagCandidate]:
        """
        Score the oracle's labels plus custom_labels with the classifier and blend.

        Args:
            classifier: Trained adaptive classifier
            features: Feature vector of the clip
            oracle_results: Oracle top-K for the clip
            custom_labels: Recently used custom labels to consider as well

        Returns:
            Ranked TagCandidate list
        """
        candidate_labels = [label for label, _ in oracle_results] + list(custom_labels)
        learned = classifier.predict_all(features, candidate_labels)
        return self.blend(oracle_results, learned, custom_labels=custom_labels)


def _record_metadata(record: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    return record.get('audio_metadata') or record.get('audioFeatures')


def _record_corrections(record: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
    return record.get('corrected_tags') or record.get('correctedTags') or []


def retrain_on_batch(
    classifier: AdaptiveClassifier,
    records: Iterable[Mapping[str, Any]],
    feature_dim: Optional[int] = None,
) -> int:
    """
    Replay stored clip feedback through the classifier.

    Each record carries the clip's audio metadata and its corrected tags
    ([{label, signal}]). Features are recomputed from the metadata; records
    without metadata or corrections are skipped.

    SGD accumulates: replaying the same records twice moves the models
    further in the same direction.

    Args:
        classifier: Classifier to train in place
        records: Clip feedback records
        feature_dim: Feature length (defaults to the classifier's)

    Returns:
        Number of training steps applied
    """
    feature_dim = feature_dim or classifier.feature_dim
    steps = 0
    skipped = 0

    for record in records:
        metadata = _record_metadata(record)
        corrections = _record_corrections(record)
        if not metadata or not corrections:
            skipped += 1
            continue

        features = extract_features(metadata, feature_dim)
        for correction in corrections:
            signal = Signal.coerce(correction.get('signal', correction.get('feedback')))
            if signal is None:
                continue
            classifier.train(features, correction.get('label', correction.get('tag')), signal)
            steps += 1

    logger.info(f"Batch retrain applied {steps} steps ({skipped} records skipped)")
    return steps


def events_to_batch(
    events: Iterable[Mapping[str, Any]],
    metadata_by_fingerprint: Mapping[str, Mapping[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Turn feedback events into retrain_on_batch records.

    Each run of consecutive events on the same clip becomes one record, so
    replaying the batch applies the events in exactly their stored order.
    A clip whose events are interleaved with another clip's yields several
    records. Events whose fingerprint has no known metadata produce a
    record without metadata, which retrain_on_batch skips.
    """
    batch = []
    for fp, run in groupby(events, key=lambda event: event['content_fingerprint']):
        batch.append({
            'content_fingerprint': fp,
            'audio_metadata': metadata_by_fingerprint.get(fp),
            'corrected_tags': [
                {'label': event['label'], 'signal': event['signal']} for event in run
            ],
        })
    return batch
