"""
Tagging pipeline: one owner for the classifier, the store and the engine.

Drives a clip through the oracle and the blending engine, and routes user
feedback to both the classifier (training) and the store (persistence).

Degradation policy:
- the first StorageUnavailable is logged and handed back to the caller in
  the FeedbackOutcome; persistence is then disabled for the rest of the
  session while training continues in memory
- a CorruptState saved classifier is logged and replaced by an empty one;
  the error is kept in ``load_error`` for the caller to report
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..database.feedback_store import FeedbackStore, fingerprint
from ..exceptions import CorruptState, StorageUnavailable
from ..learning.adaptive_classifier import AdaptiveClassifier
from ..learning.features import AudioMetadata, extract_features
from ..types import Signal, TagCandidate, TagSource
from ..utils.config_manager import ConfigManager, DEFAULT_LABELS
from .blending_engine import BlendingEngine, events_to_batch, retrain_on_batch
from .oracle import DEFAULT_TOP_K, Oracle, classify_clip

logger = logging.getLogger(__name__)


@dataclass
class TaggingResult:
    """
    Everything known about one tagged clip.

    Attributes:
        content_fingerprint: Fingerprint of the clip's bytes
        metadata: Audio metadata the features were derived from
        features: Feature vector used for learned predictions
        oracle_results: Oracle top-K (label, score) pairs
        tags: Final ranked tags
        corrections: Feedback given on this clip so far ([{label, signal}])
    """
    content_fingerprint: str
    metadata: AudioMetadata
    features: np.ndarray
    oracle_results: List[Tuple[str, float]]
    tags: List[TagCandidate]
    corrections: List[Dict[str, str]] = field(default_factory=list)

    @property
    def labels(self) -> List[str]:
        return [tag.label for tag in self.tags]


@dataclass
class FeedbackOutcome:
    """
    Result of one feedback action.

    Attributes:
        label: Label the feedback applied to
        signal: Parsed signal, None when the signal was not recognized
        trained: Whether a training step was applied
        event_id: Stored event id, None when not persisted
        storage_error: Set only on the action that first hit a storage failure
    """
    label: str
    signal: Optional[Signal]
    trained: bool
    event_id: Optional[int] = None
    storage_error: Optional[StorageUnavailable] = None

    @property
    def persisted(self) -> bool:
        return self.event_id is not None


class TaggingPipeline:
    """
    Orchestrates oracle scoring, learned predictions and feedback.

    Usage:
        pipeline = TaggingPipeline(oracle, store=FeedbackStore(DatabaseManager()))
        result = pipeline.tag_clip(audio_bytes, samples, {"duration": 4.2,
                                   "sample_rate": 48000, "channels": 2})
        pipeline.submit_feedback(result, "rain", Signal.AFFIRM)
        pipeline.submit_feedback(result, "vinyl crackle", Signal.INTRODUCE)
        pipeline.finish_review(result)
    """

    def __init__(
        self,
        oracle: Oracle,
        store: Optional[FeedbackStore] = None,
        classifier: Optional[AdaptiveClassifier] = None,
        engine: Optional[BlendingEngine] = None,
        default_labels: Sequence[str] = DEFAULT_LABELS,
        oracle_top_k: int = DEFAULT_TOP_K,
        custom_label_limit: int = 20,
        fingerprint_length: int = 16,
        load_saved: bool = True,
    ):
        """
        Initialize the pipeline.

        With a store and load_saved set, the classifier saved in the store
        replaces the given one; the given classifier (or a default one) is
        the starting model when nothing usable was saved.

        Args:
            oracle: Zero-shot classifier
            store: Feedback store; None runs in memory only
            classifier: Starting adaptive classifier
            engine: Blending engine
            default_labels: Candidate labels sent to the oracle
            oracle_top_k: Oracle results kept per clip
            custom_label_limit: Frequent custom labels offered to the classifier
            fingerprint_length: Hex length of fingerprints computed without a store
            load_saved: Load the classifier state saved in the store
        """
        self.oracle = oracle
        self.store = store
        self.engine = engine if engine is not None else BlendingEngine()
        self.default_labels = list(default_labels)
        self.oracle_top_k = oracle_top_k
        self.custom_label_limit = custom_label_limit
        self.fingerprint_length = store.fingerprint_length if store is not None else fingerprint_length

        self.persistence_enabled = store is not None
        self.storage_error: Optional[StorageUnavailable] = None
        self.load_error: Optional[CorruptState] = None
        self._session_custom_labels: List[str] = []

        if classifier is None:
            classifier = AdaptiveClassifier()
        self.classifier = self._load_classifier(classifier) if load_saved else classifier

    @classmethod
    def from_config(
        cls,
        oracle: Oracle,
        config_manager: ConfigManager,
        store: Optional[FeedbackStore] = None,
    ) -> "TaggingPipeline":
        """Build a pipeline with every component configured from config_manager."""
        blending = config_manager.get_section('blending')
        return cls(
            oracle,
            store=store,
            classifier=AdaptiveClassifier.from_config(config_manager),
            engine=BlendingEngine.from_config(config_manager),
            default_labels=config_manager.get_param('oracle', 'default_labels'),
            oracle_top_k=blending['oracle_top_k'],
            custom_label_limit=blending['custom_label_limit'],
            fingerprint_length=config_manager.get_param('store', 'fingerprint_length'),
        )

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _persist(self, operation: str, *args) -> Tuple[Any, Optional[StorageUnavailable]]:
        """
        Call a FeedbackStore method unless persistence is disabled.

        Returns:
            (result, error) where error is the StorageUnavailable that just
            disabled persistence, or None
        """
        if not self.persistence_enabled:
            return None, None
        try:
            return getattr(self.store, operation)(*args), None
        except StorageUnavailable as e:
            self.persistence_enabled = False
            self.storage_error = e
            logger.warning(f"Storage unavailable, continuing in memory only: {e}")
            return None, e

    def _load_classifier(self, fallback: AdaptiveClassifier) -> AdaptiveClassifier:
        try:
            state, _ = self._persist('load_classifier_state')
            if state is None:
                return fallback
            return AdaptiveClassifier.deserialize(state)
        except CorruptState as e:
            logger.warning(f"Saved classifier is corrupt, starting untrained: {e}")
            self.load_error = e
            return fallback

    def custom_labels(self) -> List[str]:
        """Frequent custom labels from the store plus labels introduced this session."""
        stored, _ = self._persist('top_labels', self.custom_label_limit)
        labels = list(stored or [])
        for label in self._session_custom_labels:
            if label not in labels:
                labels.append(label)
        return labels

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def tag_clip(
        self,
        content: bytes,
        samples,
        metadata: Union[AudioMetadata, Dict[str, Any]],
        candidate_labels: Optional[Sequence[str]] = None,
    ) -> TaggingResult:
        """
        Produce the ranked tag list for one clip.

        Args:
            content: Raw audio file bytes (fingerprinted, never stored)
            samples: Decoded PCM samples for the oracle
            metadata: Duration, sample rate and channel count of the clip
            candidate_labels: Oracle vocabulary (defaults to default_labels)

        Returns:
            TaggingResult for the clip
        """
        if not isinstance(metadata, AudioMetadata):
            metadata = AudioMetadata.from_dict(metadata)

        content_fp = fingerprint(content, self.fingerprint_length)
        oracle_results = classify_clip(
            self.oracle,
            samples,
            candidate_labels or self.default_labels,
            top_k=self.oracle_top_k,
        )
        features = extract_features(metadata, self.classifier.feature_dim)
        tags = self.engine.rank(self.classifier, features, oracle_results, self.custom_labels())

        logger.info(f"Tagged clip {content_fp}: {[(t.label, round(t.confidence, 3)) for t in tags]}")
        return TaggingResult(
            content_fingerprint=content_fp,
            metadata=metadata,
            features=features,
            oracle_results=oracle_results,
            tags=tags,
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def submit_feedback(
        self,
        result: TaggingResult,
        label: str,
        signal: Union[Signal, str],
    ) -> FeedbackOutcome:
        """
        Apply one feedback action to a tagged clip.

        Trains the classifier, remembers the clip metadata, records the
        event, counts usage for introduced labels and saves the classifier
        state. Unrecognized signals are ignored.
        """
        parsed = Signal.coerce(signal)
        if parsed is None:
            logger.debug(f"Ignoring unrecognized signal {signal!r} for '{label}'")
            return FeedbackOutcome(label=label, signal=None, trained=False)

        self.classifier.train(result.features, label, parsed)
        result.corrections.append({'label': label, 'signal': parsed.value})

        if parsed is Signal.INTRODUCE:
            if label not in self._session_custom_labels:
                self._session_custom_labels.append(label)
            if label not in result.labels:
                result.tags.append(TagCandidate(label, 1.0, TagSource.CUSTOM))

        _, first_error = self._persist(
            'record_clip_metadata', result.content_fingerprint, result.metadata.to_dict()
        )
        event_id, error = self._persist(
            'record_signal', label, parsed, result.content_fingerprint
        )
        first_error = first_error or error
        if parsed is Signal.INTRODUCE:
            _, error = self._persist('record_label_introduced', label)
            first_error = first_error or error

        _, error = self._persist('save_classifier_state', self.classifier.serialize())
        first_error = first_error or error

        return FeedbackOutcome(
            label=label,
            signal=parsed,
            trained=True,
            event_id=event_id,
            storage_error=first_error,
        )

    def finish_review(self, result: TaggingResult) -> Optional[int]:
        """
        Record the clip review (original tags, corrections, metadata).

        The review keeps the original tags alongside the corrections; replay
        features come from the clip metadata remembered by submit_feedback.

        Returns:
            The review record id, or None when not persisted
        """
        record_id, _ = self._persist(
            'record_audio_feedback',
            result.content_fingerprint,
            [tag.to_dict() for tag in result.tags],
            list(result.corrections),
            result.metadata.to_dict(),
        )
        return record_id

    def review_clip(
        self,
        result: TaggingResult,
        corrections: Sequence[Tuple[str, Union[Signal, str]]],
    ) -> List[FeedbackOutcome]:
        """Submit several corrections for one clip, then record the review."""
        outcomes = [self.submit_feedback(result, label, signal) for label, signal in corrections]
        self.finish_review(result)
        return outcomes

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def retrain_from_store(self) -> int:
        """
        Rebuild the classifier by replaying every stored feedback event.

        Events are applied in stored order. Features are recomputed from the
        metadata remembered for each clip on its first feedback, so clips
        that were never reviewed replay too. Events for clips with no
        known metadata are skipped.

        Returns:
            Number of training steps applied

        Raises:
            StorageUnavailable: If there is no usable store
        """
        if self.store is None or not self.persistence_enabled:
            raise StorageUnavailable("No feedback store available for retraining")

        metadata = self.store.metadata_by_fingerprint()
        batch = events_to_batch(self.store.events_for_label(None), metadata)

        self.classifier.reset()
        steps = retrain_on_batch(self.classifier, batch)
        self._persist('save_classifier_state', self.classifier.serialize())
        return steps

    def clear_all(self) -> None:
        """Clear the store and reset the classifier together."""
        if self.store is not None:
            # A failed clear leaves both sides untouched
            self.store.clear_all()
        self.classifier.reset()
        self._session_custom_labels = []
        logger.info("Cleared all feedback and label models")
