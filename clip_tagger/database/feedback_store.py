"""
Durable, content-addressed record of user corrections.

FeedbackStore wraps a DatabaseManager and the CRUD functions with the
guarantees the tagging pipeline relies on:
- every write runs in exactly one transaction
- a process-wide lock serializes store operations, so a reader never sees
  a counter without its event or a half-cleared store
- storage failures surface as StorageUnavailable, malformed imports as
  CorruptState
"""

import functools
import hashlib
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import CorruptState, StorageUnavailable
from ..types import Signal
from ..utils.timestamps import utc_now
from . import crud
from .connection import DatabaseManager, bulk_insert_in_chunks
from .models import AudioFeedback, ClipMetadata, FeedbackEvent, LabelUsage

logger = logging.getLogger(__name__)

DEFAULT_FINGERPRINT_LENGTH = 16

EXPORT_VERSION = 1

BytesLike = Union[bytes, bytearray, memoryview]


def fingerprint(content: Union[BytesLike, str, Path], length: int = DEFAULT_FINGERPRINT_LENGTH) -> str:
    """
    Stable identifier for a piece of audio content.

    Args:
        content: Raw bytes, or a path to a file whose bytes are hashed
        length: Number of hex characters kept from the SHA-256 digest

    Returns:
        Lower-case hex string of the given length

    Raises:
        StorageUnavailable: If content is a path that cannot be read
    """
    digest = hashlib.sha256()

    if isinstance(content, (bytes, bytearray, memoryview)):
        digest.update(content)
    else:
        path = Path(content)
        try:
            with open(path, 'rb') as f:
                for chunk in iter(lambda: f.read(1 << 16), b''):
                    digest.update(chunk)
        except OSError as e:
            raise StorageUnavailable(f"Cannot read content from {path}") from e

    return digest.hexdigest()[:length]


def _storage_operation(func: Callable) -> Callable:
    """Run a store method under the store lock, mapping DB errors to StorageUnavailable."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            try:
                return func(self, *args, **kwargs)
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"[FeedbackStore] {func.__name__} failed: {e}")
                raise StorageUnavailable(f"{func.__name__} failed: {e}") from e

    return wrapper


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class FeedbackStore:
    """
    Records and queries feedback events and custom label usage.

    Usage:
        store = FeedbackStore(DatabaseManager("data/clip_tagger.db"))

        fp = store.fingerprint(audio_bytes)
        store.record_signal("rain", Signal.AFFIRM, fp)
        store.record_label_introduced("vinyl crackle")

        store.top_labels(10)           # -> ["vinyl crackle", ...]
        store.events_for_label(None)   # -> every event, oldest first
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        fingerprint_length: int = DEFAULT_FINGERPRINT_LENGTH,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the store and create missing tables.

        Args:
            db_manager: Owner of the engine and sessions
            fingerprint_length: Hex characters kept from content digests
            clock: Timestamp source for new rows

        Raises:
            StorageUnavailable: If the schema cannot be created
        """
        self.db = db_manager
        self.fingerprint_length = fingerprint_length
        self._clock = clock
        self._lock = threading.RLock()

        try:
            self.db.create_all_tables()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Cannot initialize feedback store: {e}") from e

        logger.info(f"[FeedbackStore] Initialized at {self.db.db_path}")

    @classmethod
    def from_config(cls, config_manager, db_path: Optional[str] = None) -> "FeedbackStore":
        """Build a store from the 'store' config section."""
        section = config_manager.get_section('store')
        return cls(
            DatabaseManager(db_path or section['db_path']),
            fingerprint_length=section.get('fingerprint_length', DEFAULT_FINGERPRINT_LENGTH),
        )

    def fingerprint(self, content: Union[BytesLike, str, Path]) -> str:
        """Content fingerprint at this store's configured length."""
        return fingerprint(content, self.fingerprint_length)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @_storage_operation
    def record_signal(
        self,
        label: str,
        signal: Union[Signal, str],
        content_fingerprint: str,
    ) -> int:
        """
        Append an immutable feedback event.

        Does not touch usage counters; call record_label_introduced for that.

        Returns:
            The new event id

        Raises:
            InvalidSignal: If signal is not a recognized signal
            StorageUnavailable: If the write fails
        """
        parsed = Signal.parse(signal)
        with self.db.session_scope() as session:
            event = crud.insert_feedback_event(
                session, label, parsed, content_fingerprint, created_at=self._clock()
            )
            event_id = event.id

        logger.debug(f"[FeedbackStore] Recorded {parsed.value} for '{label}' ({content_fingerprint})")
        return event_id

    @_storage_operation
    def record_label_introduced(self, label: str) -> int:
        """
        Count one introduction of label.

        Inserts the counter with count 1, or increments it and refreshes
        last_seen_at.

        Returns:
            Counter value after the upsert
        """
        with self.db.session_scope() as session:
            count = crud.upsert_label_usage(session, label, seen_at=self._clock())

        logger.debug(f"[FeedbackStore] Label '{label}' usage -> {count}")
        return count

    @_storage_operation
    def record_audio_feedback(
        self,
        content_fingerprint: str,
        original_tags: List[Dict[str, Any]],
        corrected_tags: List[Dict[str, Any]],
        audio_metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Record the review of one clip for later batch retraining.

        corrected_tags signals are normalized to their string values.

        Returns:
            The new record id
        """
        normalized = [
            {'label': item['label'], 'signal': Signal.parse(item['signal']).value}
            for item in corrected_tags
        ]
        with self.db.session_scope() as session:
            record = crud.insert_audio_feedback(
                session,
                content_fingerprint,
                original_tags,
                normalized,
                audio_metadata=audio_metadata,
                created_at=self._clock(),
            )
            record_id = record.id
        return record_id

    @_storage_operation
    def record_clip_metadata(self, content_fingerprint: str, audio_metadata: Dict[str, Any]) -> bool:
        """
        Remember the audio metadata of a clip that received feedback.

        The first write for a fingerprint wins.

        Returns:
            True if the clip was not known before
        """
        with self.db.session_scope() as session:
            inserted = crud.upsert_clip_metadata(
                session, content_fingerprint, audio_metadata, seen_at=self._clock()
            )

        if inserted:
            logger.debug(f"[FeedbackStore] Stored metadata for clip {content_fingerprint}")
        return inserted

    @_storage_operation
    def save_classifier_state(self, state: Dict[str, Any]) -> None:
        """Persist AdaptiveClassifier.serialize() output."""
        with self.db.session_scope() as session:
            crud.save_classifier_state(
                session,
                json.dumps(state),
                label_count=len(state.get('per_label_models', [])),
            )

    @_storage_operation
    def clear_all(self) -> Dict[str, int]:
        """
        Empty events, usage counters, clip reviews, clip metadata and the saved classifier.

        One transaction under the store lock: readers observe either the
        full previous state or the empty store.

        Returns:
            Number of deleted rows per table
        """
        with self.db.session_scope() as session:
            deleted = crud.delete_all_feedback(session)

        logger.info(f"[FeedbackStore] Cleared all data: {deleted}")
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @_storage_operation
    def top_labels(self, limit: int = 20) -> List[str]:
        """Labels by usage count descending, ties broken by most recent use."""
        with self.db.session_scope() as session:
            return [usage.label for usage in crud.get_top_labels(session, limit)]

    @_storage_operation
    def label_usage(self, label: str) -> Optional[Dict[str, Any]]:
        """Usage counter for label as a dict, or None."""
        with self.db.session_scope() as session:
            usage = crud.get_label_usage(session, label)
            return usage.to_dict() if usage else None

    @_storage_operation
    def events_for_label(self, label: Optional[str] = None) -> List[Dict[str, Any]]:
        """Events for label (all events when label is None), oldest first."""
        with self.db.session_scope() as session:
            return [event.to_dict() for event in crud.get_events_for_label(session, label)]

    @_storage_operation
    def recent_events(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent events first."""
        with self.db.session_scope() as session:
            return [event.to_dict() for event in crud.get_recent_events(session, limit)]

    @_storage_operation
    def audio_feedback(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent clip reviews first."""
        with self.db.session_scope() as session:
            return [record.to_dict() for record in crud.get_recent_audio_feedback(session, limit)]

    @_storage_operation
    def all_audio_feedback(self) -> List[Dict[str, Any]]:
        """Every clip review, oldest first (retraining order)."""
        with self.db.session_scope() as session:
            return [record.to_dict() for record in crud.get_all_audio_feedback(session)]

    @_storage_operation
    def metadata_by_fingerprint(self) -> Dict[str, Dict[str, Any]]:
        """
        Audio metadata for every clip with feedback, keyed by fingerprint.

        Clip metadata rows take precedence; reviews fill in clips recorded
        before the metadata table existed.
        """
        with self.db.session_scope() as session:
            metadata = {
                row.content_fingerprint: dict(row.audio_metadata)
                for row in crud.get_all_clip_metadata(session)
            }
            for record in crud.get_all_audio_feedback(session):
                if record.audio_metadata:
                    metadata.setdefault(record.content_fingerprint, dict(record.audio_metadata))
        return metadata

    @_storage_operation
    def load_classifier_state(self) -> Optional[Dict[str, Any]]:
        """
        Saved classifier document, or None if nothing was saved.

        Raises:
            CorruptState: If the stored JSON cannot be decoded
        """
        with self.db.session_scope() as session:
            row = crud.get_classifier_state(session)
            if row is None:
                return None
            text = row.state_json

        try:
            return json.loads(text)
        except ValueError as e:
            raise CorruptState(f"Stored classifier state is not valid JSON: {e}") from e

    @_storage_operation
    def signal_counts(self) -> Dict[str, int]:
        """Number of events per signal value."""
        with self.db.session_scope() as session:
            counts = crud.get_signal_counts(session)
        return {signal.value: counts.get(signal, 0) for signal in Signal}

    @_storage_operation
    def statistics(self) -> Dict[str, int]:
        """Row counts for inspection tooling."""
        with self.db.session_scope() as session:
            return crud.get_store_statistics(session)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    @_storage_operation
    def export_state(self) -> Dict[str, Any]:
        """
        Full store contents as one JSON-compatible document.

        The saved classifier state is not part of the document; export it
        with AdaptiveClassifier.serialize().
        """
        with self.db.session_scope() as session:
            return {
                'version': EXPORT_VERSION,
                'events': [e.to_dict() for e in crud.get_events_for_label(session, None)],
                'usage_counters': [u.to_dict() for u in crud.get_all_label_usage(session)],
                'audio_feedback': [a.to_dict() for a in crud.get_all_audio_feedback(session)],
                'clip_metadata': [c.to_dict() for c in crud.get_all_clip_metadata(session)],
            }

    @_storage_operation
    def import_state(self, document: Dict[str, Any]) -> Dict[str, int]:
        """
        Replace the store contents with an export_state() document.

        The document is fully validated before anything is written; the
        replace itself is one transaction.

        Returns:
            Number of imported rows per table

        Raises:
            CorruptState: If the document is malformed
        """
        events, counters, clips, known_clips = self._decode_document(document)

        with self.db.session_scope() as session:
            crud.delete_all_feedback(session, include_classifier_state=False)
            imported = {
                'feedback_events': bulk_insert_in_chunks(session, FeedbackEvent, events),
                'label_usage': bulk_insert_in_chunks(session, LabelUsage, counters),
                'audio_feedback': bulk_insert_in_chunks(session, AudioFeedback, clips),
                'clip_metadata': bulk_insert_in_chunks(session, ClipMetadata, known_clips),
            }

        logger.info(f"[FeedbackStore] Imported {imported}")
        return imported

    @staticmethod
    def _decode_document(document: Dict[str, Any]):
        try:
            if isinstance(document, (str, bytes, bytearray)):
                document = json.loads(document)

            events = [
                {
                    'id': int(e['id']),
                    'label': str(e['label']),
                    'signal': Signal.parse(e['signal']),
                    'content_fingerprint': str(e['content_fingerprint']),
                    'created_at': _parse_timestamp(e['created_at']),
                }
                for e in document.get('events', [])
            ]
            counters = []
            for u in document.get('usage_counters', []):
                count = int(u['count'])
                if count < 1:
                    raise ValueError(f"usage count must be positive, got {count}")
                last_seen = _parse_timestamp(u['last_seen_at'])
                counters.append({
                    'label': str(u['label']),
                    'count': count,
                    'first_seen_at': _parse_timestamp(u.get('first_seen_at', last_seen)),
                    'last_seen_at': last_seen,
                })
            clips = [
                {
                    'id': int(a['id']),
                    'content_fingerprint': str(a['content_fingerprint']),
                    'original_tags': list(a.get('original_tags', [])),
                    'corrected_tags': [
                        {'label': str(t['label']), 'signal': Signal.parse(t['signal']).value}
                        for t in a.get('corrected_tags', [])
                    ],
                    'audio_metadata': dict(a['audio_metadata']) if a.get('audio_metadata') else None,
                    'created_at': _parse_timestamp(a['created_at']),
                }
                for a in document.get('audio_feedback', [])
            ]
            known_clips = [
                {
                    'content_fingerprint': str(c['content_fingerprint']),
                    'audio_metadata': dict(c['audio_metadata']),
                    'first_seen_at': _parse_timestamp(c['first_seen_at']),
                }
                for c in document.get('clip_metadata', [])
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptState(f"Malformed feedback store document: {e}") from e

        if len({c['label'] for c in counters}) != len(counters):
            raise CorruptState("Malformed feedback store document: duplicate usage counter labels")
        if len({e['id'] for e in events}) != len(events) or len({a['id'] for a in clips}) != len(clips):
            raise CorruptState("Malformed feedback store document: duplicate row ids")
        if len({c['content_fingerprint'] for c in known_clips}) != len(known_clips):
            raise CorruptState("Malformed feedback store document: duplicate clip fingerprints")

        return events, counters, clips, known_clips

    def close(self) -> None:
        """Dispose of the underlying engine."""
        self.db.close()
