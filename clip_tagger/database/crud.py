"""
CRUD operations for the clip-tagger feedback database.

Provides database operations for:
- Feedback events (append-only)
- Label usage counters (atomic upsert)
- Audio feedback (per-clip review records)
- Classifier state (single-row blob)

All functions take an open Session and never commit; transaction
boundaries belong to the caller (see DatabaseManager.session_scope).
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from sqlalchemy import select, func, delete
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ..types import Signal
from ..utils.timestamps import utc_now
from .models import (
    FeedbackEvent,
    LabelUsage,
    AudioFeedback,
    ClipMetadata,
    ClassifierState,
)


# ============================================================================
# FEEDBACK EVENT OPERATIONS
# ============================================================================

def insert_feedback_event(
    session: Session,
    label: str,
    signal: Signal,
    content_fingerprint: str,
    created_at: Optional[datetime] = None,
) -> FeedbackEvent:
    """
    Append a feedback event.

    Args:
        session: Database session
        label: Tag label the feedback refers to
        signal: Feedback signal
        content_fingerprint: Fingerprint of the clip's audio bytes
        created_at: Event timestamp (defaults to now)

    Returns:
        Created FeedbackEvent with its id populated
    """
    event = FeedbackEvent(
        label=label,
        signal=signal,
        content_fingerprint=content_fingerprint,
        created_at=created_at or utc_now(),
    )

    session.add(event)
    session.flush()
    return event


def get_events_for_label(
    session: Session,
    label: Optional[str] = None,
) -> List[FeedbackEvent]:
    """
    Retrieve feedback events in insertion order.

    Args:
        session: Database session
        label: Restrict to this label; None returns every event

    Returns:
        List of FeedbackEvent instances, oldest first
    """
    stmt = select(FeedbackEvent)
    if label is not None:
        stmt = stmt.where(FeedbackEvent.label == label)
    stmt = stmt.order_by(FeedbackEvent.id.asc())

    return list(session.execute(stmt).scalars().all())


def get_recent_events(session: Session, limit: int = 100) -> List[FeedbackEvent]:
    """
    Retrieve the most recent feedback events.

    Args:
        session: Database session
        limit: Maximum number of events

    Returns:
        List of FeedbackEvent instances, most recent first
    """
    stmt = (
        select(FeedbackEvent)
        .order_by(FeedbackEvent.created_at.desc(), FeedbackEvent.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def get_signal_counts(session: Session) -> Dict[Signal, int]:
    """Count feedback events per signal. Returns {Signal.AFFIRM: 10, ...}."""
    stmt = (
        select(FeedbackEvent.signal, func.count(FeedbackEvent.id))
        .group_by(FeedbackEvent.signal)
    )
    return {signal: count for signal, count in session.execute(stmt).all()}


# ============================================================================
# LABEL USAGE OPERATIONS
# ============================================================================

def upsert_label_usage(
    session: Session,
    label: str,
    seen_at: Optional[datetime] = None,
) -> int:
    """
    Insert a usage counter or increment the existing one.

    Uses a single INSERT ... ON CONFLICT DO UPDATE statement, so the
    read-modify-write happens inside SQLite and two concurrent
    introductions of the same label cannot lose an increment.

    Args:
        session: Database session
        label: Label being introduced
        seen_at: Timestamp of the introduction (defaults to now)

    Returns:
        Counter value after the upsert
    """
    seen_at = seen_at or utc_now()

    stmt = sqlite_insert(LabelUsage).values(
        label=label,
        count=1,
        first_seen_at=seen_at,
        last_seen_at=seen_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[LabelUsage.label],
        set_={
            "count": LabelUsage.count + 1,
            "last_seen_at": stmt.excluded.last_seen_at,
        },
    )
    session.execute(stmt)
    session.flush()

    return session.execute(
        select(LabelUsage.count).where(LabelUsage.label == label)
    ).scalar_one()


def get_label_usage(session: Session, label: str) -> Optional[LabelUsage]:
    """
    Retrieve the usage counter for a label.

    Returns:
        LabelUsage instance or None if the label was never introduced
    """
    return session.get(LabelUsage, label)


def get_top_labels(session: Session, limit: int = 20) -> List[LabelUsage]:
    """
    Retrieve the most used labels.

    Ordered by count descending, then most recent last_seen_at, then
    label text so the ordering is total.

    Args:
        session: Database session
        limit: Maximum number of labels

    Returns:
        List of LabelUsage instances
    """
    stmt = (
        select(LabelUsage)
        .order_by(
            LabelUsage.count.desc(),
            LabelUsage.last_seen_at.desc(),
            LabelUsage.label.asc(),
        )
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def get_all_label_usage(session: Session) -> List[LabelUsage]:
    """Retrieve every usage counter ordered by label."""
    return list(
        session.execute(select(LabelUsage).order_by(LabelUsage.label)).scalars().all()
    )


# ============================================================================
# AUDIO FEEDBACK OPERATIONS
# ============================================================================

def insert_audio_feedback(
    session: Session,
    content_fingerprint: str,
    original_tags: List[Dict[str, Any]],
    corrected_tags: List[Dict[str, Any]],
    audio_metadata: Optional[Dict[str, Any]] = None,
    created_at: Optional[datetime] = None,
) -> AudioFeedback:
    """
    Record the review of one clip.

    Args:
        session: Database session
        content_fingerprint: Fingerprint of the clip's audio bytes
        original_tags: Tags shown to the user ([{label, confidence, source}])
        corrected_tags: User corrections ([{label, signal}])
        audio_metadata: {duration, sample_rate, channels} for retraining
        created_at: Record timestamp (defaults to now)

    Returns:
        Created AudioFeedback instance
    """
    record = AudioFeedback(
        content_fingerprint=content_fingerprint,
        original_tags=list(original_tags),
        corrected_tags=list(corrected_tags),
        audio_metadata=dict(audio_metadata) if audio_metadata else None,
        created_at=created_at or utc_now(),
    )

    session.add(record)
    session.flush()
    return record


def get_recent_audio_feedback(session: Session, limit: int = 100) -> List[AudioFeedback]:
    """Retrieve clip reviews, most recent first."""
    stmt = (
        select(AudioFeedback)
        .order_by(AudioFeedback.created_at.desc(), AudioFeedback.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def get_all_audio_feedback(session: Session) -> List[AudioFeedback]:
    """Retrieve every clip review in insertion order."""
    return list(
        session.execute(select(AudioFeedback).order_by(AudioFeedback.id.asc())).scalars().all()
    )


# ============================================================================
# CLIP METADATA OPERATIONS
# ============================================================================

def upsert_clip_metadata(
    session: Session,
    content_fingerprint: str,
    audio_metadata: Dict[str, Any],
    seen_at: Optional[datetime] = None,
) -> bool:
    """
    Remember a clip's audio metadata the first time it is seen.

    Metadata is derived from the audio bytes, so later writes for the
    same fingerprint are ignored.

    Returns:
        True if a new row was inserted
    """
    stmt = sqlite_insert(ClipMetadata).values(
        content_fingerprint=content_fingerprint,
        audio_metadata=dict(audio_metadata),
        first_seen_at=seen_at or utc_now(),
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=[ClipMetadata.content_fingerprint])
    result = session.execute(stmt)
    session.flush()
    return result.rowcount > 0


def get_all_clip_metadata(session: Session) -> List[ClipMetadata]:
    """Retrieve every clip metadata row ordered by first sighting."""
    stmt = select(ClipMetadata).order_by(
        ClipMetadata.first_seen_at.asc(), ClipMetadata.content_fingerprint.asc()
    )
    return list(session.execute(stmt).scalars().all())


# ============================================================================
# CLASSIFIER STATE OPERATIONS
# ============================================================================

def save_classifier_state(session: Session, state_json: str, label_count: int) -> ClassifierState:
    """
    Store the serialized classifier, replacing any previous state.

    Args:
        session: Database session
        state_json: JSON text of AdaptiveClassifier.serialize()
        label_count: Number of label models in the state

    Returns:
        The ClassifierState row
    """
    row = session.get(ClassifierState, 1)
    if row is None:
        row = ClassifierState(id=1, state_json=state_json, label_count=label_count)
        session.add(row)
    else:
        row.state_json = state_json
        row.label_count = label_count
        row.updated_at = utc_now()

    session.flush()
    return row


def get_classifier_state(session: Session) -> Optional[ClassifierState]:
    """Retrieve the stored classifier state row, if any."""
    return session.get(ClassifierState, 1)


# ============================================================================
# STATISTICS AND MAINTENANCE
# ============================================================================

def get_store_statistics(session: Session) -> Dict[str, int]:
    """
    Get row counts for the feedback tables.

    Returns:
        Dictionary with event, label and clip counts
    """
    return {
        'feedback_events': session.execute(select(func.count(FeedbackEvent.id))).scalar_one(),
        'distinct_labels': session.execute(
            select(func.count(func.distinct(FeedbackEvent.label)))
        ).scalar_one(),
        'custom_labels': session.execute(select(func.count(LabelUsage.label))).scalar_one(),
        'reviewed_clips': session.execute(select(func.count(AudioFeedback.id))).scalar_one(),
        'known_clips': session.execute(
            select(func.count(ClipMetadata.content_fingerprint))
        ).scalar_one(),
    }


def delete_all_feedback(session: Session, include_classifier_state: bool = True) -> Dict[str, int]:
    """
    Delete every feedback row.

    Runs inside the caller's transaction, so the tables are emptied
    together or not at all.

    Returns:
        Number of deleted rows per table
    """
    deleted = {
        'feedback_events': session.execute(delete(FeedbackEvent)).rowcount,
        'label_usage': session.execute(delete(LabelUsage)).rowcount,
        'audio_feedback': session.execute(delete(AudioFeedback)).rowcount,
        'clip_metadata': session.execute(delete(ClipMetadata)).rowcount,
    }
    if include_classifier_state:
        deleted['classifier_state'] = session.execute(delete(ClassifierState)).rowcount

    session.flush()
    return deleted
