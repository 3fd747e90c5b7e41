"""
SQLAlchemy ORM models for the clip-tagger feedback database.

This module defines the database schema including:
- Feedback events (append-only user reactions to single tags)
- Label usage counters (one row per custom label, upserted)
- Audio feedback (per-clip review records used for batch retraining)
- Clip metadata (per-clip audio metadata for replaying feedback events)
- Classifier state (the serialized adaptive classifier)
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Text,
    JSON,
    Index,
    CheckConstraint,
    Enum,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..types import Signal
from ..utils.timestamps import utc_now


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class FeedbackEvent(Base):
    """
    One user reaction to one tag on one clip.

    Rows are immutable once written; they are only ever removed by
    a full clear of the store.
    """
    __tablename__ = "feedback_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    label: Mapped[str] = mapped_column(String(200), nullable=False)
    signal: Mapped[Signal] = mapped_column(
        Enum(Signal, values_callable=lambda members: [m.value for m in members]),
        nullable=False,
        index=True,
    )
    content_fingerprint: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Truncated SHA-256 of the audio bytes"
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_feedback_events_label_id", "label", "id"),
        Index("ix_feedback_events_created", "created_at", "id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "signal": self.signal.value,
            "content_fingerprint": self.content_fingerprint,
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<FeedbackEvent(id={self.id}, label='{self.label}', signal={self.signal.value})>"


class LabelUsage(Base):
    """
    Usage counter for a label the user has introduced.

    One row per label; repeated introductions increment count.
    """
    __tablename__ = "label_usage"

    label: Mapped[str] = mapped_column(String(200), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("count >= 1", name="ck_label_usage_count_positive"),
        Index("ix_label_usage_ranking", "count", "last_seen_at"),
    )

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "count": self.count,
            "first_seen_at": self.first_seen_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<LabelUsage(label='{self.label}', count={self.count})>"


class AudioFeedback(Base):
    """
    Review record for one clip.

    Keeps the oracle's original tags, the user's corrected tags and the
    audio metadata the feature vector is recomputed from on retraining.
    """
    __tablename__ = "audio_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    content_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    original_tags: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="[{label, confidence, source}] as shown to the user"
    )
    corrected_tags: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="[{label, signal}] user corrections"
    )
    audio_metadata: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="{duration, sample_rate, channels}"
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content_fingerprint": self.content_fingerprint,
            "original_tags": list(self.original_tags or []),
            "corrected_tags": list(self.corrected_tags or []),
            "audio_metadata": dict(self.audio_metadata) if self.audio_metadata else None,
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<AudioFeedback(id={self.id}, fingerprint='{self.content_fingerprint}')>"


class ClipMetadata(Base):
    """
    Audio metadata of every clip that received feedback.

    Keyed by fingerprint and written on the first feedback event for the
    clip, so events can be replayed even when the clip was never reviewed.
    """
    __tablename__ = "clip_metadata"

    content_fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)
    audio_metadata: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        comment="{duration, sample_rate, channels}"
    )

    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    def to_dict(self) -> dict:
        return {
            "content_fingerprint": self.content_fingerprint,
            "audio_metadata": dict(self.audio_metadata),
            "first_seen_at": self.first_seen_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<ClipMetadata(fingerprint='{self.content_fingerprint}')>"


class ClassifierState(Base):
    """
    Serialized adaptive classifier.

    Single-row table (id is always 1); saving overwrites the row.
    """
    __tablename__ = "classifier_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    state_json: Mapped[str] = mapped_column(Text, nullable=False)
    label_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_classifier_state_single_row"),
    )

    def __repr__(self) -> str:
        return f"<ClassifierState(labels={self.label_count}, updated_at={self.updated_at})>"
