"""
Database package for clip-tagger.

This package provides:
- SQLAlchemy ORM models for feedback events, label usage, clip reviews,
  clip metadata and the saved classifier
- Connection and session management
- CRUD operations for all models
- FeedbackStore, the transactional facade used by the tagging pipeline

Quick start:
    from clip_tagger.database import DatabaseManager, FeedbackStore

    store = FeedbackStore(DatabaseManager("data/clip_tagger.db"))
    fp = store.fingerprint(audio_bytes)
    store.record_signal("rain", "affirm", fp)
"""

from .connection import (
    DatabaseManager,
    create_test_db,
)

from .models import (
    Base,
    FeedbackEvent,
    LabelUsage,
    AudioFeedback,
    ClipMetadata,
    ClassifierState,
)

from .feedback_store import FeedbackStore, fingerprint


__all__ = [
    # Connection
    "DatabaseManager",
    "create_test_db",
    # Models
    "Base",
    "FeedbackEvent",
    "LabelUsage",
    "AudioFeedback",
    "ClipMetadata",
    "ClassifierState",
    # Store
    "FeedbackStore",
    "fingerprint",
]
