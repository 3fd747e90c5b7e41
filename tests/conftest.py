"""
Pytest configuration and shared fixtures for clip-tagger tests.

Provides:
- In-memory feedback store with a controllable clock
- Seeded and zero-initialized classifiers
- Deterministic feature vectors
- A scripted stand-in for the zero-shot oracle
"""

import pytest
from datetime import datetime, timedelta
from typing import Generator, List, Sequence

import numpy as np

from clip_tagger.database.connection import DatabaseManager, create_test_db
from clip_tagger.database.feedback_store import FeedbackStore
from clip_tagger.learning.adaptive_classifier import AdaptiveClassifier
from clip_tagger.learning.features import extract_features
from clip_tagger.tagging.blending_engine import BlendingEngine
from clip_tagger.tagging.pipeline import TaggingPipeline
from tests.fixtures.test_data import RAIN_CLIP, BIRDS_CLIP, ORACLE_RAIN_RESULTS


# ============================================================================
# TEST DOUBLES
# ============================================================================

class StepClock:
    """Clock that advances one second per call, so row timestamps are strictly ordered."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class ScriptedOracle:
    """Oracle stand-in that returns a fixed result and records its inputs."""

    def __init__(self, results=None):
        self.results = list(ORACLE_RAIN_RESULTS) if results is None else results
        self.calls: List[tuple] = []

    def classify(self, samples: np.ndarray, candidate_labels: Sequence[str]):
        self.calls.append((samples, list(candidate_labels)))
        return self.results


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_manager() -> Generator[DatabaseManager, None, None]:
    """Fresh in-memory database for each test."""
    db = create_test_db()
    yield db
    db.close()


@pytest.fixture(scope="function")
def clock() -> StepClock:
    return StepClock()


@pytest.fixture(scope="function")
def store(db_manager, clock) -> FeedbackStore:
    """Feedback store over the in-memory database with a stepping clock."""
    return FeedbackStore(db_manager, clock=clock)


@pytest.fixture(scope="function")
def file_store(tmp_path, clock) -> Generator[FeedbackStore, None, None]:
    """Feedback store backed by a SQLite file."""
    store = FeedbackStore(DatabaseManager(str(tmp_path / "feedback.db")), clock=clock)
    yield store
    store.close()


# ============================================================================
# LEARNING FIXTURES
# ============================================================================

@pytest.fixture
def classifier() -> AdaptiveClassifier:
    """Classifier with the default hyperparameters and a fixed init seed."""
    return AdaptiveClassifier(seed=1234)


@pytest.fixture
def zero_init_classifier() -> AdaptiveClassifier:
    """Classifier whose fresh label models start at exactly 0.5."""
    return AdaptiveClassifier(init_scale=0.0, seed=1234)


@pytest.fixture
def rain_features() -> np.ndarray:
    return extract_features(RAIN_CLIP)


@pytest.fixture
def birds_features() -> np.ndarray:
    return extract_features(BIRDS_CLIP)


# ============================================================================
# TAGGING FIXTURES
# ============================================================================

@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture
def engine() -> BlendingEngine:
    return BlendingEngine()


@pytest.fixture
def pipeline(oracle, store) -> TaggingPipeline:
    """Pipeline wired to the scripted oracle and the in-memory store."""
    return TaggingPipeline(oracle, store=store, classifier=AdaptiveClassifier(seed=99))


@pytest.fixture
def stereo_samples() -> np.ndarray:
    """One second of 48 kHz stereo noise in frames x channels layout."""
    rng = np.random.default_rng(0)
    return rng.uniform(-1.0, 1.0, size=(48000, 2)).astype(np.float32)
