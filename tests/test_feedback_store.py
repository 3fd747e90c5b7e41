"""
Tests for the feedback store.

Tests:
- Content fingerprints
- Event recording and retrieval order
- Usage counter upsert and top label ordering
- Clip reviews, clip metadata and classifier state
- clear_all, export/import
- Error mapping (InvalidSignal, StorageUnavailable, CorruptState)
"""

import copy
import threading

import pytest

from clip_tagger.database import crud
from clip_tagger.database.connection import DatabaseManager
from clip_tagger.database.feedback_store import FeedbackStore, fingerprint
from clip_tagger.exceptions import CorruptState, InvalidSignal, StorageUnavailable
from clip_tagger.types import Signal
from clip_tagger.utils.config_manager import ConfigManager
from tests.fixtures.test_data import BIRDS_CLIP, RAIN_CLIP, STORE_DOCUMENT


# ============================================================================
# FINGERPRINTS
# ============================================================================

class TestFingerprint:
    """SHA-256 based content fingerprints."""

    def test_identical_content_identical_fingerprint(self):
        content = b"RIFF" + bytes(range(256)) * 10

        assert fingerprint(content) == fingerprint(bytes(content))

    def test_single_byte_difference_changes_fingerprint(self):
        content = bytearray(b"\x00" * 4096)
        changed = bytearray(content)
        changed[2048] = 1

        assert fingerprint(content) != fingerprint(changed)

    def test_default_length_is_16_hex_chars(self):
        fp = fingerprint(b"audio")

        assert len(fp) == 16
        assert all(c in "0123456789abcdef" for c in fp)

    def test_prefix_of_sha256(self):
        """A longer fingerprint extends the shorter one."""
        assert fingerprint(b"audio", 64).startswith(fingerprint(b"audio"))

    def test_file_path_matches_bytes(self, tmp_path):
        content = b"\x01\x02" * 100000
        path = tmp_path / "clip.wav"
        path.write_bytes(content)

        assert fingerprint(path) == fingerprint(content)
        assert fingerprint(str(path)) == fingerprint(content)

    def test_missing_file_raises_storage_unavailable(self, tmp_path):
        with pytest.raises(StorageUnavailable):
            fingerprint(tmp_path / "missing.wav")

    def test_store_uses_configured_length(self, db_manager):
        store = FeedbackStore(db_manager, fingerprint_length=24)

        assert len(store.fingerprint(b"audio")) == 24


# ============================================================================
# EVENTS
# ============================================================================

class TestEvents:
    """Append-only feedback events."""

    def test_record_signal_returns_increasing_ids(self, store):
        first = store.record_signal("rain", Signal.AFFIRM, "aaaa")
        second = store.record_signal("wind", Signal.REJECT, "aaaa")

        assert second > first

    def test_events_for_label_filters_and_orders(self, store):
        store.record_signal("rain", Signal.AFFIRM, "aaaa")
        store.record_signal("wind", Signal.REJECT, "aaaa")
        store.record_signal("rain", Signal.REJECT, "bbbb")

        events = store.events_for_label("rain")

        assert [(e['label'], e['signal'], e['content_fingerprint']) for e in events] == [
            ("rain", "affirm", "aaaa"),
            ("rain", "reject", "bbbb"),
        ]

    def test_events_for_none_returns_everything(self, store):
        store.record_signal("rain", Signal.AFFIRM, "aaaa")
        store.record_signal("wind", Signal.REJECT, "aaaa")

        assert [e['label'] for e in store.events_for_label(None)] == ["rain", "wind"]

    def test_string_signals_accepted(self, store):
        store.record_signal("rain", "affirm", "aaaa")
        store.record_signal("wind", "negative", "aaaa")

        assert [e['signal'] for e in store.events_for_label()] == ["affirm", "reject"]

    def test_invalid_signal_raises(self, store):
        """The store is strict; nothing is written for an unknown signal."""
        with pytest.raises(InvalidSignal):
            store.record_signal("rain", "sideways", "aaaa")

        assert store.events_for_label() == []

    def test_invalid_signal_is_a_value_error(self, store):
        with pytest.raises(ValueError):
            store.record_signal("rain", "sideways", "aaaa")

    def test_recent_events_newest_first(self, store):
        for label in ["a", "b", "c"]:
            store.record_signal(label, Signal.AFFIRM, "aaaa")

        assert [e['label'] for e in store.recent_events(2)] == ["c", "b"]

    def test_record_signal_does_not_touch_counters(self, store):
        store.record_signal("tin roof", Signal.INTRODUCE, "aaaa")

        assert store.top_labels(10) == []
        assert store.label_usage("tin roof") is None

    def test_signal_counts(self, store):
        store.record_signal("rain", Signal.AFFIRM, "aaaa")
        store.record_signal("wind", Signal.AFFIRM, "aaaa")
        store.record_signal("thunder", Signal.REJECT, "aaaa")

        assert store.signal_counts() == {'affirm': 2, 'reject': 1, 'introduce': 0}


# ============================================================================
# USAGE COUNTERS
# ============================================================================

class TestUsageCounters:
    """Upserted custom label counters."""

    def test_introduced_twice_counts_two(self, store):
        store.record_label_introduced("tin roof")
        count = store.record_label_introduced("tin roof")

        usage = store.label_usage("tin roof")
        assert count == 2
        assert usage['count'] == 2
        assert store.statistics()['custom_labels'] == 1

    def test_upsert_refreshes_last_seen(self, store):
        store.record_label_introduced("tin roof")
        first = store.label_usage("tin roof")
        store.record_label_introduced("tin roof")
        second = store.label_usage("tin roof")

        assert second['first_seen_at'] == first['first_seen_at']
        assert second['last_seen_at'] > first['last_seen_at']

    def test_top_labels_by_count(self, store):
        for label, times in [("hiss", 1), ("tin roof", 3), ("vinyl crackle", 2)]:
            for _ in range(times):
                store.record_label_introduced(label)

        assert store.top_labels(10) == ["tin roof", "vinyl crackle", "hiss"]

    def test_top_labels_ties_broken_by_recency(self, store):
        store.record_label_introduced("older")
        store.record_label_introduced("newer")

        assert store.top_labels(10) == ["newer", "older"]

    def test_top_labels_limit(self, store):
        for label in ["a", "b", "c", "d"]:
            store.record_label_introduced(label)

        assert len(store.top_labels(2)) == 2

    def test_concurrent_introductions_not_lost(self, file_store):
        """Parallel introductions of one label add up exactly."""

        def worker():
            for _ in range(10):
                file_store.record_label_introduced("tin roof")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert file_store.label_usage("tin roof")['count'] == 40


# ============================================================================
# CLIP REVIEWS AND CLASSIFIER STATE
# ============================================================================

class TestReviewsAndState:
    """Per-clip review records and the saved classifier blob."""

    def test_record_audio_feedback_normalizes_signals(self, store):
        store.record_audio_feedback(
            "aaaa",
            [{'label': 'rain', 'confidence': 0.9, 'source': 'oracle'}],
            [{'label': 'rain', 'signal': Signal.AFFIRM}, {'label': 'hiss', 'signal': 'custom'}],
            RAIN_CLIP,
        )

        record = store.audio_feedback()[0]
        assert record['corrected_tags'] == [
            {'label': 'rain', 'signal': 'affirm'},
            {'label': 'hiss', 'signal': 'introduce'},
        ]
        assert record['audio_metadata'] == RAIN_CLIP

    def test_audio_feedback_orders(self, store):
        for fp in ["first", "second"]:
            store.record_audio_feedback(fp, [], [], None)

        assert [r['content_fingerprint'] for r in store.audio_feedback()] == ["second", "first"]
        assert [r['content_fingerprint'] for r in store.all_audio_feedback()] == ["first", "second"]

    def test_classifier_state_round_trip(self, store):
        state = {'version': 1, 'feature_dim': 3, 'learning_rate': 0.01,
                 'per_label_models': [{'label': 'rain', 'weights': [0.1, 0.2, 0.3], 'bias': 0.5}]}

        assert store.load_classifier_state() is None
        store.save_classifier_state(state)
        store.save_classifier_state(state)

        assert store.load_classifier_state() == state

    def test_corrupt_classifier_state_raises(self, store, db_manager):
        with db_manager.session_scope() as session:
            crud.save_classifier_state(session, "{truncated", label_count=0)

        with pytest.raises(CorruptState):
            store.load_classifier_state()


class TestClipMetadata:
    """Per-clip audio metadata used to replay feedback events."""

    def test_first_write_wins(self, store):
        assert store.record_clip_metadata("aaaa", RAIN_CLIP) is True
        assert store.record_clip_metadata("aaaa", BIRDS_CLIP) is False

        assert store.metadata_by_fingerprint() == {"aaaa": RAIN_CLIP}
        assert store.statistics()['known_clips'] == 1

    def test_reviews_fill_in_missing_clips(self, store):
        store.record_clip_metadata("aaaa", RAIN_CLIP)
        store.record_audio_feedback("aaaa", [], [], BIRDS_CLIP)
        store.record_audio_feedback("bbbb", [], [], BIRDS_CLIP)
        store.record_audio_feedback("cccc", [], [], None)

        assert store.metadata_by_fingerprint() == {"aaaa": RAIN_CLIP, "bbbb": BIRDS_CLIP}


# ============================================================================
# CLEAR, EXPORT, IMPORT
# ============================================================================

class TestClearAll:
    """Clearing empties every table together."""

    def test_clear_all_empties_store(self, store):
        store.record_signal("rain", Signal.AFFIRM, "aaaa")
        store.record_label_introduced("tin roof")
        store.record_audio_feedback("aaaa", [], [], RAIN_CLIP)
        store.record_clip_metadata("aaaa", RAIN_CLIP)
        store.save_classifier_state({'per_label_models': []})

        deleted = store.clear_all()

        assert deleted == {
            'feedback_events': 1,
            'label_usage': 1,
            'audio_feedback': 1,
            'clip_metadata': 1,
            'classifier_state': 1,
        }
        assert store.top_labels(10) == []
        assert store.events_for_label(None) == []
        assert store.load_classifier_state() is None

    def test_clear_empty_store(self, store):
        store.clear_all()

        assert store.statistics() == {
            'feedback_events': 0,
            'distinct_labels': 0,
            'custom_labels': 0,
            'reviewed_clips': 0,
            'known_clips': 0,
        }


class TestExportImport:
    """Whole-store documents."""

    def test_import_then_export(self, store):
        imported = store.import_state(STORE_DOCUMENT)

        assert imported == {
            'feedback_events': 3, 'label_usage': 1, 'audio_feedback': 1, 'clip_metadata': 1,
        }
        assert store.export_state() == STORE_DOCUMENT

    def test_import_replaces_existing_rows(self, store):
        store.record_signal("old", Signal.AFFIRM, "zzzz")
        store.record_label_introduced("old")

        store.import_state(STORE_DOCUMENT)

        assert store.top_labels(10) == ["tin roof"]
        assert [e['label'] for e in store.events_for_label()] == ["rain", "tin roof", "applause"]

    def test_import_keeps_classifier_state(self, store):
        store.save_classifier_state({'per_label_models': []})

        store.import_state(STORE_DOCUMENT)

        assert store.load_classifier_state() == {'per_label_models': []}

    def test_export_is_importable_elsewhere(self, store):
        store.record_signal("rain", Signal.AFFIRM, "aaaa")
        store.record_label_introduced("tin roof")
        document = store.export_state()

        other = FeedbackStore(DatabaseManager(":memory:"))
        other.import_state(document)

        assert other.export_state() == document

    def test_import_document_without_clip_metadata(self, store):
        document = copy.deepcopy(STORE_DOCUMENT)
        del document['clip_metadata']

        imported = store.import_state(document)

        assert imported['clip_metadata'] == 0
        assert store.metadata_by_fingerprint() == {'aaaaaaaaaaaaaaaa': RAIN_CLIP}

    @pytest.mark.parametrize("mutate", [
        lambda d: d['events'][0].pop('label'),
        lambda d: d['events'][0].update(signal='sideways'),
        lambda d: d['events'][1].update(id=1),
        lambda d: d['usage_counters'][0].update(count=0),
        lambda d: d['usage_counters'].append(dict(d['usage_counters'][0])),
        lambda d: d['audio_feedback'][0].update(created_at='yesterday'),
        lambda d: d['clip_metadata'][0].update(audio_metadata=None),
        lambda d: d['clip_metadata'].append(dict(d['clip_metadata'][0])),
        lambda d: d.update(events='not a list'),
    ])
    def test_malformed_document_raises_and_writes_nothing(self, store, mutate):
        store.record_signal("kept", Signal.AFFIRM, "aaaa")
        document = copy.deepcopy(STORE_DOCUMENT)
        mutate(document)

        with pytest.raises(CorruptState):
            store.import_state(document)

        assert [e['label'] for e in store.events_for_label()] == ["kept"]


# ============================================================================
# FAILURES AND CONFIGURATION
# ============================================================================

class TestFailures:
    """Database failures surface as StorageUnavailable."""

    def test_missing_tables_raise_storage_unavailable(self, store, db_manager):
        db_manager.drop_all_tables()

        with pytest.raises(StorageUnavailable):
            store.record_signal("rain", Signal.AFFIRM, "aaaa")
        with pytest.raises(StorageUnavailable):
            store.top_labels(10)

    def test_from_config(self, tmp_path):
        config = ConfigManager(tmp_path / "config.yaml")
        config.update_param('store', 'fingerprint_length', 20)

        store = FeedbackStore.from_config(config, db_path=str(tmp_path / "db" / "feedback.db"))
        try:
            assert store.fingerprint_length == 20
            assert (tmp_path / "db" / "feedback.db").exists()
        finally:
            store.close()

    def test_file_store_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "feedback.db")
        first = FeedbackStore(DatabaseManager(path))
        first.record_label_introduced("tin roof")
        first.close()

        second = FeedbackStore(DatabaseManager(path))
        try:
            assert second.top_labels(10) == ["tin roof"]
        finally:
            second.close()
