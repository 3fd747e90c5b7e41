"""
Export stored feedback for inspection or backup.

Modes:
    --format csv    Recent feedback events as a CSV table (default)
    --format json   Full store document (events, usage counters, clip
                    reviews), importable with --import

Usage:
    python scripts/export_feedback.py --output reports/feedback.csv --limit 500
    python scripts/export_feedback.py --format json --output backups/feedback.json
    python scripts/export_feedback.py --import backups/feedback.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from clip_tagger.database.feedback_store import FeedbackStore
from clip_tagger.exceptions import ClipTaggerError
from clip_tagger.utils.config_manager import ConfigManager, DEFAULT_CONFIG_PATH

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger("export_feedback")

EXPORT_DIR = PROJECT_ROOT / "reports" / "exports"

EVENT_COLUMNS = ['id', 'created_at', 'label', 'signal', 'content_fingerprint']


def events_frame(store: FeedbackStore, limit: int) -> pd.DataFrame:
    """Most recent events, newest first, with the custom-label usage count joined in."""
    events = pd.DataFrame(store.recent_events(limit), columns=EVENT_COLUMNS)
    usage = pd.DataFrame(store.export_state()['usage_counters'], columns=['label', 'count'])
    frame = events.merge(usage.rename(columns={'count': 'usage_count'}), on='label', how='left')
    frame['usage_count'] = frame['usage_count'].fillna(0).astype(int)
    return frame


def print_summary(store: FeedbackStore) -> None:
    stats = store.statistics()
    counts = store.signal_counts()
    print("\n" + "=" * 60)
    print("FEEDBACK STORE SUMMARY")
    print("=" * 60)
    print(f"Events:          {stats['feedback_events']}")
    for signal, count in counts.items():
        print(f"  {signal:<14} {count}")
    print(f"Distinct labels: {stats['distinct_labels']}")
    print(f"Custom labels:   {stats['custom_labels']}")
    print(f"Reviewed clips:  {stats['reviewed_clips']}")
    print(f"Known clips:     {stats['known_clips']}")
    print(f"Top labels:      {', '.join(store.top_labels(10)) or '-'}")
    print("=" * 60)


def main():
    """Main entry point for feedback export."""
    parser = argparse.ArgumentParser(description="Export or import stored feedback")
    parser.add_argument('--config', '-c', type=Path, default=DEFAULT_CONFIG_PATH,
                        help='Path to YAML configuration file')
    parser.add_argument('--database', '-d', help='Path to database file (overrides config)')
    parser.add_argument('--format', '-f', choices=['csv', 'json'], default='csv')
    parser.add_argument('--output', '-o', type=Path, help='Output file path')
    parser.add_argument('--limit', '-n', type=int, default=1000,
                        help='Maximum number of events in CSV mode')
    parser.add_argument('--import', dest='import_path', type=Path,
                        help='Replace the store contents with a JSON document')

    args = parser.parse_args()
    config = ConfigManager(args.config)

    try:
        store = FeedbackStore.from_config(config, db_path=args.database)

        if args.import_path:
            document = json.loads(args.import_path.read_text(encoding='utf-8'))
            imported = store.import_state(document)
            logger.info(f"Imported {imported} from {args.import_path}")
        else:
            output = args.output or EXPORT_DIR / f"feedback.{args.format}"
            output.parent.mkdir(parents=True, exist_ok=True)

            if args.format == 'csv':
                frame = events_frame(store, args.limit)
                frame.to_csv(output, index=False)
                logger.info(f"Wrote {len(frame)} events to {output}")
            else:
                output.write_text(json.dumps(store.export_state(), indent=2), encoding='utf-8')
                logger.info(f"Wrote store document to {output}")

        print_summary(store)
        store.close()

    except (ClipTaggerError, OSError, ValueError) as e:
        logger.error(f"Feedback export failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
