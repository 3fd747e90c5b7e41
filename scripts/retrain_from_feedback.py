"""
Rebuild the adaptive classifier from stored feedback.

Replays every feedback event whose clip has known audio metadata, in
stored order, through a fresh classifier, then saves the result
back into the store. Use after changing classifier hyperparameters or
after importing a store document.

Usage:
    python scripts/retrain_from_feedback.py
    python scripts/retrain_from_feedback.py --database data/clip_tagger.db --passes 3
    python scripts/retrain_from_feedback.py --dry-run
"""

import argparse
import logging
import sys
from pathlib import Path

from tqdm import tqdm

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

LOG_DIR = PROJECT_ROOT / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

from clip_tagger.database.feedback_store import FeedbackStore
from clip_tagger.exceptions import ClipTaggerError
from clip_tagger.learning.adaptive_classifier import AdaptiveClassifier
from clip_tagger.tagging.blending_engine import events_to_batch, retrain_on_batch
from clip_tagger.utils.config_manager import ConfigManager, DEFAULT_CONFIG_PATH

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOG_DIR / 'retrain.log'),
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def build_batch(store: FeedbackStore) -> list:
    """Join stored events, in stored order, with the metadata of their clips."""
    return events_to_batch(store.events_for_label(None), store.metadata_by_fingerprint())


def main():
    """Main entry point for batch retraining."""
    parser = argparse.ArgumentParser(
        description="Rebuild the adaptive classifier from stored feedback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Retrain with the configured hyperparameters
  python scripts/retrain_from_feedback.py

  # Three passes over the stored feedback, without saving
  python scripts/retrain_from_feedback.py --passes 3 --dry-run
        """
    )

    parser.add_argument('--config', '-c', type=Path, default=DEFAULT_CONFIG_PATH,
                        help='Path to YAML configuration file')
    parser.add_argument('--database', '-d', help='Path to database file (overrides config)')
    parser.add_argument('--passes', '-p', type=int, default=1,
                        help='Number of replays over the stored feedback')
    parser.add_argument('--seed', type=int, help='Seed for weight initialization')
    parser.add_argument('--dry-run', action='store_true',
                        help='Retrain but do not save the classifier state')

    args = parser.parse_args()

    if args.passes < 1:
        parser.error("--passes must be at least 1")

    config = ConfigManager(args.config)
    errors = config.validate_config()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        return 1

    try:
        store = FeedbackStore.from_config(config, db_path=args.database)
        batch = build_batch(store)
        logger.info(f"Loaded {len(batch)} reviewed clips from {store.db.db_path}")

        classifier = AdaptiveClassifier.from_config(config, seed=args.seed)
        steps = 0
        for n in range(args.passes):
            steps += retrain_on_batch(
                classifier,
                tqdm(batch, desc=f"Pass {n + 1}/{args.passes}", unit="clip"),
            )

        if args.dry_run:
            logger.info("Dry run, classifier state not saved")
        else:
            store.save_classifier_state(classifier.serialize())
            logger.info("Saved retrained classifier state")

        store.close()

    except ClipTaggerError as e:
        logger.error(f"Retraining failed: {e}")
        return 1

    stats = classifier.model_stats()
    print("\n" + "=" * 60)
    print("RETRAINING SUMMARY")
    print("=" * 60)
    print(f"Training steps:  {steps}")
    print(f"Trained labels:  {stats['trained_labels']}")
    print(f"Feature dim:     {stats['feature_dim']}")
    print(f"Learning rate:   {stats['learning_rate']}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
