"""
Export the saved classifier as a model bundle.

Writes model-config.json, classifier-state.json and a README.md model
card into the output directory.

Usage:
    python scripts/export_model.py
    python scripts/export_model.py --output exports/clip-tagger-model
    python scripts/export_model.py --state models/classifier.json
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from clip_tagger.database.feedback_store import FeedbackStore
from clip_tagger.exceptions import ClipTaggerError
from clip_tagger.learning.adaptive_classifier import AdaptiveClassifier
from clip_tagger.learning.model_export import export_model
from clip_tagger.utils.config_manager import ConfigManager, DEFAULT_CONFIG_PATH

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

DEFAULT_EXPORT_DIR = PROJECT_ROOT / "exports" / "clip-tagger-model"


def load_classifier(config: ConfigManager, args) -> AdaptiveClassifier:
    """Classifier from a state file, or from the store when no file is given."""
    if args.state:
        return AdaptiveClassifier.load(args.state)

    store = FeedbackStore.from_config(config, db_path=args.database)
    try:
        state = store.load_classifier_state()
    finally:
        store.close()

    if state is None:
        logger.warning("No saved classifier state, exporting an untrained model")
        return AdaptiveClassifier.from_config(config)
    return AdaptiveClassifier.deserialize(state)


def main():
    """Main entry point for model export."""
    parser = argparse.ArgumentParser(description="Export the adaptive classifier as a model bundle")
    parser.add_argument('--config', '-c', type=Path, default=DEFAULT_CONFIG_PATH,
                        help='Path to YAML configuration file')
    parser.add_argument('--database', '-d', help='Path to database file (overrides config)')
    parser.add_argument('--state', '-s', type=Path,
                        help='Classifier state JSON file to export instead of the stored state')
    parser.add_argument('--output', '-o', type=Path, default=DEFAULT_EXPORT_DIR,
                        help='Output directory')

    args = parser.parse_args()
    config = ConfigManager(args.config)

    try:
        classifier = load_classifier(config, args)
        written = export_model(
            classifier,
            args.output,
            config.get_param('oracle', 'default_labels'),
        )
    except (ClipTaggerError, FileNotFoundError) as e:
        logger.error(f"Export failed: {e}")
        return 1

    for path in written:
        print(f"  {path}")
    print(f"\nExported {len(classifier)} label models to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
