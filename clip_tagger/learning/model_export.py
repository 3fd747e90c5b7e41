"""
Export a trained classifier as a self-describing model bundle.

The bundle directory holds:
- model-config.json: model type, version, dimensions and label vocabulary
- classifier-state.json: AdaptiveClassifier.serialize() output
- README.md: model card
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .. import __version__
from ..exceptions import StorageUnavailable
from ..utils.timestamps import utc_now
from .adaptive_classifier import AdaptiveClassifier

logger = logging.getLogger(__name__)

MODEL_TYPE = "clip-tagger"
BASE_MODEL = "laion/clap-htsat-unfused"

MODEL_CARD_TEMPLATE = """---
license: mit
base_model: {base_model}
tags:
- audio-classification
- clap
- audio-tagging
---

# clip-tagger Model

Personalized audio tagging on top of a zero-shot CLAP classifier. A
per-label logistic regression layer, trained from user feedback, is
blended with the zero-shot scores at inference time.

## Model Description

- **Base Model**: {base_model}
- **Adaptation layer**: one logistic regression per label
- **Feature dimension**: {feature_dim}
- **Learning rate**: {learning_rate}
- **Trained labels**: {trained_labels}

## Files

- `model-config.json` - Model configuration and label vocabulary
- `classifier-state.json` - Per-label weights and biases

## Training Data

The adaptation layer learns only from its owner's corrections and custom
tags. Exported {exported_at}.
"""


def build_model_config(
    classifier: AdaptiveClassifier,
    default_labels: Sequence[str],
) -> Dict:
    """Model configuration document for a classifier."""
    return {
        'model_type': MODEL_TYPE,
        'base_model': BASE_MODEL,
        'version': __version__,
        'feature_dim': classifier.feature_dim,
        'learning_rate': classifier.learning_rate,
        'default_labels': list(default_labels),
        'trained_labels': classifier.labels(),
    }


def export_model(
    classifier: AdaptiveClassifier,
    export_dir: Path,
    default_labels: Sequence[str],
    exported_at: Optional[datetime] = None,
) -> List[Path]:
    """
    Write the model bundle for classifier into export_dir.

    Args:
        classifier: Trained classifier
        export_dir: Target directory (created if missing)
        default_labels: Oracle label vocabulary recorded in the config
        exported_at: Timestamp for the model card (defaults to now)

    Returns:
        Paths of the written files

    Raises:
        StorageUnavailable: If the bundle cannot be written
    """
    export_dir = Path(export_dir)
    exported_at = exported_at or utc_now()

    config = build_model_config(classifier, default_labels)
    card = MODEL_CARD_TEMPLATE.format(
        base_model=BASE_MODEL,
        feature_dim=classifier.feature_dim,
        learning_rate=classifier.learning_rate,
        trained_labels=len(classifier),
        exported_at=exported_at.strftime('%Y-%m-%d %H:%M UTC'),
    )

    files = {
        'model-config.json': json.dumps(config, indent=2),
        'classifier-state.json': json.dumps(classifier.serialize()),
        'README.md': card,
    }

    written = []
    try:
        export_dir.mkdir(parents=True, exist_ok=True)
        for name, content in files.items():
            path = export_dir / name
            path.write_text(content, encoding='utf-8')
            written.append(path)
    except OSError as e:
        logger.error(f"Model export to {export_dir} failed: {e}")
        raise StorageUnavailable(f"Cannot write model bundle to {export_dir}") from e

    logger.info(f"Exported model bundle ({len(classifier)} labels) to {export_dir}")
    return written


def load_exported_model(export_dir: Path) -> AdaptiveClassifier:
    """
    Load the classifier from a bundle written by export_model().

    Raises:
        FileNotFoundError: If the bundle has no classifier state
        CorruptState: If the state file is malformed
    """
    return AdaptiveClassifier.load(Path(export_dir) / 'classifier-state.json')
