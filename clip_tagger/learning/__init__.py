"""
Learning infrastructure for personalized tagging.

Layer 1 - Feature Extraction:
- Deterministic feature vectors derived from audio metadata

Layer 2 - Adaptive Classifier:
- One online logistic regression per label, trained from each feedback event
- JSON-compatible serialization of the full parameter state

Layer 3 - Model Export:
- Self-describing bundle (config, state, model card) for sharing a trained layer
"""

from .features import AudioMetadata, extract_features
from .adaptive_classifier import AdaptiveClassifier, LabelModel
from .model_export import export_model, load_exported_model

__all__ = [
    "AudioMetadata",
    "extract_features",
    "AdaptiveClassifier",
    "LabelModel",
    "export_model",
    "load_exported_model",
]
