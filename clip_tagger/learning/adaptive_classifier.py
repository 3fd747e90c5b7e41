"""
Per-label online logistic regression.

Every label that has received feedback owns one LabelModel (weight vector
plus bias). Each feedback event is a single SGD step on the logistic loss
for that label only, so an update costs O(feature_dim) and keeps no
batching state.
"""

import json
import logging
import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from ..exceptions import CorruptState, StorageUnavailable, UnknownLabel
from ..types import Signal, clamp_confidence
from .features import DEFAULT_FEATURE_DIM

logger = logging.getLogger(__name__)

STATE_VERSION = 1

DEFAULT_LEARNING_RATE = 0.01
DEFAULT_INIT_SCALE = 0.01


def _sigmoid(logit: float) -> float:
    """Logistic function, written so exp() never overflows."""
    if logit >= 0:
        return 1.0 / (1.0 + math.exp(-logit))
    z = math.exp(logit)
    return z / (1.0 + z)


@dataclass
class LabelModel:
    """
    Parameters for one label.

    Attributes:
        weights: Weight vector (float64)
        bias: Bias term
        updates: Number of SGD steps applied since creation or load
    """
    weights: np.ndarray
    bias: float = 0.0
    updates: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def logit(self, features: np.ndarray) -> float:
        n = min(features.shape[0], self.weights.shape[0])
        return self.bias + float(np.dot(self.weights[:n], features[:n]))


class AdaptiveClassifier:
    """
    Maintains one binary logistic-regression model per label.

    Models are created lazily on a label's first feedback, with small
    uniform random weights and zero bias. Updates to one label hold that
    label's lock only; updates to different labels never contend.

    Usage:
        classifier = AdaptiveClassifier(feature_dim=512)
        classifier.train(features, "rain", Signal.AFFIRM)
        classifier.predict(features, "rain")       # -> float in [0, 1]
        classifier.predict(features, "thunder")    # -> None (never trained)
    """

    def __init__(
        self,
        feature_dim: int = DEFAULT_FEATURE_DIM,
        learning_rate: float = DEFAULT_LEARNING_RATE,
        init_scale: float = DEFAULT_INIT_SCALE,
        seed: Optional[int] = None,
    ):
        """
        Initialize an empty classifier.

        Args:
            feature_dim: Length of the weight vector for new label models
            learning_rate: Fixed SGD step size
            init_scale: Width of the uniform weight initialization interval
            seed: Optional seed for the weight initializer (reproducible runs)

        Raises:
            ValueError: If feature_dim or learning_rate is not positive
        """
        if feature_dim < 1:
            raise ValueError(f"feature_dim must be positive, got {feature_dim}")
        if learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {learning_rate}")

        self.feature_dim = int(feature_dim)
        self.learning_rate = float(learning_rate)
        self.init_scale = float(init_scale)

        self._rng = np.random.default_rng(seed)
        self._models: Dict[str, LabelModel] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(cls, config_manager, seed: Optional[int] = None) -> "AdaptiveClassifier":
        """Build a classifier from the 'classifier' config section."""
        section = config_manager.get_section('classifier')
        return cls(
            feature_dim=section['feature_dim'],
            learning_rate=section['learning_rate'],
            init_scale=section.get('init_scale', DEFAULT_INIT_SCALE),
            seed=seed,
        )

    # ------------------------------------------------------------------
    # Model registry
    # ------------------------------------------------------------------

    def __contains__(self, label: str) -> bool:
        return label in self._models

    def __len__(self) -> int:
        return len(self._models)

    def labels(self) -> List[str]:
        """Labels with a trained model, in creation order."""
        return list(self._models)

    def get_model(self, label: str) -> LabelModel:
        """
        Strict model lookup.

        Raises:
            UnknownLabel: If the label has never been trained
        """
        try:
            return self._models[label]
        except KeyError:
            raise UnknownLabel(label) from None

    def _get_or_create_model(self, label: str) -> LabelModel:
        model = self._models.get(label)
        if model is not None:
            return model

        with self._registry_lock:
            model = self._models.get(label)
            if model is None:
                weights = (self._rng.random(self.feature_dim) - 0.5) * self.init_scale
                model = LabelModel(weights=weights, bias=0.0)
                self._models[label] = model
                logger.debug(f"Created label model for '{label}'")
        return model

    # ------------------------------------------------------------------
    # Training and prediction
    # ------------------------------------------------------------------

    def train(self, features, label: str, signal: Union[Signal, str]) -> None:
        """
        Apply one SGD step for label.

        affirm and introduce train toward 1.0, reject toward 0.0. Any other
        signal value is ignored.

        Args:
            features: Feature vector (any 1-D float sequence)
            label: Tag label
            signal: Feedback signal (Signal member or its string form)
        """
        parsed = Signal.coerce(signal)
        if parsed is None:
            logger.debug(f"Ignoring unrecognized signal {signal!r} for '{label}'")
            return

        x = np.asarray(features, dtype=np.float64).ravel()
        model = self._get_or_create_model(label)

        with model.lock:
            n = min(x.shape[0], model.weights.shape[0])
            prediction = _sigmoid(model.logit(x))
            error = prediction - parsed.target

            model.weights[:n] -= self.learning_rate * error * x[:n]
            model.bias -= self.learning_rate * error
            model.updates += 1

        logger.debug(
            f"Trained '{label}' on {parsed.value}: prediction={prediction:.4f} error={error:+.4f}"
        )

    def predict(self, features, label: str) -> Optional[float]:
        """
        Confidence that label applies to the content behind features.

        Returns:
            Confidence in [0, 1], or None if label has never been trained.
            None means "defer to the oracle", not zero confidence.
        """
        model = self._models.get(label)
        if model is None:
            return None

        x = np.asarray(features, dtype=np.float64).ravel()
        with model.lock:
            logit = model.logit(x)
        return clamp_confidence(_sigmoid(logit))

    def predict_all(
        self,
        features,
        candidate_labels: Iterable[str],
    ) -> List[Tuple[str, float]]:
        """
        Predict every trained label among candidate_labels.

        Returns:
            (label, confidence) pairs sorted descending by confidence. Labels
            without a model are omitted; ties keep first-seen order.
        """
        x = np.asarray(features, dtype=np.float64).ravel()
        predictions = []
        seen = set()

        for label in candidate_labels:
            if label in seen:
                continue
            seen.add(label)
            confidence = self.predict(x, label)
            if confidence is not None:
                predictions.append((label, confidence))

        predictions.sort(key=lambda item: item[1], reverse=True)
        return predictions

    def reset(self) -> None:
        """Drop all label models."""
        with self._registry_lock:
            count = len(self._models)
            self._models = {}
        logger.info(f"Classifier reset, dropped {count} label models")

    def model_stats(self) -> Dict[str, Any]:
        """Summary of the trained state."""
        return {
            'trained_labels': len(self._models),
            'feature_dim': self.feature_dim,
            'learning_rate': self.learning_rate,
            'labels': self.labels(),
        }

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def serialize(self) -> Dict[str, Any]:
        """
        Export the full parameter state as a JSON-compatible document.

        Weights are emitted as Python floats, which round-trip exactly
        through json.dumps / json.loads.
        """
        per_label_models = []
        for label, model in list(self._models.items()):
            with model.lock:
                per_label_models.append({
                    'label': label,
                    'weights': model.weights.tolist(),
                    'bias': float(model.bias),
                })

        return {
            'version': STATE_VERSION,
            'feature_dim': self.feature_dim,
            'learning_rate': self.learning_rate,
            'per_label_models': per_label_models,
        }

    @classmethod
    def deserialize(
        cls,
        blob: Union[Dict[str, Any], str, bytes],
        seed: Optional[int] = None,
    ) -> "AdaptiveClassifier":
        """
        Rebuild a classifier from serialize() output.

        Also accepts the older layout that stored ``weights`` and ``biases``
        as label-keyed objects with camelCase ``featureDim`` /
        ``learningRate``.

        Raises:
            CorruptState: If the document is malformed
        """
        try:
            if isinstance(blob, (bytes, bytearray)):
                blob = bytes(blob).decode('utf-8')
            if isinstance(blob, str):
                blob = json.loads(blob)
            if not isinstance(blob, dict):
                raise TypeError(f"expected an object, got {type(blob).__name__}")

            if 'per_label_models' in blob:
                feature_dim = blob['feature_dim']
                learning_rate = blob['learning_rate']
                entries = [
                    (entry['label'], entry['weights'], entry['bias'])
                    for entry in blob['per_label_models']
                ]
            else:
                feature_dim = blob.get('featureDim', DEFAULT_FEATURE_DIM)
                learning_rate = blob.get('learningRate', DEFAULT_LEARNING_RATE)
                biases = blob['biases']
                entries = [
                    (label, weights, biases[label])
                    for label, weights in blob['weights'].items()
                ]

            if isinstance(feature_dim, bool) or not isinstance(feature_dim, int):
                raise TypeError(f"feature_dim must be an integer, got {feature_dim!r}")

            classifier = cls(
                feature_dim=feature_dim,
                learning_rate=float(learning_rate),
                seed=seed,
            )

            for label, weights, bias in entries:
                if not isinstance(label, str):
                    raise TypeError(f"label must be a string, got {label!r}")
                vector = np.asarray(weights, dtype=np.float64)
                if vector.ndim != 1 or not np.all(np.isfinite(vector)):
                    raise ValueError(f"weights for '{label}' are not a finite vector")
                bias = float(bias)
                if not math.isfinite(bias):
                    raise ValueError(f"bias for '{label}' is not finite")
                classifier._models[label] = LabelModel(weights=vector.copy(), bias=bias)

        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptState(f"Malformed classifier state: {e}") from e

        logger.info(f"Loaded classifier state with {len(classifier)} label models")
        return classifier

    def save(self, path: Path) -> None:
        """
        Write serialize() output to a JSON file.

        Raises:
            StorageUnavailable: If the file cannot be written
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.serialize(), f)
        except OSError as e:
            logger.error(f"Failed to save classifier to {path}: {e}")
            raise StorageUnavailable(f"Cannot write classifier state to {path}") from e
        logger.info(f"Saved classifier ({len(self)} labels) to {path}")

    @classmethod
    def load(cls, path: Path, seed: Optional[int] = None) -> "AdaptiveClassifier":
        """
        Read a classifier saved with save().

        Raises:
            FileNotFoundError: If path does not exist
            StorageUnavailable: If the file exists but cannot be read
            CorruptState: If the file content is malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Classifier state not found: {path}")
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise StorageUnavailable(f"Cannot read classifier state from {path}") from e
        return cls.deserialize(raw, seed=seed)
