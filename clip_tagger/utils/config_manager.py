"""
Configuration management for the tagging system.

Handles loading, updating, and persisting configuration including
classifier hyperparameters, blending thresholds, and storage settings.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Optional
import yaml

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "learning_config.yaml"

# Candidate vocabulary handed to the zero-shot oracle when the caller
# supplies none.
DEFAULT_LABELS = [
    'speech', 'music', 'singing', 'guitar', 'piano', 'drums', 'violin',
    'trumpet', 'saxophone', 'flute', 'classical music', 'rock music',
    'pop music', 'jazz', 'electronic music', 'ambient', 'nature sounds',
    'rain', 'wind', 'ocean waves', 'birds chirping', 'dog barking',
    'cat meowing', 'car engine', 'traffic', 'footsteps', 'door closing',
    'applause', 'laughter', 'crying', 'coughing', 'sneezing',
    'telephone ringing', 'alarm clock', 'typing', 'water running',
    'fire crackling', 'thunder', 'helicopter', 'airplane', 'train',
    'motorcycle', 'bell ringing', 'whistle', 'horn', 'siren',
    'explosion', 'gunshot', 'silence', 'noise', 'distortion',
]


class ConfigManager:
    """
    Manages system configuration including thresholds and learning parameters.

    Provides methods to load, update, and persist configuration. Every
    component takes its settings from an explicit ConfigManager instance
    (see the ``from_config`` constructors); there is no global config.
    """

    DEFAULT_CONFIG = {
        'classifier': {
            'feature_dim': 512,
            'learning_rate': 0.01,
            'init_scale': 0.01,
        },
        'blending': {
            'admission_threshold': 0.6,
            'output_size': 8,
            'oracle_top_k': 5,
            'custom_label_limit': 20,
        },
        'store': {
            'db_path': 'data/clip_tagger.db',
            'fingerprint_length': 16,
        },
        'oracle': {
            'default_labels': list(DEFAULT_LABELS),
        },
    }

    # Parameters that must stay inside [0, 1]
    UNIT_INTERVAL_PARAMS = {
        ('blending', 'admission_threshold'),
    }

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = config_path
        self.config: dict[str, Any] = {}

        if config_path and config_path.exists():
            self.load_config(config_path)
        else:
            logger.info("No config file found, using defaults")
            self.config = copy.deepcopy(self.DEFAULT_CONFIG)

    def load_config(self, path: Path) -> dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration dictionary

        Raises:
            FileNotFoundError: If config file does not exist
            yaml.YAMLError: If config file is invalid
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded_config = yaml.safe_load(f)

            if not loaded_config:
                logger.warning(f"Empty config file at {path}, using defaults")
                self.config = copy.deepcopy(self.DEFAULT_CONFIG)
            else:
                # Merge with defaults to ensure all keys exist
                self.config = self._merge_with_defaults(loaded_config)

            self.config_path = path
            logger.info(f"Loaded configuration from {path}")

            return self.config

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise

    def get_section(self, section: str) -> dict[str, Any]:
        """
        Get a copy of one configuration section.

        Raises:
            KeyError: If the section does not exist
        """
        if section not in self.config:
            raise KeyError(f"Configuration section '{section}' not found")
        return copy.deepcopy(self.config[section])

    def get_param(self, section: str, name: str) -> Any:
        """
        Get a parameter by section and name.

        Args:
            section: Section name (e.g., 'classifier', 'blending')
            name: Parameter name

        Returns:
            Parameter value

        Raises:
            KeyError: If parameter not found
        """
        if name not in self.config.get(section, {}):
            raise KeyError(f"Parameter '{section}.{name}' not found in configuration")

        return self.config[section][name]

    def update_param(self, section: str, name: str, value: Any) -> None:
        """
        Update a parameter value.

        Args:
            section: Section name
            name: Parameter name
            value: New value

        Raises:
            ValueError: If a threshold value is out of range
        """
        if (section, name) in self.UNIT_INTERVAL_PARAMS and not 0.0 <= value <= 1.0:
            raise ValueError(f"Parameter '{section}.{name}' must be between 0 and 1, got {value}")

        if section not in self.config:
            self.config[section] = {}

        old_value = self.config[section].get(name)
        self.config[section][name] = value

        logger.info(f"Updated '{section}.{name}': {old_value} -> {value}")

    def save_config(self, path: Optional[Path] = None) -> None:
        """
        Save configuration to YAML file.

        Args:
            path: Path to save to (uses self.config_path if not provided)

        Raises:
            ValueError: If no path provided and no config_path set
        """
        save_path = path or self.config_path

        if not save_path:
            raise ValueError("No path provided and no config_path set")

        try:
            save_path.parent.mkdir(parents=True, exist_ok=True)

            with open(save_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2
                )

            logger.info(f"Saved configuration to {save_path}")

        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            raise

    def get_all_config(self) -> dict[str, Any]:
        """Get a deep copy of the complete configuration dictionary."""
        return copy.deepcopy(self.config)

    def reset_to_defaults(self) -> None:
        """Reset configuration to default values."""
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)
        logger.info("Configuration reset to defaults")

    def _merge_with_defaults(self, loaded_config: dict) -> dict:
        """Merge loaded config with defaults to ensure all keys exist."""
        merged = copy.deepcopy(self.DEFAULT_CONFIG)

        for section, values in loaded_config.items():
            if section in merged and isinstance(values, dict):
                merged[section].update(values)
            else:
                merged[section] = values

        return merged

    def validate_config(self) -> list[str]:
        """
        Validate the current configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        classifier = self.config.get('classifier', {})
        feature_dim = classifier.get('feature_dim')
        if not isinstance(feature_dim, int) or isinstance(feature_dim, bool) or feature_dim < 3:
            errors.append("feature_dim must be an integer >= 3")

        learning_rate = classifier.get('learning_rate')
        if not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
            errors.append("learning_rate must be a positive number")

        blending = self.config.get('blending', {})
        threshold = blending.get('admission_threshold')
        if not isinstance(threshold, (int, float)):
            errors.append(f"admission_threshold must be numeric, got {type(threshold)}")
        elif not 0.0 <= threshold <= 1.0:
            errors.append(f"admission_threshold must be between 0 and 1, got {threshold}")

        for name in ('output_size', 'oracle_top_k', 'custom_label_limit'):
            value = blending.get(name)
            if not isinstance(value, int) or value < 1:
                errors.append(f"{name} must be a positive integer")

        store = self.config.get('store', {})
        length = store.get('fingerprint_length')
        if not isinstance(length, int) or not 8 <= length <= 64:
            errors.append("fingerprint_length must be an integer between 8 and 64")

        labels = self.config.get('oracle', {}).get('default_labels')
        if not labels or not all(isinstance(label, str) for label in labels):
            errors.append("default_labels must be a non-empty list of strings")

        return errors
