"""
Configuration Module

Loads the YAML configuration, fills in defaults and sets up logging.
Components receive the whole configuration dictionary and read their own
section from it.
"""

import copy
import logging
import os
import sys
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/config.yaml'

DEFAULT_CONFIG: Dict[str, Any] = {
    'face_detection': {
        'method': 'mtcnn',
        'min_confidence': 0.9,
        'min_face_size': 40,
    },
    'alignment': {
        'target_size': 112,
        'eye_distance_ratio': 0.4,
        'eye_height_ratio': 1.0 / 3.0,
        'fallback_policy': 'padded',
        'padded_padding': 0.3,
        'simple_padding': 0.2,
    },
    'embedding': {
        'backend': 'torchscript',
        'model_path': 'models/edgeface_s.pt',
        'pretrained': 'vggface2',
        'input_size': 112,
        'embedding_size': 512,
    },
    'verification': {
        'similarity_threshold': 0.5,
    },
    'record_store': {
        'backend': 'pickle',
        'database_file': 'data/users.pkl',
        'chroma_path': 'data/chroma',
        'collection': 'user_embeddings',
    },
    'performance': {
        'use_gpu': False,
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': 'face_auth.log',
    },
}


def get_default_config() -> Dict[str, Any]:
    """Return a fresh copy of the default configuration."""
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `overrides` into a copy of `base`."""
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file on top of the defaults.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary (defaults if the file is missing or invalid)
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not os.path.exists(config_path):
        logger.warning(f"Config file {config_path} not found, using defaults")
        return get_default_config()

    try:
        with open(config_path, 'r') as f:
            user_config = yaml.safe_load(f) or {}
        logger.info(f"Configuration loaded from {config_path}")
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config: {e}")
        return get_default_config()

    if not isinstance(user_config, dict):
        logger.error(f"Config file {config_path} does not contain a mapping")
        return get_default_config()

    return merge_config(DEFAULT_CONFIG, user_config)


def setup_logging(config: Dict[str, Any]):
    """Configure root logging from the `logging` section."""
    log_config = config.get('logging', {})
    level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_config.get('file')
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=log_config.get('format', DEFAULT_CONFIG['logging']['format']),
        handlers=handlers,
    )
