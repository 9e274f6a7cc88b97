"""
Central configuration file for the photo face pipeline.

The thresholds below are empirical; they can be overridden per run from a
YAML file via :func:`load_pipeline_config`.
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..common.constants import FACE_RECOGNIZER_PATH, ONNX_FACE_DETECTOR_PATH

# --- Thumbnail Generation ---
THUMBNAIL_CONFIG = {
    "THUMBNAIL_SIZE": 256,
    "PROGRESS_EVERY": 10,
}

# --- Face Extraction ---
EXTRACTION_CONFIG = {
    "DETECTOR_MODEL_PATH": str(ONNX_FACE_DETECTOR_PATH),
    "RECOGNIZER_MODEL_PATH": str(FACE_RECOGNIZER_PATH),
    # One detector per face scale: big/near, medium, small/far
    "DETECTOR_TARGET_SIZES": [160, 640, 1280],
    "SCORE_THRESHOLD": 0.95,
    "NMS_IOU_THRESHOLD": 0.3,
    "CAPTURE_SCALE": 1.6,  # Thumbnail square side relative to the face's short side
    "FACE_THUMBNAIL_SIZE": 200,
    "INTRA_THREADS": 5,
    "PROVIDERS": ["CPUExecutionProvider"],
    "PROGRESS_EVERY": 5,
}

# --- Face Matching ---
MATCHING_CONFIG = {
    "RECOGNIZER_MODEL_PATH": str(FACE_RECOGNIZER_PATH),
    "L2_SIMILARITY_THRESHOLD": 1.128,  # SFace L2 distance, lower is more similar
    "PROGRESS_EVERY": 5,
}

_SECTIONS = {
    "thumbnails": THUMBNAIL_CONFIG,
    "extraction": EXTRACTION_CONFIG,
    "matching": MATCHING_CONFIG,
}


def load_pipeline_config(config_path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """
    Build the configuration for a pipeline run.

    Args:
        config_path: Optional YAML file with any of the sections
            ``thumbnails``, ``extraction`` and ``matching``, each mapping
            upper-case keys of the defaults above to new values.

    Returns:
        Dict with the three sections; the module-level defaults are copied,
        never modified.
    """
    config = {name: copy.deepcopy(defaults) for name, defaults in _SECTIONS.items()}
    if config_path is None:
        return config

    with open(config_path) as f:
        overrides = yaml.safe_load(f) or {}

    if not isinstance(overrides, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    for section, values in overrides.items():
        if section not in config:
            raise ValueError(f"Unknown config section '{section}' in {config_path}")
        for key, value in (values or {}).items():
            key = str(key).upper()
            if key not in config[section]:
                raise ValueError(f"Unknown config key '{key}' in section '{section}'")
            config[section][key] = value

    return config
