#!/usr/bin/env python
"""
Shared constants for the photo_faces project.

This file contains the reserved folder names and model paths that are used
across the pipeline stages and scripts to ensure consistency.
"""

from pathlib import Path

# --- Core Paths ---
PROJECT_ROOT = Path(__file__).resolve().parents[2]
MODELS_DIR = PROJECT_ROOT / "models"

# --- ONNX / OpenCV Models ---
ONNX_DIR = MODELS_DIR / "onnx"
ONNX_FACE_DETECTOR_PATH = ONNX_DIR / "face_detector.onnx"
FACE_RECOGNIZER_PATH = ONNX_DIR / "face_recognition_sface_2021dec.onnx"

# --- Reserved Folders (created next to the user's photos) ---
THUMBNAIL_FOLDER_NAME = ".thumbnails"
FACE_DATA_FOLDER_NAME = ".face_data"
FACE_DATA_FILE_NAME = "face_data.json"
RESERVED_FOLDER_NAMES = frozenset({THUMBNAIL_FOLDER_NAME, FACE_DATA_FOLDER_NAME})

# --- Gallery ---
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}
UNNAMED_STRING = "Unnamed"
