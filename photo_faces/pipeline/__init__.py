"""
Photo face pipeline stages.

Each stage is exposed as a function returning a progress stream:
- generate_thumbnails: square gallery thumbnails
- extract_all_faces: detection, crop normalisation and embeddings
- recognize_faces: name assignment against already named faces
"""

from .face_extractor import FaceExtractor, extract_all_faces
from .face_matcher import recognize_faces
from .progress import ProgressEvent, ProgressStage
from .thumbnails import generate_thumbnails

__all__ = [
    "FaceExtractor",
    "ProgressEvent",
    "ProgressStage",
    "extract_all_faces",
    "generate_thumbnails",
    "recognize_faces",
]
