"""
Base model protocols for the photo face pipeline.

Defines interfaces for face detection and face recognition models, and the
exceptions raised by the pipeline stages.
"""

from typing import List, Protocol

import numpy as np

from ..common.geometry import DetectedFace

EMBEDDING_DTYPE = np.float32


class PhotoFacesError(Exception):
    """Base class for pipeline errors."""


class ModelLoadError(PhotoFacesError):
    """A detection or recognition model could not be initialised."""


class PipelineError(PhotoFacesError):
    """A pipeline run stopped with a fatal error."""


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """
        Detect faces in an image.

        Args:
            image: RGB image as numpy array

        Returns:
            Candidates in source-image coordinates, with confidence and,
            where the model provides them, five landmark points
        """
        ...


class FaceRecognizer(Protocol):
    """Protocol for face recognition (embedding) models."""

    def extract_embedding(self, face_image: np.ndarray, face_row: np.ndarray) -> np.ndarray:
        """
        Align a face crop and compute its identity embedding.

        Args:
            face_image: BGR crop of the face rectangle
            face_row: ``[0, 0, w, h, 5 x (x, y) landmarks, confidence]``
                relative to the crop

        Returns:
            Embedding vector as numpy array
        """
        ...

    def compare(self, embedding_a: np.ndarray, embedding_b: np.ndarray) -> float:
        """L2 distance between two embeddings; lower is more similar."""
        ...


def embedding_to_bytes(embedding: np.ndarray) -> bytes:
    return np.asarray(embedding, dtype=EMBEDDING_DTYPE).ravel().tobytes()


def embedding_from_bytes(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype=EMBEDDING_DTYPE).copy()
