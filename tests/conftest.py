import copy

import numpy as np
import pytest
from PIL import Image

from photo_faces.common.face_cache import FaceRecord
from photo_faces.common.geometry import DetectedFace, Rect
from photo_faces.pipeline.models import embedding_to_bytes


class FakeDetector:
    """Detector returning a fixed list of faces, whatever the image."""

    def __init__(self, faces=None, error=None):
        self.faces = faces or []
        self.error = error
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.faces)


class FakeRecognizer:
    """
    Recognizer whose embedding is the mean colour of the face crop.

    ``compare`` is a plain Euclidean distance and counts its calls.
    """

    def __init__(self, fail_on_call=None):
        self.fail_on_call = fail_on_call
        self.extract_calls = 0
        self.compare_calls = 0
        self.face_rows = []

    def extract_embedding(self, face_image, face_row):
        self.extract_calls += 1
        self.face_rows.append(np.asarray(face_row))
        if self.fail_on_call is not None and self.extract_calls == self.fail_on_call:
            raise ValueError("alignment failed")
        return face_image.reshape(-1, 3).mean(axis=0).astype(np.float32) / 255.0

    def compare(self, embedding_a, embedding_b):
        self.compare_calls += 1
        return float(
            np.linalg.norm(
                np.asarray(embedding_a, dtype=np.float64) - np.asarray(embedding_b, dtype=np.float64)
            )
        )


def make_face(x, y, width, height, confidence=0.99, landmarks=True):
    """Face candidate with plausible landmarks inside the rectangle."""
    points = None
    if landmarks:
        points = [
            (x + width * 0.3, y + height * 0.4),  # right eye
            (x + width * 0.7, y + height * 0.4),  # left eye
            (x + width * 0.5, y + height * 0.6),  # nose
            (x + width * 0.35, y + height * 0.8),  # right mouth corner
            (x + width * 0.65, y + height * 0.8),  # left mouth corner
        ]
    return DetectedFace(rect=Rect(x, y, width, height), confidence=confidence, landmarks=points)


def make_record(filename, index=0, name=None, embedding=(0.0, 0.0, 0.0), ignored=False, checked=None):
    return FaceRecord(
        original_filename=filename,
        thumbnail_filename=f"{filename.rsplit('.', 1)[0]}_thumbnail_{index}.png",
        embedding_bytes=embedding_to_bytes(np.asarray(embedding, dtype=np.float32)),
        name_of_person=name,
        is_ignored=ignored,
        checked_names=list(checked or []),
    )


def write_image(path, width=200, height=100, color=None):
    """Write a random-noise (or solid colour) RGB image."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if color is None:
        pixels = np.random.randint(0, 255, (height, width, 3), dtype=np.uint8)
    else:
        pixels = np.zeros((height, width, 3), dtype=np.uint8)
        pixels[:, :] = color
    Image.fromarray(pixels).save(path)
    return path


@pytest.fixture
def face_factory():
    return make_face


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def image_writer():
    return write_image


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer()


@pytest.fixture
def photo_folder(tmp_path):
    """A folder with three 200x100 images."""
    folder = tmp_path / "photos"
    for name in ("a.png", "b.png", "c.png"):
        write_image(folder / name)
    return folder


@pytest.fixture
def detector_factory():
    return FakeDetector


@pytest.fixture
def recognizer_factory():
    return FakeRecognizer
