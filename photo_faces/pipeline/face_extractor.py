"""
Face extraction: multi-scale detection, crop normalisation and embedding.

A :class:`FaceExtractor` runs an ordered ensemble of detectors over the
full image (one per face scale), merges their candidates with
non-maximum suppression and turns every surviving face into a
:class:`~photo_faces.common.face_cache.FaceRecord` with a square preview
thumbnail and an identity embedding.

:func:`extract_all_faces` drives the extractor over a list of images,
checkpointing the folder's sidecar cache after every image.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from ..common.constants import FACE_DATA_FOLDER_NAME
from ..common.face_cache import FaceCacheStore, FaceRecord
from ..common.geometry import (
    DetectedFace,
    non_maximum_suppression,
    sort_by_position,
    square_capture_region,
)
from .config import EXTRACTION_CONFIG
from .models import FaceDetector, FaceRecognizer, ModelLoadError, embedding_to_bytes
from .onnx_models import NUM_LANDMARKS, ONNXFaceDetector, SFaceRecognizer
from .progress import ProgressChannel, ProgressEvent, ProgressStage, progress_stream

logger = logging.getLogger(__name__)


def _has_landmarks(face: DetectedFace) -> bool:
    return bool(face.landmarks) and len(face.landmarks) >= NUM_LANDMARKS


class FaceExtractor:
    """Detects, crops and embeds the faces of single images."""

    def __init__(
        self,
        detectors: Sequence[FaceDetector],
        recognizer: FaceRecognizer,
        config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the extractor.

        Args:
            detectors: Detector ensemble, run in order over every image
            recognizer: Model computing identity embeddings
            config: Overrides for ``EXTRACTION_CONFIG``
        """
        self.detectors = tuple(detectors)
        self.recognizer = recognizer
        self.config = {**EXTRACTION_CONFIG, **(config or {})}

    @classmethod
    def build(cls, config: Optional[Dict[str, Any]] = None) -> "FaceExtractor":
        """
        Load the ONNX detector ensemble and the recognition model.

        Raises:
            ModelLoadError: if any model fails to load; the ensemble is
                never run with missing members
        """
        config = {**EXTRACTION_CONFIG, **(config or {})}

        detectors = []
        for target_size in config["DETECTOR_TARGET_SIZES"]:
            try:
                detectors.append(
                    ONNXFaceDetector(
                        config["DETECTOR_MODEL_PATH"],
                        target_size=target_size,
                        score_threshold=config["SCORE_THRESHOLD"],
                        providers=config["PROVIDERS"],
                        intra_threads=config["INTRA_THREADS"],
                    )
                )
            except Exception as e:
                raise ModelLoadError(
                    f"Face detector for target size {target_size} failed to load: {e}"
                ) from e

        try:
            recognizer = SFaceRecognizer(config["RECOGNIZER_MODEL_PATH"])
        except Exception as e:
            raise ModelLoadError(f"Face recognizer failed to load: {e}") from e

        return cls(detectors, recognizer, config)

    def detect_faces(self, image: np.ndarray) -> List[DetectedFace]:
        """
        Run the ensemble and de-duplicate its candidates.

        Returns:
            Landmark-bearing faces sorted by x, then y
        """
        return [face for _, face in self._indexed_faces(image)]

    def _indexed_faces(self, image: np.ndarray) -> List[Tuple[int, DetectedFace]]:
        # Indices count every surviving candidate, so faces without landmarks
        # leave gaps in the thumbnail numbering
        candidates: List[DetectedFace] = []
        for index, detector in enumerate(self.detectors):
            try:
                candidates.extend(detector.detect(image))
            except Exception as e:
                logger.warning(f"Face detector {index} failed: {e}")

        faces = sort_by_position(
            non_maximum_suppression(candidates, self.config["NMS_IOU_THRESHOLD"])
        )

        with_landmarks = [(index, face) for index, face in enumerate(faces) if _has_landmarks(face)]
        if len(with_landmarks) < len(faces):
            logger.debug(f"Dropped {len(faces) - len(with_landmarks)} faces without landmarks")

        return with_landmarks

    def extract_faces(self, picture_path: Path) -> List[FaceRecord]:
        """
        Find the faces in one image.

        Writes a preview thumbnail per face into the folder's face data
        folder. Faces whose embedding can't be computed are left out.

        Returns:
            New, unnamed records; empty if the image can't be decoded
        """
        picture_path = Path(picture_path)
        try:
            with Image.open(picture_path) as img:
                original_image = img.convert("RGB")
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            logger.warning(f"Could not open {picture_path}: {e}")
            return []

        image = np.asarray(original_image)
        faces = self._indexed_faces(image)
        logger.info(f"Picture {picture_path} has {len(faces)} faces.")
        if not faces:
            return []

        face_data_folder = picture_path.parent / FACE_DATA_FOLDER_NAME
        face_data_folder.mkdir(parents=True, exist_ok=True)

        records = []
        for index, face in faces:
            embedding = self._compute_embedding(image, face)
            if embedding is None:
                logger.warning(f"Could not compute embedding for face {index} of {picture_path}")
                continue

            thumbnail_filename = f"{picture_path.stem}_thumbnail_{index}.png"
            box = self._thumbnail_box(face, original_image)
            self._save_face_thumbnail(original_image, box, face_data_folder / thumbnail_filename)

            records.append(
                FaceRecord(
                    original_filename=picture_path.name,
                    thumbnail_filename=thumbnail_filename,
                    embedding_bytes=embedding_to_bytes(embedding),
                )
            )

        return records

    def _compute_embedding(self, image: np.ndarray, face: DetectedFace) -> Optional[np.ndarray]:
        image_height, image_width = image.shape[:2]
        bounds = face.rect.clamped(image_width, image_height)
        if bounds is None:
            return None
        x, y, w, h = bounds

        face_crop = cv2.cvtColor(np.ascontiguousarray(image[y : y + h, x : x + w]), cv2.COLOR_RGB2BGR)

        # Landmarks relative to the face crop, not the source image
        relative_landmarks = [
            coordinate
            for landmark_x, landmark_y in face.landmarks[:NUM_LANDMARKS]
            for coordinate in (landmark_x - x, landmark_y - y)
        ]
        face_row = np.array(
            [0.0, 0.0, w, h, *relative_landmarks, face.confidence], dtype=np.float32
        )

        try:
            embedding = self.recognizer.extract_embedding(face_crop, face_row)
        except (cv2.error, ValueError, RuntimeError) as e:
            logger.debug(f"Embedding extraction failed: {e}")
            return None

        if embedding is None or np.asarray(embedding).size == 0:
            return None
        return np.asarray(embedding, dtype=np.float32)

    def _thumbnail_box(self, face: DetectedFace, original_image: Image.Image) -> Tuple[int, int, int, int]:
        region = square_capture_region(
            face, original_image.width, original_image.height, self.config["CAPTURE_SCALE"]
        )
        if region is not None:
            x, y, side = region
            return x, y, x + side, y + side

        # Eye midpoint on the image edge: fall back to the face rectangle.
        # Never None here, the embedding already needed the clamped rectangle.
        x, y, w, h = face.rect.clamped(original_image.width, original_image.height)
        return x, y, x + w, y + h

    def _save_face_thumbnail(
        self, original_image: Image.Image, box: Tuple[int, int, int, int], thumbnail_path: Path
    ) -> None:
        thumbnail = original_image.crop(box)
        size = self.config["FACE_THUMBNAIL_SIZE"]
        thumbnail.thumbnail((size, size))
        try:
            thumbnail.save(thumbnail_path)
        except OSError as e:
            logger.warning(f"Could not save face thumbnail {thumbnail_path}: {e}")


def extract_all_faces(
    image_paths: Sequence[Path],
    extractor: Optional[FaceExtractor] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Iterator[ProgressEvent]:
    """
    Extract faces from every image not yet in its folder's cache.

    The folder's cache file is rewritten after each processed image, so an
    interrupted run only loses the image in flight. Images already present
    in the cache, with faces or with the no-face sentinel, are skipped.

    Args:
        image_paths: Images to process, in order
        extractor: Ready extractor; built from ``config`` when omitted
        config: Overrides for ``EXTRACTION_CONFIG``

    Returns:
        Progress stream for the run
    """
    image_paths = [Path(p) for p in image_paths]
    config = {**EXTRACTION_CONFIG, **(config or {})}
    report_every = config["PROGRESS_EVERY"]

    def work(channel: ProgressChannel) -> None:
        if not channel.send(0.0):
            return

        face_extractor = extractor if extractor is not None else FaceExtractor.build(config)
        store = FaceCacheStore()

        total = len(image_paths)
        for processed, image_path in enumerate(image_paths, start=1):
            cache = store.for_image(image_path)
            if not cache.contains(image_path.name):
                records = face_extractor.extract_faces(image_path)
                cache.add_image_result(image_path.name, records)
                cache.save()

            if processed % report_every == 0 and processed < total:
                if not channel.send(processed / total):
                    logger.info("Face extraction cancelled")
                    return

        channel.send(1.0)

    return progress_stream(ProgressStage.FACE_EXTRACTION, work)
