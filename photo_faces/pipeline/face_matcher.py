"""
Face matching: assign names to unnamed faces.

Named, non-ignored faces across the given folders form a registry with one
embedding per name. Every unnamed face is compared with the registry names
it has not been compared with before and takes the closest name if the
distance is within the threshold. Compared names are remembered in the
record's ``checked_names``, so later runs only pay for new names.
"""

import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..common.face_cache import FaceCacheStore, FaceRecord
from .config import MATCHING_CONFIG
from .models import FaceRecognizer, ModelLoadError, embedding_from_bytes
from .onnx_models import SFaceRecognizer
from .progress import ProgressChannel, ProgressEvent, ProgressStage, progress_stream

logger = logging.getLogger(__name__)

Registry = List[Tuple[str, np.ndarray]]


def build_named_registry(
    parent_folders: Sequence[Path], store: Optional[FaceCacheStore] = None
) -> Registry:
    """
    Collect one embedding per named person.

    Returns:
        ``(name, embedding)`` pairs sorted by name; when several faces
        share a name the first one found is kept
    """
    store = store or FaceCacheStore()

    named = []
    for folder in parent_folders:
        for record in store.get(folder).records():
            if record.is_ignored or record.name_of_person is None:
                continue
            try:
                embedding = embedding_from_bytes(record.embedding_bytes)
            except ValueError as e:
                logger.warning(f"Skipping corrupt embedding of {record.thumbnail_filename}: {e}")
                continue
            named.append((record.name_of_person, embedding))

    named.sort(key=lambda item: item[0])

    registry: Registry = []
    for name, embedding in named:
        if registry and registry[-1][0] == name:
            continue
        registry.append((name, embedding))
    return registry


def match_face_to_person(
    unknown_face: FaceRecord,
    registry: Registry,
    recognizer: FaceRecognizer,
    threshold: float = MATCHING_CONFIG["L2_SIMILARITY_THRESHOLD"],
) -> Optional[str]:
    """
    Find the registry name closest to an unnamed face.

    Names already in ``unknown_face.checked_names`` are skipped; every name
    compared here is appended to it, whatever the outcome.

    Returns:
        The closest name if its distance is at most ``threshold``
    """
    candidates = [
        (name, embedding)
        for name, embedding in registry
        if name not in unknown_face.checked_names
    ]
    if not candidates:
        return None

    unknown_embedding = embedding_from_bytes(unknown_face.embedding_bytes)

    best_name = None
    best_distance = math.inf
    checked_names = []
    for person_name, named_embedding in candidates:
        try:
            distance = recognizer.compare(named_embedding, unknown_embedding)
        except (cv2.error, ValueError) as e:
            logger.warning(f"Could not compare {unknown_face.thumbnail_filename} with {person_name}: {e}")
            distance = threshold + 100.0
        logger.debug(f"{person_name} score is {distance}")
        checked_names.append(person_name)
        if distance < best_distance:
            best_name, best_distance = person_name, distance

    unknown_face.checked_names.extend(checked_names)

    if best_name is not None and best_distance <= threshold:
        return best_name
    return None


def _load_recognizer(config: Dict[str, Any]) -> FaceRecognizer:
    try:
        return SFaceRecognizer(config["RECOGNIZER_MODEL_PATH"])
    except Exception as e:
        raise ModelLoadError(f"Face recognizer failed to load: {e}") from e


def recognize_faces(
    parent_folders: Sequence[Path],
    recognizer: Optional[FaceRecognizer] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Iterator[ProgressEvent]:
    """
    Match unnamed faces in the given folders against the named ones.

    Each folder's cache is saved once all its faces are processed. On
    cancellation the folder in progress is saved before stopping, keeping
    the comparisons already made.

    Args:
        parent_folders: Photo folders whose caches take part
        recognizer: Model used to compare embeddings; loaded when omitted
        config: Overrides for ``MATCHING_CONFIG``

    Returns:
        Progress stream for the run
    """
    parent_folders = [Path(f) for f in parent_folders]
    config = {**MATCHING_CONFIG, **(config or {})}
    threshold = config["L2_SIMILARITY_THRESHOLD"]
    report_every = config["PROGRESS_EVERY"]

    def work(channel: ProgressChannel) -> None:
        if not channel.send(0.0):
            return

        face_recognizer = recognizer if recognizer is not None else _load_recognizer(config)
        store = FaceCacheStore()
        registry = build_named_registry(parent_folders, store)
        logger.info(f"Matching against {len(registry)} named people")

        total = sum(len(list(store.get(folder).records())) for folder in parent_folders)
        processed = 0
        for folder in parent_folders:
            cache = store.get(folder)
            changed = False
            for record in cache.records():
                if not record.is_ignored and record.name_of_person is None:
                    changed = True
                    try:
                        matched_name = match_face_to_person(record, registry, face_recognizer, threshold)
                    except ValueError as e:
                        logger.warning(f"Skipping {record.thumbnail_filename}: {e}")
                        matched_name = None
                    if matched_name is not None:
                        logger.info(f"Recognised {record.thumbnail_filename} as {matched_name}")
                        record.name_of_person = matched_name

                processed += 1
                if processed % report_every == 0 and processed < total:
                    if not channel.send(processed / total):
                        if changed:
                            cache.save()
                        logger.info("Face recognition cancelled")
                        return

            if changed:
                cache.save()

        channel.send(1.0)

    return progress_stream(ProgressStage.FACE_RECOGNITION, work)
