"""
Per-folder sidecar cache of detected faces.

Every photo folder gets a ``.face_data/face_data.json`` file holding a JSON
array of ``[original_filename, face_record_or_null]`` pairs. A ``null``
second element records that the image was processed and no faces were
found, which is different from the image being absent (never processed).

The file is always read and rewritten in full. Only one pipeline stage may
write a given folder's cache at a time.
"""

import datetime
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .constants import FACE_DATA_FILE_NAME, FACE_DATA_FOLDER_NAME, UNNAMED_STRING

logger = logging.getLogger(__name__)


@dataclass
class FaceRecord:
    """One physical face found in one source image."""

    original_filename: str
    thumbnail_filename: str
    embedding_bytes: bytes
    name_of_person: Optional[str] = None
    is_ignored: bool = False
    checked_names: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "original_filename": self.original_filename,
            "name_of_person": self.name_of_person,
            "is_ignored": self.is_ignored,
            "thumbnail_filename": self.thumbnail_filename,
            "embedding_bytes": list(self.embedding_bytes),
            "checked_names": list(self.checked_names),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "FaceRecord":
        name = data.get("name_of_person")
        if name is not None and not isinstance(name, str):
            raise ValueError(f"Invalid name_of_person: {name!r}")
        return cls(
            original_filename=str(data["original_filename"]),
            thumbnail_filename=str(data["thumbnail_filename"]),
            embedding_bytes=bytes(data["embedding_bytes"]),
            name_of_person=name,
            is_ignored=bool(data.get("is_ignored", False)),
            checked_names=[str(n) for n in data.get("checked_names") or []],
        )


CacheEntry = Tuple[str, Optional[FaceRecord]]


def _parse_entries(raw: Any) -> List[CacheEntry]:
    if not isinstance(raw, list):
        raise ValueError("Face cache must be a JSON array")

    entries: List[CacheEntry] = []
    for item in raw:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise ValueError(f"Malformed face cache entry: {item!r}")
        filename, record = item
        if not isinstance(filename, str):
            raise ValueError(f"Malformed face cache filename: {filename!r}")
        if record is None:
            entries.append((filename, None))
        elif isinstance(record, dict):
            entries.append((filename, FaceRecord.from_json(record)))
        else:
            raise ValueError(f"Malformed face record: {record!r}")
    return entries


class FaceCache:
    """The face cache of a single photo folder."""

    def __init__(self, folder: Path, entries: Optional[List[CacheEntry]] = None):
        self.folder = Path(folder)
        self.entries: List[CacheEntry] = list(entries or [])

    @property
    def data_folder(self) -> Path:
        """Reserved folder holding the cache file and face thumbnails."""
        return self.folder / FACE_DATA_FOLDER_NAME

    @property
    def path(self) -> Path:
        return self.data_folder / FACE_DATA_FILE_NAME

    @classmethod
    def load(cls, folder: Path) -> "FaceCache":
        """
        Read a folder's cache from disk.

        A missing file gives an empty cache. A file that cannot be parsed is
        copied aside (``face_data.json.corrupt-<timestamp>``) and the cache
        starts empty, so the next save does not destroy the only copy.
        """
        cache = cls(folder)
        if not cache.path.exists():
            return cache

        try:
            with open(cache.path, encoding="utf-8") as f:
                cache.entries = _parse_entries(json.load(f))
        except (ValueError, TypeError, KeyError) as e:
            backup_path = cache._backup_corrupt_file()
            logger.warning(
                f"Unreadable face cache {cache.path} ({e}); "
                f"backed up to {backup_path} and starting empty"
            )
            cache.entries = []
        return cache

    def _backup_corrupt_file(self) -> Path:
        timestamp = datetime.datetime.now(datetime.timezone.utc).strftime(
            "%Y%m%dT%H%M%S%fZ"
        )
        backup_path = self.path.with_name(f"{FACE_DATA_FILE_NAME}.corrupt-{timestamp}")
        shutil.copy2(self.path, backup_path)
        return backup_path

    def save(self) -> None:
        """Rewrite the whole cache file."""
        self.data_folder.mkdir(parents=True, exist_ok=True)
        serialised = [
            [filename, record.to_json() if record is not None else None]
            for filename, record in self.entries
        ]
        tmp_path = self.path.with_name(FACE_DATA_FILE_NAME + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(serialised, f)
        os.replace(tmp_path, self.path)

    def contains(self, filename: str) -> bool:
        """Whether the image was already processed (faces or sentinel)."""
        return any(entry_name == filename for entry_name, _ in self.entries)

    def add_image_result(self, filename: str, records: Sequence[FaceRecord]) -> None:
        """Append the faces found in an image, or a sentinel if there were none."""
        if not records:
            self.entries.append((filename, None))
            return
        for record in records:
            self.entries.append((filename, record))

    def records(self) -> Iterator[FaceRecord]:
        """All face records, skipping sentinels."""
        for _, record in self.entries:
            if record is not None:
                yield record

    def faces_for(self, filename: str) -> List[FaceRecord]:
        return [
            record
            for entry_name, record in self.entries
            if entry_name == filename and record is not None
        ]

    def replace_record(self, filename: str, new_record: FaceRecord) -> bool:
        """
        Replace the record of ``filename`` sharing ``new_record``'s thumbnail.

        Returns:
            True if a record was replaced.
        """
        for index, (entry_name, record) in enumerate(self.entries):
            if (
                entry_name == filename
                and record is not None
                and record.thumbnail_filename == new_record.thumbnail_filename
            ):
                self.entries[index] = (entry_name, new_record)
                return True
        return False


class FaceCacheStore:
    """
    Face caches touched during one pipeline run, keyed by folder.

    Caches are loaded lazily on first access and live only as long as the
    store; the files on disk stay the system of record.
    """

    def __init__(self):
        self._caches: Dict[Path, FaceCache] = {}

    def get(self, folder: Path) -> FaceCache:
        folder = Path(folder)
        if folder not in self._caches:
            self._caches[folder] = FaceCache.load(folder)
        return self._caches[folder]

    def for_image(self, image_path: Path) -> FaceCache:
        return self.get(Path(image_path).parent)


# --- Gallery queries ---


def get_detected_faces_for_image(image_path: Path) -> List[FaceRecord]:
    """Face records stored for a single image."""
    image_path = Path(image_path)
    return FaceCache.load(image_path.parent).faces_for(image_path.name)


def update_face_record(image_path: Path, new_record: FaceRecord) -> bool:
    """
    Persist a user edit (name, ignore flag) to one face record.

    The record is identified by its source image and thumbnail filename,
    so the thumbnail itself can't be changed this way.
    """
    image_path = Path(image_path)
    cache = FaceCache.load(image_path.parent)
    if not cache.replace_record(image_path.name, new_record):
        return False
    cache.save()
    return True


def get_named_people_for_display(parent_folders: Sequence[Path]) -> List[Tuple[str, Path]]:
    """
    One ``(name, thumbnail path)`` pair per person, sorted by name.

    Ignored faces are left out; unnamed faces are grouped under
    ``UNNAMED_STRING``.
    """
    people: List[Tuple[str, Path]] = []
    for folder in parent_folders:
        cache = FaceCache.load(folder)
        for record in cache.records():
            if record.is_ignored:
                continue
            name = record.name_of_person if record.name_of_person is not None else UNNAMED_STRING
            people.append((name, cache.data_folder / record.thumbnail_filename))

    people.sort(key=lambda item: item[0])
    deduplicated: List[Tuple[str, Path]] = []
    for name, thumbnail_path in people:
        if deduplicated and deduplicated[-1][0] == name:
            continue
        deduplicated.append((name, thumbnail_path))
    return deduplicated


def get_all_photos_by_name(target_name: str, parent_folders: Sequence[Path]) -> List[Path]:
    """Sorted source images containing the named person."""
    photos = set()
    for folder in parent_folders:
        cache = FaceCache.load(folder)
        for record in cache.records():
            if record.is_ignored:
                continue
            if record.name_of_person == target_name or (
                record.name_of_person is None and target_name == UNNAMED_STRING
            ):
                photos.add(Path(folder) / record.original_filename)
    return sorted(photos)
