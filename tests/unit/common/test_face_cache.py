import json

import numpy as np
import pytest

from photo_faces.common.constants import FACE_DATA_FILE_NAME, FACE_DATA_FOLDER_NAME, UNNAMED_STRING
from photo_faces.common.face_cache import (
    FaceCache,
    FaceCacheStore,
    FaceRecord,
    get_all_photos_by_name,
    get_detected_faces_for_image,
    get_named_people_for_display,
    update_face_record,
)


@pytest.fixture
def cache_with_faces(tmp_path, record_factory):
    """A saved cache with two faces in a.jpg and a no-face sentinel for b.jpg."""
    cache = FaceCache(tmp_path)
    cache.add_image_result("a.jpg", [record_factory("a.jpg", 0), record_factory("a.jpg", 1, name="alice")])
    cache.add_image_result("b.jpg", [])
    cache.save()
    return cache


def test_save_writes_sidecar_json(cache_with_faces, tmp_path):
    path = tmp_path / FACE_DATA_FOLDER_NAME / FACE_DATA_FILE_NAME
    assert path.exists()

    with open(path, encoding="utf-8") as f:
        raw = json.load(f)

    assert [entry[0] for entry in raw] == ["a.jpg", "a.jpg", "b.jpg"]
    assert raw[2][1] is None

    first = raw[0][1]
    assert first["original_filename"] == "a.jpg"
    assert first["name_of_person"] is None
    assert first["is_ignored"] is False
    assert first["thumbnail_filename"] == "a_thumbnail_0.png"
    assert first["checked_names"] == []
    # Embedding bytes are stored as an array of byte values
    assert len(first["embedding_bytes"]) == 3 * 4
    assert all(isinstance(b, int) and 0 <= b <= 255 for b in first["embedding_bytes"])


def test_load_restores_entries(cache_with_faces, tmp_path):
    loaded = FaceCache.load(tmp_path)

    assert len(loaded.entries) == 3
    assert loaded.entries[2] == ("b.jpg", None)
    assert loaded.entries[1][1] == cache_with_faces.entries[1][1]
    assert [r.name_of_person for r in loaded.records()] == [None, "alice"]


def test_contains_covers_faces_and_sentinels(cache_with_faces):
    assert cache_with_faces.contains("a.jpg")
    assert cache_with_faces.contains("b.jpg")
    assert not cache_with_faces.contains("c.jpg")


def test_missing_file_is_empty_cache(tmp_path):
    cache = FaceCache.load(tmp_path)
    assert cache.entries == []
    assert not cache.path.exists()


@pytest.mark.parametrize("content", ["{not json", '{"a.jpg": null}', '[["a.jpg", 42]]'])
def test_corrupt_file_is_backed_up_and_treated_as_empty(tmp_path, content):
    data_folder = tmp_path / FACE_DATA_FOLDER_NAME
    data_folder.mkdir()
    (data_folder / FACE_DATA_FILE_NAME).write_text(content, encoding="utf-8")

    cache = FaceCache.load(tmp_path)

    assert cache.entries == []
    backups = list(data_folder.glob(f"{FACE_DATA_FILE_NAME}.corrupt-*"))
    assert len(backups) == 1
    assert backups[0].read_text(encoding="utf-8") == content


def test_null_checked_names_keeps_the_cache(tmp_path, record_factory):
    entry = record_factory("a.jpg").to_json()
    entry["checked_names"] = None
    data_folder = tmp_path / FACE_DATA_FOLDER_NAME
    data_folder.mkdir()
    (data_folder / FACE_DATA_FILE_NAME).write_text(json.dumps([["a.jpg", entry]]), encoding="utf-8")

    cache = FaceCache.load(tmp_path)

    assert [r.checked_names for r in cache.records()] == [[]]
    assert not list(data_folder.glob(f"{FACE_DATA_FILE_NAME}.corrupt-*"))


def test_faces_for_and_replace_record(cache_with_faces, record_factory):
    assert len(cache_with_faces.faces_for("a.jpg")) == 2
    assert cache_with_faces.faces_for("b.jpg") == []

    renamed = record_factory("a.jpg", 0, name="bob")
    assert cache_with_faces.replace_record("a.jpg", renamed)
    assert cache_with_faces.faces_for("a.jpg")[0].name_of_person == "bob"

    assert not cache_with_faces.replace_record("a.jpg", record_factory("a.jpg", 7))


def test_store_loads_each_folder_once(cache_with_faces, tmp_path):
    store = FaceCacheStore()
    first = store.get(tmp_path)
    assert store.for_image(tmp_path / "a.jpg") is first
    assert len(first.entries) == 3


def test_get_detected_faces_for_image(cache_with_faces, tmp_path):
    faces = get_detected_faces_for_image(tmp_path / "a.jpg")
    assert [f.thumbnail_filename for f in faces] == ["a_thumbnail_0.png", "a_thumbnail_1.png"]
    assert get_detected_faces_for_image(tmp_path / "b.jpg") == []


def test_update_face_record_persists(cache_with_faces, tmp_path, record_factory):
    edited = record_factory("a.jpg", 0, ignored=True)
    assert update_face_record(tmp_path / "a.jpg", edited)

    reloaded = FaceCache.load(tmp_path)
    assert reloaded.faces_for("a.jpg")[0].is_ignored is True

    assert not update_face_record(tmp_path / "missing.jpg", edited)


def test_named_people_for_display(tmp_path, record_factory):
    folder_a = tmp_path / "a"
    folder_b = tmp_path / "b"

    cache_a = FaceCache(folder_a)
    cache_a.add_image_result("1.jpg", [record_factory("1.jpg", 0, name="zoe"), record_factory("1.jpg", 1)])
    cache_a.add_image_result("2.jpg", [record_factory("2.jpg", 0, name="alice")])
    cache_a.save()

    cache_b = FaceCache(folder_b)
    cache_b.add_image_result("3.jpg", [record_factory("3.jpg", 0, name="alice")])
    cache_b.add_image_result("4.jpg", [record_factory("4.jpg", 0, name="mallory", ignored=True)])
    cache_b.save()

    people = get_named_people_for_display([folder_a, folder_b])

    assert [name for name, _ in people] == [UNNAMED_STRING, "alice", "zoe"]
    # First occurrence of a duplicated name wins
    assert dict(people)["alice"] == folder_a / FACE_DATA_FOLDER_NAME / "2_thumbnail_0.png"


def test_get_all_photos_by_name(tmp_path, record_factory):
    cache = FaceCache(tmp_path)
    cache.add_image_result("b.jpg", [record_factory("b.jpg", 0, name="alice")])
    cache.add_image_result("a.jpg", [record_factory("a.jpg", 0, name="alice"), record_factory("a.jpg", 1)])
    cache.add_image_result("c.jpg", [record_factory("c.jpg", 0, name="alice", ignored=True)])
    cache.save()

    assert get_all_photos_by_name("alice", [tmp_path]) == [tmp_path / "a.jpg", tmp_path / "b.jpg"]
    assert get_all_photos_by_name(UNNAMED_STRING, [tmp_path]) == [tmp_path / "a.jpg"]


def test_record_json_round_trip_keeps_embedding(record_factory):
    record = record_factory("x.jpg", embedding=(0.5, -1.25, 3.0), checked=["bob"])
    restored = FaceRecord.from_json(json.loads(json.dumps(record.to_json())))

    assert restored == record
    np.testing.assert_array_equal(
        np.frombuffer(restored.embedding_bytes, dtype=np.float32), [0.5, -1.25, 3.0]
    )
