import dataclasses

from photo_faces.common.constants import FACE_DATA_FOLDER_NAME, THUMBNAIL_FOLDER_NAME
from photo_faces.common.face_cache import (
    get_all_photos_by_name,
    get_detected_faces_for_image,
    get_named_people_for_display,
    update_face_record,
)
from photo_faces.common.utils import find_image_paths, get_parent_folders
from photo_faces.pipeline import FaceExtractor, extract_all_faces, generate_thumbnails, recognize_faces


def test_face_pipeline_end_to_end(tmp_path, image_writer, face_factory, detector_factory, fake_recognizer):
    """
    Runs the three stages over a small library of solid colour photos.
    Every photo has one face at the same spot; the fake recognizer embeds
    its mean colour, so same-coloured photos show the same person.
    """
    library = tmp_path / "library"
    image_writer(library / "red_1.png", color=(255, 0, 0))
    image_writer(library / "holiday" / "red_2.png", color=(255, 0, 0))
    image_writer(library / "holiday" / "blue.png", color=(0, 0, 255))

    image_paths = find_image_paths(library)
    parent_folders = get_parent_folders(image_paths)
    assert len(image_paths) == 3
    assert parent_folders == [library, library / "holiday"]

    # 1. Thumbnails
    events = list(generate_thumbnails(image_paths, thumbnail_size=32))
    assert events[-1].is_idle
    for path in image_paths:
        assert (path.parent / THUMBNAIL_FOLDER_NAME / path.name).exists()

    # 2. Face extraction
    extractor = FaceExtractor([detector_factory([face_factory(20, 10, 60, 60)])], fake_recognizer)
    events = list(extract_all_faces(image_paths, extractor=extractor))
    assert events[-2].percentage == 100.0

    (red_face,) = get_detected_faces_for_image(library / "red_1.png")
    assert (library / FACE_DATA_FOLDER_NAME / red_face.thumbnail_filename).exists()

    # 3. The user names the first red face
    assert update_face_record(library / "red_1.png", dataclasses.replace(red_face, name_of_person="rose"))

    # 4. Face recognition
    events = list(recognize_faces(parent_folders, recognizer=fake_recognizer))
    assert events[-1].is_idle

    (other_red,) = get_detected_faces_for_image(library / "holiday" / "red_2.png")
    (blue_face,) = get_detected_faces_for_image(library / "holiday" / "blue.png")
    assert other_red.name_of_person == "rose"
    assert blue_face.name_of_person is None
    assert blue_face.checked_names == ["rose"]

    assert get_all_photos_by_name("rose", parent_folders) == [
        library / "holiday" / "red_2.png",
        library / "red_1.png",
    ]
    assert [name for name, _ in get_named_people_for_display(parent_folders)] == ["Unnamed", "rose"]
