#!/usr/bin/env python
"""
Utility functions for the photo_faces project.
"""

import os
from pathlib import Path
from typing import Iterable, List

from .constants import IMAGE_EXTENSIONS, RESERVED_FOLDER_NAMES


def find_image_paths(root: Path) -> List[Path]:
    """
    Finds all gallery images under a folder.

    Args:
        root: The photo folder to walk recursively.

    Returns:
        Image paths with a supported extension, newest modification time
        first. The reserved thumbnail and face data folders are not entered.
    """
    root = Path(root)
    if not root.is_dir():
        return []

    image_paths = []
    for dirpath, dirnames, filenames in os.walk(root):
        # Prune in place so os.walk never descends into generated folders
        dirnames[:] = [d for d in dirnames if d not in RESERVED_FOLDER_NAMES]
        for filename in filenames:
            path = Path(dirpath) / filename
            if path.suffix.lower() in IMAGE_EXTENSIONS:
                image_paths.append(path)

    image_paths.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return image_paths


def get_parent_folders(image_paths: Iterable[Path]) -> List[Path]:
    """
    Distinct parent folders of a list of images.

    Args:
        image_paths: Paths of image files.

    Returns:
        Sorted, de-duplicated list of the folders containing them.
    """
    return sorted({Path(p).parent for p in image_paths})
