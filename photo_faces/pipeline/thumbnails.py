"""
Square gallery thumbnails.

Each image gets a centred square crop, resized with nearest-neighbour
sampling, saved under the same filename in a ``.thumbnails`` folder next to
the image. Existing thumbnails are never regenerated.
"""

import logging
from pathlib import Path
from typing import Iterator, Optional, Sequence, Tuple

from PIL import Image

from ..common.constants import THUMBNAIL_FOLDER_NAME
from .config import THUMBNAIL_CONFIG
from .progress import ProgressChannel, ProgressEvent, ProgressStage, progress_stream

logger = logging.getLogger(__name__)


def thumbnail_path_for(image_path: Path) -> Path:
    image_path = Path(image_path)
    return image_path.parent / THUMBNAIL_FOLDER_NAME / image_path.name


def centre_square_box(width: int, height: int) -> Tuple[int, int, int, int]:
    """Pillow crop box of the largest centred square."""
    if height > width:
        top = height // 2 - width // 2
        return 0, top, width, top + width
    left = width // 2 - height // 2
    return left, 0, left + height, height


def create_square_thumbnail(image_path: Path, thumbnail_path: Path, thumbnail_size: int) -> bool:
    """
    Write one square thumbnail.

    Returns:
        False if the image could not be decoded or the thumbnail not saved.
    """
    try:
        with Image.open(image_path) as img:
            square = img.crop(centre_square_box(*img.size))
            thumbnail = square.resize(
                (thumbnail_size, thumbnail_size), Image.Resampling.NEAREST
            )
            thumbnail.save(thumbnail_path)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(f"Skipping thumbnail for {image_path}: {e}")
        return False
    return True


def generate_thumbnails(
    image_paths: Sequence[Path],
    thumbnail_size: Optional[int] = None,
    report_every: Optional[int] = None,
) -> Iterator[ProgressEvent]:
    """
    Generate missing thumbnails for a list of images.

    Args:
        image_paths: Images to process, in order
        thumbnail_size: Side of the square thumbnail in pixels
        report_every: Number of images between progress reports

    Returns:
        Progress stream for the run
    """
    image_paths = [Path(p) for p in image_paths]
    thumbnail_size = thumbnail_size or THUMBNAIL_CONFIG["THUMBNAIL_SIZE"]
    report_every = report_every or THUMBNAIL_CONFIG["PROGRESS_EVERY"]

    def work(channel: ProgressChannel) -> None:
        if not channel.send(0.0):
            return

        total = len(image_paths)
        for processed, image_path in enumerate(image_paths, start=1):
            thumbnail_path = thumbnail_path_for(image_path)
            if not thumbnail_path.exists():
                thumbnail_path.parent.mkdir(parents=True, exist_ok=True)
                create_square_thumbnail(image_path, thumbnail_path, thumbnail_size)

            if processed % report_every == 0 and processed < total:
                if not channel.send(processed / total):
                    logger.info("Thumbnail generation cancelled")
                    return

        channel.send(1.0)

    return progress_stream(ProgressStage.THUMBNAIL_GENERATION, work)
