#!/usr/bin/env python
"""
Runs the photo face pipeline over a photo folder.

Stages, in order:
1. Thumbnail generation - square gallery previews in `.thumbnails/`
2. Face extraction - faces, preview crops and embeddings in `.face_data/`
3. Face recognition - names assigned to unnamed faces from named ones

Usage:
    python scripts/run_photo_pipeline.py --folder ~/Pictures
    python scripts/run_photo_pipeline.py --folder ~/Pictures --extract --config pipeline.yaml
"""

import argparse
import logging
import sys
from pathlib import Path

from tqdm import tqdm

# Add project root to Python path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))

from photo_faces.common.utils import find_image_paths, get_parent_folders
from photo_faces.pipeline.config import load_pipeline_config
from photo_faces.pipeline.face_extractor import extract_all_faces
from photo_faces.pipeline.face_matcher import recognize_faces
from photo_faces.pipeline.models import PipelineError
from photo_faces.pipeline.thumbnails import generate_thumbnails


# --- Logging Setup ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


def follow_progress(stream, description):
    """Render a progress stream as a tqdm bar until it goes idle."""
    with tqdm(total=100.0, desc=description, unit="%", bar_format="{l_bar}{bar}| {n:.0f}%") as bar:
        for event in stream:
            if event.is_idle:
                break
            bar.update(event.percentage - bar.n)


def run_photo_pipeline(folder, config_path=None, thumbnails=True, extract=True, recognize=True):
    """Runs the selected stages; returns False if a stage failed."""
    config = load_pipeline_config(config_path)

    image_paths = find_image_paths(folder)
    logger.info(f"Found {len(image_paths)} images under {folder}")
    if not image_paths:
        return True

    try:
        if thumbnails:
            follow_progress(
                generate_thumbnails(
                    image_paths,
                    thumbnail_size=config["thumbnails"]["THUMBNAIL_SIZE"],
                    report_every=config["thumbnails"]["PROGRESS_EVERY"],
                ),
                "Thumbnails",
            )
        if extract:
            follow_progress(
                extract_all_faces(image_paths, config=config["extraction"]),
                "Extracting faces",
            )
        if recognize:
            follow_progress(
                recognize_faces(get_parent_folders(image_paths), config=config["matching"]),
                "Recognising faces",
            )
    except PipelineError as e:
        logger.error(f"Pipeline failed: {e}")
        return False

    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the photo face pipeline on a folder.")
    parser.add_argument("--folder", type=Path, required=True, help="Photo folder to process")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file overriding thresholds (sections: thumbnails, extraction, matching)",
    )
    parser.add_argument("--thumbnails", action="store_true", help="Run thumbnail generation")
    parser.add_argument("--extract", action="store_true", help="Run face extraction")
    parser.add_argument("--recognize", action="store_true", help="Run face recognition")
    args = parser.parse_args()

    # No stage flags means every stage
    run_all = not (args.thumbnails or args.extract or args.recognize)

    succeeded = run_photo_pipeline(
        args.folder,
        config_path=args.config,
        thumbnails=run_all or args.thumbnails,
        extract=run_all or args.extract,
        recognize=run_all or args.recognize,
    )
    sys.exit(0 if succeeded else 1)
