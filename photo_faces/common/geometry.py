"""
Geometry value types shared by the face pipeline.

Rectangles are expressed in source-image pixel coordinates as floats, the
way the detectors report them. Anything that turns a rectangle into a crop
region must clamp it to the image bounds first.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

Point = Tuple[float, float]


@dataclass
class Rect:
    """Axis-aligned rectangle in source-image pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    @property
    def centre(self) -> Point:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    def intersection_over_union(self, other: "Rect") -> float:
        """Overlap ratio of two rectangles (0 when disjoint)."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)

        intersection = max(right - left, 0.0) * max(bottom - top, 0.0)
        union = self.area + other.area - intersection
        if union <= 0.0:
            return 0.0
        return intersection / union

    def clamped(
        self, image_width: int, image_height: int
    ) -> Optional[Tuple[int, int, int, int]]:
        """
        Integer ``(x, y, width, height)`` box of this rectangle inside the image.

        Returns None when nothing of the rectangle lies inside the image.
        """
        x1 = max(int(self.x), 0)
        y1 = max(int(self.y), 0)
        x2 = min(int(self.x + self.width), image_width)
        y2 = min(int(self.y + self.height), image_height)
        if x2 <= x1 or y2 <= y1:
            return None
        return x1, y1, x2 - x1, y2 - y1


@dataclass
class DetectedFace:
    """
    A face candidate reported by one detector.

    Landmarks, when present, are five points in the order: right eye,
    left eye, nose tip, right mouth corner, left mouth corner.
    """

    rect: Rect
    confidence: float
    landmarks: Optional[List[Point]] = None


def non_maximum_suppression(
    candidates: Sequence[DetectedFace], iou_threshold: float
) -> List[DetectedFace]:
    """
    Remove overlapping duplicates, keeping the most confident candidate.

    Repeatedly takes the highest-confidence remaining candidate and drops
    every other candidate whose overlap with it exceeds ``iou_threshold``.
    """
    remaining = sorted(candidates, key=lambda face: face.confidence, reverse=True)
    kept: List[DetectedFace] = []
    while remaining:
        best = remaining.pop(0)
        kept.append(best)
        remaining = [
            face
            for face in remaining
            if best.rect.intersection_over_union(face.rect) <= iou_threshold
        ]
    return kept


def sort_by_position(faces: Sequence[DetectedFace]) -> List[DetectedFace]:
    """Order faces by ascending x, then ascending y."""
    return sorted(faces, key=lambda face: (face.rect.x, face.rect.y))


def face_centre(face: DetectedFace) -> Point:
    """Midpoint between the eyes, or the rectangle centre without landmarks."""
    if face.landmarks:
        right_eye, left_eye = face.landmarks[0], face.landmarks[1]
        return (right_eye[0] + left_eye[0]) / 2.0, (right_eye[1] + left_eye[1]) / 2.0
    return face.rect.centre


def square_capture_region(
    face: DetectedFace, image_width: int, image_height: int, scale: float = 1.6
) -> Optional[Tuple[int, int, int]]:
    """
    Square region around a face for its preview thumbnail.

    The side is ``scale`` times the shorter side of the face rectangle,
    centred on :func:`face_centre`. When the square would leave the image
    it is shrunk around the same centre, never shifted, so the result always
    satisfies ``x + side <= image_width`` and ``y + side <= image_height``.

    Returns:
        ``(x, y, side)`` in integer pixels, or None if the side collapses
        below one pixel.
    """
    half_side = min(face.rect.width, face.rect.height) * scale / 2.0

    centre_x, centre_y = face_centre(face)
    centre_x = min(max(centre_x, 0.0), float(image_width))
    centre_y = min(max(centre_y, 0.0), float(image_height))

    half_side = min(
        half_side,
        image_width - centre_x,
        image_height - centre_y,
        centre_x,
        centre_y,
    )

    x = int(max(centre_x - half_side, 0.0))
    y = int(max(centre_y - half_side, 0.0))
    side = int(half_side * 2.0)
    if side < 1:
        return None
    return x, y, side
