import cv2
import numpy as np
import onnxruntime as ort
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..common.geometry import DetectedFace, Rect
from .models import FaceDetector, FaceRecognizer

NUM_LANDMARKS = 5
# x1, y1, x2, y2, conf, class_id, then (x, y, visibility) per landmark
_LANDMARK_OFFSET = 6


class ONNXFaceDetector(FaceDetector):
    """
    ONNX face detection model wrapper.

    The model must accept dynamic input sizes. The image is scaled so its
    longer side equals ``target_size``: a small target finds big, near faces
    and a large target finds small, distant ones.
    """

    def __init__(
        self,
        model_path: str,
        target_size: int,
        score_threshold: float = 0.95,
        providers: Optional[Sequence[str]] = None,
        intra_threads: Optional[int] = None,
    ):
        options = ort.SessionOptions()
        if intra_threads:
            options.intra_op_num_threads = intra_threads
        self.session = ort.InferenceSession(
            str(model_path),
            sess_options=options,
            providers=list(providers or ["CPUExecutionProvider"]),
        )
        self.input_name = self.session.get_inputs()[0].name
        self.target_size = target_size
        self.score_threshold = score_threshold

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """Detect faces in an RGB image."""
        detector_input, (scale_x, scale_y) = self._preprocess(image)
        detections = self.session.run(None, {self.input_name: detector_input})[0][0]

        results = []
        for det in detections:
            x1, y1, x2, y2, conf = det[:5]
            if conf < self.score_threshold:
                continue

            # Scale back to original image size
            rect = Rect(
                x=float(x1 / scale_x),
                y=float(y1 / scale_y),
                width=float((x2 - x1) / scale_x),
                height=float((y2 - y1) / scale_y),
            )

            landmarks = None
            if len(det) >= _LANDMARK_OFFSET + NUM_LANDMARKS * 3:
                points = np.asarray(
                    det[_LANDMARK_OFFSET : _LANDMARK_OFFSET + NUM_LANDMARKS * 3],
                    dtype=np.float32,
                ).reshape((NUM_LANDMARKS, 3))
                landmarks = [
                    (float(px / scale_x), float(py / scale_y)) for px, py, _ in points
                ]

            results.append(DetectedFace(rect=rect, confidence=float(conf), landmarks=landmarks))

        return results

    def _preprocess(self, image: np.ndarray) -> Tuple[np.ndarray, Tuple[float, float]]:
        """Resize to the target size, pad to a stride of 32 and normalise."""
        h, w = image.shape[:2]
        scale = self.target_size / max(h, w)
        new_w = max(int(round(w * scale)), 1)
        new_h = max(int(round(h * scale)), 1)
        resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

        padded_h = int(np.ceil(new_h / 32) * 32)
        padded_w = int(np.ceil(new_w / 32) * 32)
        canvas = np.zeros((padded_h, padded_w, 3), dtype=np.uint8)
        canvas[:new_h, :new_w] = resized

        img_fp = canvas.astype(np.float32) / 255.0
        img_fp = np.transpose(img_fp, (2, 0, 1))
        return np.expand_dims(img_fp, axis=0), (new_w / w, new_h / h)


class SFaceRecognizer(FaceRecognizer):
    """OpenCV SFace recognition model wrapper."""

    def __init__(self, model_path: str):
        if not Path(model_path).exists():
            raise FileNotFoundError(f"Face recognition model not found: {model_path}")
        self.model = cv2.FaceRecognizerSF.create(str(model_path), "")

    def extract_embedding(self, face_image: np.ndarray, face_row: np.ndarray) -> np.ndarray:
        """Align the face using its landmarks and compute the feature vector."""
        face_box = np.asarray(face_row, dtype=np.float32).reshape(1, -1)
        aligned = self.model.alignCrop(face_image, face_box)
        feature = self.model.feature(aligned)
        return np.asarray(feature, dtype=np.float32).ravel()

    def compare(self, embedding_a: np.ndarray, embedding_b: np.ndarray) -> float:
        """L2 distance between two embeddings."""
        return float(
            self.model.match(
                np.asarray(embedding_a, dtype=np.float32).reshape(1, -1),
                np.asarray(embedding_b, dtype=np.float32).reshape(1, -1),
                cv2.FaceRecognizerSF_FR_NORM_L2,
            )
        )
