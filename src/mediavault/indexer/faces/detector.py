"""Face localization and embedding.

The scanner only depends on the FaceDetector protocol; FacenetDetector is the
default implementation and loads its models lazily on first use.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable

import numpy as np
from PIL import Image

from ..models import FaceRectangle

logger = logging.getLogger(__name__)

FACENET_INPUT_SIZE = 160


@dataclass
class DetectedFace:
    """A face found on an image: normalized rectangle plus identity embedding."""
    rectangle: FaceRectangle
    embedding: np.ndarray
    confidence: float = 1.0


@runtime_checkable
class FaceDetector(Protocol):
    def detect(self, image: Image.Image) -> List[DetectedFace]:
        ...


def normalize_box(box, width: int, height: int) -> Optional[FaceRectangle]:
    """
    Convert a pixel box (x1, y1, x2, y2) into a 0-1 FaceRectangle.

    Boxes are clipped to the image; degenerate boxes give None.
    """
    if width <= 0 or height <= 0:
        return None
    x1, y1, x2, y2 = (float(value) for value in box)
    min_x = min(max(x1 / width, 0.0), 1.0)
    max_x = min(max(x2 / width, 0.0), 1.0)
    min_y = min(max(y1 / height, 0.0), 1.0)
    max_y = min(max(y2 / height, 0.0), 1.0)
    if max_x <= min_x or max_y <= min_y:
        return None
    return FaceRectangle(min_x=min_x, max_x=max_x, min_y=min_y, max_y=max_y)


class FacenetDetector:
    """
    Detect faces with MTCNN and compute 512-dimensional FaceNet embeddings.

    Requires the optional ``faces`` extra (torch, facenet-pytorch).

    Args:
        min_face_size: Minimum face size in pixels
        confidence_threshold: Minimum MTCNN probability to keep a face
        max_faces: Maximum number of faces per image
    """

    def __init__(self, min_face_size: int = 20, confidence_threshold: float = 0.9, max_faces: int = 20):
        self.min_face_size = min_face_size
        self.confidence_threshold = confidence_threshold
        self.max_faces = max_faces
        self._mtcnn = None
        self._resnet = None
        self._device = None
        self._load_lock = threading.Lock()
        # Inference is not re-entrant across scan threads
        self._inference_lock = threading.Lock()

    def _get_model(self) -> tuple:
        with self._load_lock:
            if self._mtcnn is None:
                logger.info("Loading FaceNet models")

                import torch
                from facenet_pytorch import MTCNN, InceptionResnetV1

                self._device = "cuda" if torch.cuda.is_available() else "cpu"
                self._mtcnn = MTCNN(
                    device=self._device,
                    keep_all=True,
                    min_face_size=self.min_face_size,
                )
                self._resnet = InceptionResnetV1(pretrained='vggface2').eval()
                self._resnet.to(self._device)

                logger.info(f"FaceNet loaded: {{'device': {self._device!r}}}")

        return self._mtcnn, self._resnet, self._device

    def detect(self, image: Image.Image) -> List[DetectedFace]:
        import torch

        mtcnn, resnet, device = self._get_model()

        if image.mode != "RGB":
            image = image.convert("RGB")

        with self._inference_lock:
            boxes, probs = mtcnn.detect(image)
            if boxes is None or len(boxes) == 0:
                return []

            kept = []
            tensors = []
            for box, prob in zip(boxes, probs):
                if prob is None or prob < self.confidence_threshold:
                    continue
                if len(kept) >= self.max_faces:
                    break

                rectangle = normalize_box(box, image.width, image.height)
                if rectangle is None:
                    continue

                x1, y1, x2, y2 = [int(c) for c in box]
                face_img = image.crop((x1, y1, x2, y2)).resize((FACENET_INPUT_SIZE, FACENET_INPUT_SIZE))

                # FaceNet expects standardized input in [-1, 1]
                face_tensor = torch.tensor(
                    np.array(face_img).transpose(2, 0, 1),
                    dtype=torch.float32
                ).unsqueeze(0)
                face_tensor = (face_tensor - 127.5) / 128.0

                tensors.append(face_tensor)
                kept.append((rectangle, float(prob)))

            if not tensors:
                return []

            batch = torch.cat(tensors, dim=0).to(device)
            with torch.no_grad():
                embeddings = resnet(batch).cpu().numpy()

        return [
            DetectedFace(rectangle=rectangle, embedding=embedding.astype(np.float32), confidence=confidence)
            for (rectangle, confidence), embedding in zip(kept, embeddings)
        ]
