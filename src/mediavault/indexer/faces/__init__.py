"""Face detection, embeddings and clustering."""

from .detector import DetectedFace, FaceDetector, FacenetDetector, normalize_box
from .embeddings import (
    best_match,
    cosine_similarity,
    embedding_to_hex,
    group_centroids,
    hex_to_embedding,
)

__all__ = [
    'DetectedFace',
    'FaceDetector',
    'FacenetDetector',
    'normalize_box',
    'best_match',
    'cosine_similarity',
    'embedding_to_hex',
    'group_centroids',
    'hex_to_embedding',
]
