"""Face embedding storage and similarity helpers.

Embeddings are stored hex-encoded float32 so they fit a TEXT column.
"""

from typing import Dict, Iterable, Optional, Tuple

import numpy as np


def embedding_to_hex(embedding: np.ndarray) -> str:
    """Convert embedding array to hex string for storage.

    Example:
        >>> emb = np.array([0.1, -0.2, 0.3], dtype=np.float32)
        >>> np.allclose(emb, hex_to_embedding(embedding_to_hex(emb)))
        True
    """
    return np.asarray(embedding).astype(np.float32).tobytes().hex()


def hex_to_embedding(hex_str: str) -> np.ndarray:
    """Convert hex string back to a float32 embedding array."""
    return np.frombuffer(bytes.fromhex(hex_str), dtype=np.float32).copy()


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is zero."""
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


def group_centroids(faces: Iterable[Tuple[str, str, np.ndarray]]) -> Dict[str, np.ndarray]:
    """
    Mean embedding per face group.

    Args:
        faces: (image_face_id, face_group_id, embedding) tuples

    Returns:
        Mapping of face_group_id to centroid embedding
    """
    members: Dict[str, list] = {}
    for _, face_group_id, embedding in faces:
        members.setdefault(face_group_id, []).append(embedding)
    return {
        face_group_id: np.mean(np.stack(embeddings), axis=0)
        for face_group_id, embeddings in members.items()
    }


def best_match(
    embedding: np.ndarray,
    centroids: Dict[str, np.ndarray],
    threshold: float
) -> Optional[str]:
    """
    Closest group whose centroid similarity reaches the threshold.

    Ties are broken by group id so results are reproducible.
    """
    best_group = None
    best_score = threshold
    for face_group_id in sorted(centroids):
        score = cosine_similarity(embedding, centroids[face_group_id])
        if score >= best_score and (best_group is None or score > best_score):
            best_group = face_group_id
            best_score = score
    return best_group
