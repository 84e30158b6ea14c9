"""Face group assignment and mutation.

Every image face belongs to exactly one face group. New faces join the
group whose centroid (mean member embedding) is most similar, provided the
cosine similarity reaches the configured threshold; otherwise they start a
new singleton group. Groups left empty by any operation are deleted.
"""

import logging
from typing import List, Optional, Sequence

from ..catalog import MediaCatalog
from ..errors import ForbiddenError, InvalidArgumentError, NotFoundError
from ..models import FaceGroup, ImageFace
from .detector import DetectedFace
from .embeddings import best_match, group_centroids

logger = logging.getLogger(__name__)


class FaceClusterer:
    """
    Assigns detected faces to face groups and applies user-driven corrections.

    Mutations take the acting user's id; groups or faces of another user
    raise ForbiddenError. Each mutation is atomic: on any error no group or
    face is changed.

    Args:
        catalog: Media catalog
        similarity_threshold: Minimum cosine similarity to join a group
    """

    def __init__(self, catalog: MediaCatalog, similarity_threshold: float = 0.6):
        self.catalog = catalog
        self.similarity_threshold = similarity_threshold

    # Scan-time assignment

    def replace_media_faces(self, owner_id: str, media_id: str, detected: Sequence[DetectedFace]) -> List[str]:
        """
        Replace the faces of a media with freshly detected ones.

        Joins the caller's transaction when there is one. Callers holding a
        transaction must take the owner lock before opening it.

        Returns:
            Ids of the inserted image faces
        """
        with self.catalog.owner_lock(owner_id):
            with self.catalog.transaction():
                faces = self.catalog.faces
                removed = faces.delete_media_faces(media_id)
                inserted = self._assign(owner_id, media_id, detected) if detected else []
                if removed:
                    faces.delete_empty_groups(owner_id)
        return inserted

    def _assign(self, owner_id: str, media_id: str, detected: Sequence[DetectedFace]) -> List[str]:
        faces = self.catalog.faces
        # Faces on one photo are different people, so centroids are not
        # updated between faces of the same photo.
        centroids = group_centroids(faces.load_embeddings(owner_id))

        inserted = []
        for face in detected:
            face_group_id = best_match(face.embedding, centroids, self.similarity_threshold)
            if face_group_id is None:
                face_group_id = faces.insert_group(owner_id)
                logger.debug(f"Created face group: {{'face_group_id': {face_group_id!r}, 'media_id': {media_id!r}}}")
            inserted.append(faces.insert_face(media_id, face_group_id, face.rectangle, face.embedding))
        return inserted

    # Group mutations

    def set_face_group_label(self, user_id: str, face_group_id: str, label: Optional[str]) -> FaceGroup:
        """Set or clear (None or blank) the human label of a group."""
        if label is not None:
            label = label.strip() or None

        with self.catalog.claim_face_groups([face_group_id]):
            with self.catalog.owner_lock(user_id):
                self._get_owned_group(user_id, face_group_id)
                self.catalog.faces.set_label(face_group_id, label)

        logger.info(f"Set face group label: {{'face_group_id': {face_group_id!r}, 'label': {label!r}}}")
        return self.catalog.get_face_group(face_group_id)

    def combine_face_groups(self, user_id: str, destination_group_id: str, source_group_id: str) -> FaceGroup:
        """
        Move every face of the source group into the destination, then delete the source.

        Raises:
            InvalidArgumentError: Source and destination are the same group
            NotFoundError: Either group does not exist
            ConflictError: Another mutation is using one of the groups
        """
        if destination_group_id == source_group_id:
            raise InvalidArgumentError("Cannot combine a face group with itself", face_group_id=source_group_id)

        with self.catalog.claim_face_groups([destination_group_id, source_group_id]):
            with self.catalog.owner_lock(user_id):
                with self.catalog.transaction():
                    self._get_owned_group(user_id, destination_group_id)
                    self._get_owned_group(user_id, source_group_id)
                    faces = self.catalog.faces
                    moved = faces.move_group_faces(source_group_id, destination_group_id)
                    faces.delete_group(source_group_id)

        logger.info(f"Combined face groups: {{'destination': {destination_group_id!r}, 'source': {source_group_id!r}, 'faces': {moved}}}")
        return self.catalog.get_face_group(destination_group_id)

    def move_image_faces(self, user_id: str, image_face_ids: Sequence[str], destination_group_id: str) -> FaceGroup:
        """
        Move faces into an existing group.

        Raises:
            NotFoundError: The group or any face does not exist (nothing moves)
        """
        image_face_ids = list(dict.fromkeys(image_face_ids))
        source_groups = self._source_groups(image_face_ids)

        with self.catalog.claim_face_groups(source_groups | {destination_group_id}):
            with self.catalog.owner_lock(user_id):
                with self.catalog.transaction():
                    self._get_owned_group(user_id, destination_group_id)
                    self._check_faces(user_id, image_face_ids)
                    faces = self.catalog.faces
                    faces.move_faces(image_face_ids, destination_group_id)
                    faces.delete_empty_groups(user_id)

        logger.info(f"Moved image faces: {{'destination': {destination_group_id!r}, 'faces': {len(image_face_ids)}}}")
        return self.catalog.get_face_group(destination_group_id)

    def detach_image_faces(self, user_id: str, image_face_ids: Sequence[str]) -> FaceGroup:
        """
        Move faces into a new unlabeled group.

        Raises:
            NotFoundError: Any face does not exist (nothing moves)
            InvalidArgumentError: No face ids given
        """
        image_face_ids = list(dict.fromkeys(image_face_ids))
        if not image_face_ids:
            raise InvalidArgumentError("No image faces given")
        source_groups = self._source_groups(image_face_ids)

        with self.catalog.claim_face_groups(source_groups):
            with self.catalog.owner_lock(user_id):
                with self.catalog.transaction():
                    self._check_faces(user_id, image_face_ids)
                    faces = self.catalog.faces
                    new_group_id = faces.insert_group(user_id)
                    faces.move_faces(image_face_ids, new_group_id)
                    faces.delete_empty_groups(user_id)

        logger.info(f"Detached image faces: {{'face_group_id': {new_group_id!r}, 'faces': {len(image_face_ids)}}}")
        return self.catalog.get_face_group(new_group_id)

    def recognize_unlabeled_faces(self, user_id: str) -> List[ImageFace]:
        """
        Re-match faces of unlabeled groups against labeled groups only.

        Faces already in labeled groups never move.

        Returns:
            The faces that were moved, with their new group ids
        """
        self.catalog.get_user(user_id)
        moved: List[ImageFace] = []

        with self.catalog.owner_lock(user_id):
            with self.catalog.transaction():
                faces = self.catalog.faces
                labeled = group_centroids(faces.load_embeddings(user_id, labeled=True))
                if not labeled:
                    return []

                moves = {}
                for image_face_id, _, embedding in faces.load_embeddings(user_id, labeled=False):
                    match = best_match(embedding, labeled, self.similarity_threshold)
                    if match is not None:
                        moves[image_face_id] = match

                for image_face_id, face_group_id in moves.items():
                    faces.move_faces([image_face_id], face_group_id)
                if moves:
                    faces.delete_empty_groups(user_id)
                    moved = faces.get_faces(list(moves))

        logger.info(f"Recognized unlabeled faces: {{'user_id': {user_id!r}, 'moved': {len(moved)}}}")
        return moved

    # Validation helpers

    def _get_owned_group(self, user_id: str, face_group_id: str) -> FaceGroup:
        group = self.catalog.faces.get_group(face_group_id)
        if group is None:
            raise NotFoundError("Face group not found", face_group_id=face_group_id)
        if group.owner_id != user_id:
            raise ForbiddenError("Face group belongs to another user", face_group_id=face_group_id)
        return group

    def _source_groups(self, image_face_ids: Sequence[str]) -> set:
        return {face.face_group_id for face in self.catalog.faces.get_faces(image_face_ids)}

    def _check_faces(self, user_id: str, image_face_ids: Sequence[str]):
        owners = self.catalog.faces.get_face_owners(image_face_ids)
        missing = [face_id for face_id in image_face_ids if face_id not in owners]
        if missing:
            raise NotFoundError("Image face not found", image_face_ids=missing)
        foreign = [face_id for face_id, owner_id in owners.items() if owner_id != user_id]
        if foreign:
            raise ForbiddenError("Image face belongs to another user", image_face_ids=foreign)
