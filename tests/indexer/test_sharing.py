"""Tests for share token creation and validation."""

from datetime import datetime, timedelta, timezone

import pytest

from mediavault.indexer.errors import ExpiredError, ForbiddenError, NotFoundError, UnauthorizedError
from mediavault.indexer.models import Album, AlbumTarget, Media, MediaTarget, MediaType
from mediavault.indexer.sharing import ShareTokenService, hash_password, verify_password


@pytest.fixture
def sharing(catalog):
    return ShareTokenService(catalog)


@pytest.fixture
def root(catalog, user, photos_root):
    return catalog.user_add_root_path(user.user_id, photos_root)


@pytest.fixture
def media_id(catalog, user, root):
    return catalog.media.insert_media({
        'album_id': root.album_id,
        'owner_id': user.user_id,
        'title': "a.jpg",
        'media_path': f"{root.path}/a.jpg",
        'media_type': MediaType.PHOTO.value,
    })


class TestPasswordHash:
    """Tests for password hashing helpers."""

    def test_verify(self):
        encoded = hash_password("hunter2", iterations=1000)
        assert encoded.startswith("pbkdf2_sha256$1000$")
        assert verify_password("hunter2", encoded)
        assert not verify_password("hunter3", encoded)

    def test_salted(self):
        assert hash_password("same", iterations=1000) != hash_password("same", iterations=1000)

    def test_malformed_hash(self):
        assert not verify_password("x", "not-a-hash")
        assert not verify_password("x", "md5$1$00$00")


class TestCreate:
    """Tests for creating and managing tokens."""

    def test_create_album_token(self, sharing, user, root):
        token = sharing.create_share_token(user.user_id, AlbumTarget(root.album_id))

        assert token.owner_id == user.user_id
        assert token.target == AlbumTarget(root.album_id)
        assert not token.has_password
        assert len(token.token) >= 20

    def test_tokens_are_unique(self, sharing, user, root):
        first = sharing.create_share_token(user.user_id, AlbumTarget(root.album_id))
        second = sharing.create_share_token(user.user_id, AlbumTarget(root.album_id))
        assert first.token != second.token

    def test_foreign_target(self, sharing, other_user, root):
        with pytest.raises(ForbiddenError):
            sharing.create_share_token(other_user.user_id, AlbumTarget(root.album_id))

    def test_unknown_target(self, sharing, user):
        with pytest.raises(NotFoundError):
            sharing.create_share_token(user.user_id, MediaTarget("missing"))

    def test_list_and_delete(self, sharing, user, media_id):
        token = sharing.create_share_token(user.user_id, MediaTarget(media_id))
        assert [t.token for t in sharing.list_share_tokens(user.user_id, MediaTarget(media_id))] == [token.token]

        sharing.delete_share_token(user.user_id, token.token)

        assert sharing.list_share_tokens(user.user_id, MediaTarget(media_id)) == []

    def test_delete_foreign_token(self, sharing, user, other_user, root):
        token = sharing.create_share_token(user.user_id, AlbumTarget(root.album_id))
        with pytest.raises(ForbiddenError):
            sharing.delete_share_token(other_user.user_id, token.token)


class TestValidate:
    """Tests for resolving tokens to their target."""

    def test_album_token(self, sharing, user, root):
        token = sharing.create_share_token(user.user_id, AlbumTarget(root.album_id))

        target = sharing.validate(token.token)

        assert isinstance(target, Album)
        assert target.album_id == root.album_id

    def test_media_token(self, sharing, user, media_id):
        token = sharing.create_share_token(user.user_id, MediaTarget(media_id))

        target = sharing.validate(token.token)

        assert isinstance(target, Media)
        assert target.media_id == media_id

    def test_unknown_token(self, sharing):
        with pytest.raises(NotFoundError):
            sharing.validate("no-such-token")

    def test_password_required(self, sharing, user, root):
        token = sharing.create_share_token(user.user_id, AlbumTarget(root.album_id), password="secret")
        assert token.has_password

        with pytest.raises(UnauthorizedError):
            sharing.validate(token.token)
        with pytest.raises(UnauthorizedError):
            sharing.validate(token.token, "wrong")
        assert sharing.validate(token.token, "secret").album_id == root.album_id

    def test_expired_wins_over_password(self, sharing, user, root):
        token = sharing.create_share_token(
            user.user_id, AlbumTarget(root.album_id),
            expire=datetime.now(timezone.utc) - timedelta(minutes=1),
            password="secret",
        )
        with pytest.raises(ExpiredError):
            sharing.validate(token.token, "wrong")
        with pytest.raises(ExpiredError):
            sharing.validate(token.token, "secret")

    def test_future_expiry(self, sharing, user, root):
        token = sharing.create_share_token(
            user.user_id, AlbumTarget(root.album_id),
            expire=datetime.now(timezone.utc) + timedelta(days=1),
        )
        assert sharing.validate(token.token).album_id == root.album_id

    def test_tombstoned_target_is_gone(self, sharing, catalog, user, media_id):
        token = sharing.create_share_token(user.user_id, MediaTarget(media_id))
        catalog.media.update_media(media_id, status='missing')

        with pytest.raises(NotFoundError):
            sharing.validate(token.token)

    def test_protect_and_unprotect(self, sharing, user, root):
        token = sharing.create_share_token(user.user_id, AlbumTarget(root.album_id))

        assert sharing.protect_share_token(user.user_id, token.token, "pw").has_password
        with pytest.raises(UnauthorizedError):
            sharing.validate(token.token)

        assert not sharing.protect_share_token(user.user_id, token.token, None).has_password
        assert sharing.validate(token.token).album_id == root.album_id
