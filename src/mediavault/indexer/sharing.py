"""Share tokens: anonymous, optionally password-protected access to one album or media."""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timezone
from typing import List, Optional, Union

from .catalog import MediaCatalog
from .errors import ExpiredError, ForbiddenError, InvalidArgumentError, NotFoundError, UnauthorizedError
from .models import Album, AlbumTarget, EntityStatus, Media, MediaTarget, ShareTarget, ShareToken

logger = logging.getLogger(__name__)

TOKEN_BYTES = 18
PBKDF2_ITERATIONS = 200_000
HASH_SCHEME = "pbkdf2_sha256"


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Salted PBKDF2-SHA256 hash as ``pbkdf2_sha256$<iterations>$<salt>$<digest>``."""
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt, iterations)
    return f"{HASH_SCHEME}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against a stored hash in constant time."""
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split('$')
        if scheme != HASH_SCHEME:
            return False
        candidate = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), bytes.fromhex(salt_hex), int(iterations))
    except ValueError:
        logger.warning("Malformed share token password hash")
        return False
    return hmac.compare_digest(candidate.hex(), digest_hex)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ShareTokenService:
    """
    Creates, protects and validates share tokens.

    A token's target is stored by id only. When the album or media is
    tombstoned or removed the token stays in place and validates as gone.
    """

    def __init__(self, catalog: MediaCatalog):
        self.catalog = catalog

    def create_share_token(
        self,
        user_id: str,
        target: ShareTarget,
        expire: Optional[datetime] = None,
        password: Optional[str] = None
    ) -> ShareToken:
        """
        Share one album or one media.

        Raises:
            NotFoundError: Target does not exist or is tombstoned
            ForbiddenError: Target belongs to another user
        """
        self._resolve_owned_target(user_id, target)
        token = secrets.token_urlsafe(TOKEN_BYTES)
        password_hash = hash_password(password) if password else None

        self.catalog.share_tokens.insert_token(token, user_id, target, _as_utc(expire), password_hash)
        logger.info(f"Created share token: {{'user_id': {user_id!r}, 'target': {target!r}, 'protected': {password_hash is not None}}}")
        return self.catalog.share_tokens.get_token(token)

    def delete_share_token(self, user_id: str, token: str) -> ShareToken:
        share_token = self._get_owned_token(user_id, token)
        self.catalog.share_tokens.delete_token(token)
        logger.info(f"Deleted share token: {{'user_id': {user_id!r}}}")
        return share_token

    def protect_share_token(self, user_id: str, token: str, password: Optional[str]) -> ShareToken:
        """Set a password, or remove it with None / empty string."""
        self._get_owned_token(user_id, token)
        password_hash = hash_password(password) if password else None
        self.catalog.share_tokens.set_password_hash(token, password_hash)
        return self.catalog.share_tokens.get_token(token)

    def list_share_tokens(self, user_id: str, target: ShareTarget) -> List[ShareToken]:
        self._resolve_owned_target(user_id, target, allow_missing=True)
        if isinstance(target, AlbumTarget):
            return self.catalog.share_tokens.list_for_album(target.album_id)
        return self.catalog.share_tokens.list_for_media(target.media_id)

    def validate(self, token: str, password: Optional[str] = None) -> Union[Album, Media]:
        """
        Resolve a share token to exactly one album or media.

        Checks run in order: unknown token, expiry, password, target.
        An expired token fails with ExpiredError even when the password is wrong.

        Raises:
            NotFoundError: Unknown token, or its target is gone
            ExpiredError: Token expiry is in the past
            UnauthorizedError: Password missing or wrong
        """
        share_token = self.catalog.share_tokens.get_token(token)
        if share_token is None:
            raise NotFoundError("Share token not found")

        expire = _as_utc(share_token.expire)
        if expire is not None and expire <= datetime.now(timezone.utc):
            raise ExpiredError("Share token has expired", expire=expire.isoformat())

        if share_token.has_password:
            password_hash = self.catalog.share_tokens.get_password_hash(token)
            if not password or not verify_password(password, password_hash):
                raise UnauthorizedError("Share token password is missing or wrong")

        return self._resolve_target(share_token.target)

    def _resolve_target(self, target: ShareTarget) -> Union[Album, Media]:
        if isinstance(target, AlbumTarget):
            entity = self.catalog.albums.get_album(target.album_id)
        elif isinstance(target, MediaTarget):
            entity = self.catalog.media.get_media(target.media_id, with_details=True)
        else:
            raise InvalidArgumentError("Unknown share target", target=repr(target))

        if entity is None or entity.status != EntityStatus.PRESENT:
            raise NotFoundError("Share token target is gone", target=repr(target))
        return entity

    def _resolve_owned_target(self, user_id: str, target: ShareTarget, allow_missing: bool = False):
        if isinstance(target, AlbumTarget):
            entity = self.catalog.get_album(target.album_id, user_id)
        elif isinstance(target, MediaTarget):
            entity = self.catalog.get_media(target.media_id, user_id, with_details=False)
        else:
            raise InvalidArgumentError("Unknown share target", target=repr(target))

        if not allow_missing and entity.status != EntityStatus.PRESENT:
            raise NotFoundError("Share target is gone", target=repr(target))
        return entity

    def _get_owned_token(self, user_id: str, token: str) -> ShareToken:
        share_token = self.catalog.share_tokens.get_token(token)
        if share_token is None:
            raise NotFoundError("Share token not found")
        if share_token.owner_id != user_id:
            raise ForbiddenError("Share token belongs to another user")
        return share_token
