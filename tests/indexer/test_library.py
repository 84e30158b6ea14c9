"""End-to-end tests of the MediaLibrary facade."""

from datetime import timedelta

import pytest

from mediavault.indexer.errors import NotFoundError
from mediavault.indexer.library import MediaLibrary
from mediavault.indexer.models import AlbumTarget, Album, MediaPurpose, ThumbnailFilter


@pytest.fixture
def scanned(library, photos_root, make_jpeg):
    """A started library with one user whose single photo has been scanned."""
    make_jpeg(photos_root / "trip" / "beach.jpg")
    user = library.create_user("alice")
    root = library.user_add_root_path(user.user_id, photos_root)
    library.start()
    job = library.scan_user(user.user_id)
    assert library.orchestrator.wait_idle(timeout=30)
    assert job.result.success
    return user, root


class TestLibrary:
    """Tests for wiring and settings."""

    def test_seeds_site_info_from_config(self, library):
        site_info = library.site_info()
        assert site_info.concurrent_workers == 2
        assert site_info.periodic_scan_interval == 0
        assert site_info.thumbnail_method == ThumbnailFilter.LANCZOS
        assert library.face_detector is None

    def test_persisted_settings_win_on_restart(self, library_config):
        first = MediaLibrary(library_config)
        first.set_thumbnail_downsample_method(ThumbnailFilter.BOX)
        first.close()

        second = MediaLibrary(library_config)
        try:
            assert second.site_info().thumbnail_method == ThumbnailFilter.BOX
            assert second.thumbnails.filter == ThumbnailFilter.BOX
        finally:
            second.close()

    def test_context_manager_starts_and_stops(self, library_config):
        with MediaLibrary(library_config) as library:
            assert library.orchestrator.scanner_status()['concurrent_workers'] == 2


class TestScanAndShare:
    """Tests for the scan, share and remove flow."""

    def test_scanned_media_is_shared(self, library, scanned):
        user, root = scanned
        album = library.catalog.list_child_albums(root.album_id)[0]
        token = library.create_share_token(user.user_id, AlbumTarget(album.album_id))

        target = library.validate_share_token(token.token)

        assert isinstance(target, Album)
        assert target.title == "trip"

    def test_remove_root_deletes_derived_files(self, library, scanned):
        user, root = scanned
        album = library.catalog.list_child_albums(root.album_id)[0]
        media = library.catalog.list_album_media(album.album_id)[0]
        thumbnail = library.thumbnails.asset_path(album.album_id, media.media_id, MediaPurpose.THUMBNAIL)
        assert thumbnail.exists()

        library.user_remove_root_album(user.user_id, root.album_id)

        assert not thumbnail.exists()
        with pytest.raises(NotFoundError):
            library.catalog.get_media(media.media_id)

    def test_purge_missing(self, library, scanned, photos_root):
        user, _ = scanned
        (photos_root / "trip" / "beach.jpg").unlink()
        library.scan_user(user.user_id)
        assert library.orchestrator.wait_idle(timeout=30)

        assert library.purge_missing(timedelta(0)) == 1
        assert library.catalog.media.count_media(user.user_id, status='missing') == 0
