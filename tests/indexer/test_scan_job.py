"""Tests for a single user's scan job."""

import os
import shutil
from datetime import datetime, timedelta

import pytest
from PIL import ExifTags, Image
from PIL.TiffImagePlugin import IFDRational

from conftest import FakeFaceDetector, detected_face
from mediavault.common import normalize_path
from mediavault.indexer.models import EntityStatus, JobState, MediaPurpose, MediaType, ThumbnailFilter


def media_at(catalog, user, path):
    return catalog.media.get_media_by_path(user.user_id, normalize_path(path))


@pytest.fixture
def library_2023(photos_root, make_jpeg):
    """/photos/2023/a.jpg and /photos/2023/b.jpg."""
    a = make_jpeg(photos_root / "2023" / "a.jpg", color='red')
    b = make_jpeg(photos_root / "2023" / "b.jpg", color='blue')
    return a, b


class TestInitialScan:
    """Tests for the first scan of a root path."""

    def test_creates_albums_and_media(self, catalog, user, photos_root, library_2023, make_job):
        root = catalog.user_add_root_path(user.user_id, photos_root)
        job = make_job(user.user_id)

        result = job.run()

        assert result.finished
        assert result.success
        assert job.state == JobState.FINISHED
        assert job.progress == 1.0
        assert job.statistics.new_files == 2

        children = catalog.list_child_albums(root.album_id)
        assert [album.title for album in children] == ["2023"]
        media = catalog.list_album_media(children[0].album_id)
        assert sorted(m.title for m in media) == ["a.jpg", "b.jpg"]
        assert all(m.media_type == MediaType.PHOTO for m in media)
        assert all(m.status == EntityStatus.PRESENT for m in media)

    def test_media_records_derived_assets(self, catalog, user, photos_root, library_2023, make_job):
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()

        record = media_at(catalog, user, library_2023[0])
        media = catalog.get_media(record.media_id)

        assert media.width == 64
        assert media.height == 48
        assert media.blurhash
        original = media.url(MediaPurpose.ORIGINAL)
        thumbnail = media.url(MediaPurpose.THUMBNAIL)
        assert original.file_path == str(library_2023[0])
        assert thumbnail is not None
        assert os.path.exists(thumbnail.file_path)
        # JPEG is web compatible, so no high-res preview
        assert media.url(MediaPurpose.HIGHRES) is None

    def test_capture_date_from_exif(self, catalog, user, photos_root, make_jpeg, make_job):
        shot = datetime(2023, 5, 1, 12, 30, 0)
        path = make_jpeg(photos_root / "shot.jpg", date_shot=shot, make="Canon")
        catalog.user_add_root_path(user.user_id, photos_root)

        make_job(user.user_id).run()

        media = catalog.get_media(media_at(catalog, user, path).media_id)
        assert media.capture_timestamp == shot
        assert media.exif.maker == "Canon"

    def test_skips_hidden_and_nomedia(self, catalog, user, photos_root, make_jpeg, make_job):
        make_jpeg(photos_root / "visible.jpg")
        make_jpeg(photos_root / ".hidden.jpg")
        make_jpeg(photos_root / "private" / "secret.jpg")
        (photos_root / "private" / ".nomedia").touch()
        (photos_root / "notes.txt").write_text("not media")
        catalog.user_add_root_path(user.user_id, photos_root)

        job = make_job(user.user_id)
        job.run()

        assert job.statistics.new_files == 1
        assert catalog.media.count_media(user.user_id) == 1

    def test_unreadable_file_is_a_warning(self, catalog, user, photos_root, make_jpeg, make_job):
        make_jpeg(photos_root / "good.jpg")
        (photos_root / "broken.jpg").write_bytes(b"definitely not a jpeg")
        catalog.user_add_root_path(user.user_id, photos_root)

        job = make_job(user.user_id)
        result = job.run()

        assert result.success
        assert job.statistics.new_files == 1
        assert job.statistics.error_files == 1
        assert any(w.startswith("broken.jpg") for w in job.warnings)
        assert "broken.jpg" in result.message

        scan_run = catalog.scan_runs.get_latest_scan_run(user.user_id)
        assert scan_run['status'] == 'completed'
        errors = catalog.processing_errors.get_errors_by_scan(scan_run['scan_run_id'])
        assert len(errors) == 1
        assert errors[0]['error_category'] == 'unsupported'


    def test_malformed_gps_between_good_photos(self, catalog, user, photos_root, make_jpeg, make_job):
        make_jpeg(photos_root / "2023" / "a.jpg")
        odd = photos_root / "2023" / "b.jpg"
        exif = Image.Exif()
        exif[ExifTags.IFD.GPSInfo] = {
            ExifTags.GPS.GPSLatitudeRef: 'N',
            ExifTags.GPS.GPSLatitude: IFDRational(5, 1),
        }
        Image.new('RGB', (64, 48), color='green').save(odd, 'JPEG', exif=exif)
        make_jpeg(photos_root / "2023" / "c.jpg")
        catalog.user_add_root_path(user.user_id, photos_root)

        job = make_job(user.user_id)
        result = job.run()

        assert result.success
        assert job.statistics.new_files == 3
        assert job.statistics.error_files == 0
        record = media_at(catalog, user, odd)
        exif_record = catalog.media.get_exif(record.media_id)
        assert exif_record is None or exif_record.gps_latitude is None
        assert media_at(catalog, user, photos_root / "2023" / "c.jpg") is not None

    def test_unexpected_error_skips_only_that_file(self, catalog, user, photos_root, library_2023, make_jpeg,
                                                   make_job, monkeypatch):
        make_jpeg(photos_root / "2023" / "c.jpg")
        catalog.user_add_root_path(user.user_id, photos_root)
        job = make_job(user.user_id)
        extract = job.extractor.extract

        def flaky_extract(file_path, *args, **kwargs):
            if file_path.name == "b.jpg":
                raise KeyError("unexpected tag layout")
            return extract(file_path, *args, **kwargs)

        monkeypatch.setattr(job.extractor, 'extract', flaky_extract)
        result = job.run()

        assert result.success
        assert job.statistics.new_files == 2
        assert job.statistics.error_files == 1
        assert media_at(catalog, user, library_2023[1]) is None
        assert media_at(catalog, user, photos_root / "2023" / "c.jpg") is not None
        assert "b.jpg" in result.message


class TestRescan:
    """Tests for change detection and tombstoning."""

    def test_rescan_is_idempotent(self, catalog, user, photos_root, library_2023, make_job):
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        before = {m.media_id for m in catalog.media.list_timeline_media(user.user_id)}

        job = make_job(user.user_id)
        job.run()

        after = {m.media_id for m in catalog.media.list_timeline_media(user.user_id)}
        assert before == after
        assert job.statistics.new_files == 0
        assert job.statistics.changed_files == 0
        assert job.statistics.unchanged_files == 2
        assert job.statistics.missing_files == 0

    def test_deleted_file_is_tombstoned(self, catalog, user, photos_root, library_2023, make_job):
        a, b = library_2023
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        b_id = media_at(catalog, user, b).media_id

        b.unlink()
        job = make_job(user.user_id)
        job.run()

        assert job.statistics.missing_files == 1
        assert media_at(catalog, user, a).status == EntityStatus.PRESENT
        tombstone = catalog.get_media(b_id)
        assert tombstone.status == EntityStatus.MISSING

    def test_restored_file_keeps_its_identity(self, catalog, user, photos_root, library_2023, make_job):
        _, b = library_2023
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        b_id = media_at(catalog, user, b).media_id
        backup = b.read_bytes()
        stat = b.stat()

        b.unlink()
        make_job(user.user_id).run()
        b.write_bytes(backup)
        os.utime(b, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        make_job(user.user_id).run()

        restored = media_at(catalog, user, b)
        assert restored.media_id == b_id
        assert restored.status == EntityStatus.PRESENT

    def test_deleted_directory_is_tombstoned(self, catalog, user, photos_root, library_2023, make_job):
        root = catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        album_id = catalog.list_child_albums(root.album_id)[0].album_id

        shutil.rmtree(photos_root / "2023")
        job = make_job(user.user_id)
        job.run()

        assert job.statistics.missing_albums == 1
        assert catalog.get_album(album_id).status == EntityStatus.MISSING
        assert catalog.list_child_albums(root.album_id) == []

    def test_deleted_nested_directories_are_counted_once(self, catalog, user, photos_root, library_2023,
                                                         make_jpeg, make_job):
        make_jpeg(photos_root / "2023" / "trip" / "c.jpg")
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()

        shutil.rmtree(photos_root / "2023")
        first = make_job(user.user_id)
        first.run()
        second = make_job(user.user_id)
        second.run()

        assert first.statistics.missing_albums == 2
        assert first.statistics.missing_files == 3
        assert second.statistics.missing_albums == 0

    def test_changed_file_is_reindexed(self, catalog, user, photos_root, library_2023, make_jpeg, make_job):
        a, _ = library_2023
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        original = media_at(catalog, user, a)

        make_jpeg(a, size=(80, 40), color='green')
        stat = a.stat()
        os.utime(a, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
        job = make_job(user.user_id)
        job.run()

        updated = media_at(catalog, user, a)
        assert job.statistics.changed_files == 1
        assert job.statistics.unchanged_files == 1
        assert updated.media_id == original.media_id
        assert updated.fingerprint != original.fingerprint
        assert (updated.width, updated.height) == (80, 40)

    def test_unreachable_root_is_left_untouched(self, catalog, user, photos_root, library_2023, make_job):
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()

        shutil.rmtree(photos_root)
        job = make_job(user.user_id)
        result = job.run()

        assert result.success
        assert any("unreachable" in w for w in job.warnings)
        assert job.statistics.missing_files == 0
        assert catalog.media.count_media(user.user_id) == 2

    def test_regenerate_thumbnails(self, catalog, user, photos_root, library_2023, make_job, thumbnails):
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        media = media_at(catalog, user, library_2023[0])
        thumbnail = thumbnails.asset_path(media.album_id, media.media_id, MediaPurpose.THUMBNAIL)
        thumbnail.unlink()

        job = make_job(user.user_id, regenerate_thumbnails=True)
        job.run()

        assert job.statistics.regenerated_files == 2
        assert job.statistics.unchanged_files == 2
        assert thumbnail.exists()


    def test_regeneration_replaces_assets(self, catalog, user, photos_root, library_2023, make_job, thumbnails):
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        media = media_at(catalog, user, library_2023[0])

        make_job(user.user_id, regenerate_thumbnails=True).run()
        first = catalog.get_media(media.media_id).url(MediaPurpose.THUMBNAIL)
        make_job(user.user_id, regenerate_thumbnails=True).run()
        second = catalog.get_media(media.media_id).url(MediaPurpose.THUMBNAIL)
        assert second.file_size == first.file_size

        thumbnails.set_filter(ThumbnailFilter.BOX)
        make_job(user.user_id, regenerate_thumbnails=True).run()

        urls = catalog.media.get_urls(media.media_id)
        assert [url.purpose for url in urls].count(MediaPurpose.THUMBNAIL) == 1
        assert len(list(thumbnails.asset_dir(media.album_id, media.media_id).iterdir())) == 1


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_before_run(self, catalog, user, photos_root, library_2023, make_job):
        catalog.user_add_root_path(user.user_id, photos_root)
        job = make_job(user.user_id)
        job.cancel()

        result = job.run()

        assert result.finished
        assert not result.success
        assert result.message == "Scan cancelled after 0 files"
        assert catalog.scan_runs.get_latest_scan_run(user.user_id)['status'] == 'cancelled'

    def test_cancelled_scan_does_not_tombstone(self, catalog, user, photos_root, make_jpeg, make_job):
        for name in ("a.jpg", "b.jpg", "c.jpg"):
            make_jpeg(photos_root / name)
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()

        def cancel_after_first_file(job):
            if job.statistics.processed >= 1:
                job.cancel()

        job = make_job(user.user_id, progress_interval=1, on_progress=cancel_after_first_file)
        result = job.run()

        assert not result.success
        assert job.statistics.processed == 1
        assert catalog.media.count_media(user.user_id) == 3
        assert catalog.media.count_media(user.user_id, status='missing') == 0


class TestFaces:
    """Tests for face detection during scans."""

    def test_same_person_joins_one_group(self, catalog, user, photos_root, library_2023, make_job):
        detector = FakeFaceDetector([detected_face(1.0, 0.0)])
        catalog.user_add_root_path(user.user_id, photos_root)

        make_job(user.user_id, face_detector=detector).run()

        groups = catalog.list_face_groups(user.user_id)
        assert detector.calls == 2
        assert len(groups) == 1
        assert len(groups[0].image_faces) == 2

    def test_detector_failure_keeps_file(self, catalog, user, photos_root, library_2023, make_job):
        detector = FakeFaceDetector(error=RuntimeError("model exploded"))
        catalog.user_add_root_path(user.user_id, photos_root)

        job = make_job(user.user_id, face_detector=detector)
        result = job.run()

        assert result.success
        assert job.statistics.new_files == 2
        assert catalog.list_face_groups(user.user_id) == []
        assert any("face detection failed" in w for w in job.warnings)

    def test_unexpected_detector_error_keeps_file(self, catalog, user, photos_root, library_2023, make_job):
        detector = FakeFaceDetector(error=TypeError("unexpected tensor shape"))
        catalog.user_add_root_path(user.user_id, photos_root)

        job = make_job(user.user_id, face_detector=detector)
        result = job.run()

        assert result.success
        assert job.statistics.new_files == 2
        assert job.statistics.error_files == 0


class TestPurge:
    """Tests for purging tombstones found by scans."""

    def test_purge_removes_tombstones(self, catalog, user, photos_root, library_2023, make_job):
        _, b = library_2023
        catalog.user_add_root_path(user.user_id, photos_root)
        make_job(user.user_id).run()
        b.unlink()
        make_job(user.user_id).run()

        assert catalog.purge_missing(timedelta(days=1)) == []
        removed = catalog.purge_missing(timedelta(0))

        assert len(removed) == 1
        assert catalog.media.count_media(user.user_id, status='missing') == 0
        assert catalog.media.count_media(user.user_id) == 1
