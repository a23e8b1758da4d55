"""
Tests for image record bookkeeping against a throwaway SQLite file.
"""
from unittest.mock import patch

import pytest
from sqlalchemy import text

from image_ingest import config as app_config
from image_ingest import db
from image_ingest.compression.models import CompressionLevel, DeviceClass, ImageType
from image_ingest.pipeline import ImageVariant


@pytest.fixture
def database(tmp_path, monkeypatch):
    monkeypatch.setattr(app_config, "DATABASE_URL", f"sqlite:///{tmp_path / 'images.db'}")
    db.reset_engine()
    db.init_db()
    yield
    db.reset_engine()


def make_variant(product_id=1, device=DeviceClass.MOBILE, image_type=ImageType.GALLERY, sort_order=0, **kwargs):
    values = dict(
        product_id=product_id,
        image_path=f"images/product_{product_id}_{device.value}_{image_type.value}_{sort_order}.jpg",
        device_type=device,
        image_type=image_type,
        aspect_ratio=0.8 if device == DeviceClass.MOBILE else 1.78,
        width=400,
        height=500,
        original_size=1000,
        compressed_size=600,
        compression_ratio=40.0,
        compression_level=CompressionLevel.MODERATE,
        quality_used=85,
        sort_order=sort_order,
        alt_text=f"Product image for {device.value}",
    )
    values.update(kwargs)
    return ImageVariant(**values)


@pytest.mark.usefixtures("database")
class TestImageRecords:
    """Tests for save / query / update / delete."""

    def test_save_assigns_id_and_round_trips(self):
        saved = db.save_image(make_variant())
        assert saved.id is not None
        loaded = db.get_image(saved.id)
        assert loaded.image_path == saved.image_path
        assert loaded.device_type == DeviceClass.MOBILE
        # the first live image for a product and device becomes its thumbnail
        assert loaded.image_type == ImageType.THUMBNAIL
        assert saved.image_type == ImageType.THUMBNAIL
        assert loaded.image_dimensions == saved.image_dimensions
        assert loaded.alt_text == "Product image for mobile"

    def test_missing_image(self):
        assert db.get_image(999) is None

    def test_device_listing_ordered_by_sort_order(self):
        db.save_image(make_variant(sort_order=2))
        db.save_image(make_variant(sort_order=0))
        db.save_image(make_variant(sort_order=1))
        db.save_image(make_variant(device=DeviceClass.DESKTOP))
        db.save_image(make_variant(product_id=2))
        images = db.get_images_for_device(1, "mobile")
        assert [i.sort_order for i in images] == [0, 1, 2]

    def test_filter_by_image_type_and_thumbnail(self):
        db.save_image(make_variant(image_type=ImageType.GALLERY))
        thumb = db.save_image(make_variant(image_type=ImageType.THUMBNAIL, sort_order=1))
        assert [i.id for i in db.get_images_for_device(1, "mobile", "thumbnail")] == [thumb.id]
        assert db.get_thumbnail_for_device(1, "mobile").id == thumb.id
        assert db.get_thumbnail_for_device(1, "desktop") is None

    def test_product_listing_covers_both_devices(self):
        db.save_image(make_variant(device=DeviceClass.MOBILE))
        db.save_image(make_variant(device=DeviceClass.DESKTOP))
        assert {i.device_type for i in db.get_images_for_product(1)} == {DeviceClass.MOBILE, DeviceClass.DESKTOP}

    def test_update_sort_order(self):
        saved = db.save_image(make_variant())
        assert db.update_sort_order(saved.id, 5) is True
        assert db.get_image(saved.id).sort_order == 5
        assert db.update_sort_order(999, 1) is False

    def test_soft_delete_hides_record(self):
        saved = db.save_image(make_variant())
        assert db.soft_delete_image(saved.id) is True
        assert db.get_image(saved.id) is None
        assert db.get_image(saved.id, include_deleted=True).deleted_at is not None
        assert db.get_images_for_device(1, "mobile") == []
        assert db.soft_delete_image(saved.id) is False

    def test_hard_delete(self):
        saved = db.save_image(make_variant())
        assert db.delete_image_record(saved.id) is True
        assert db.get_image(saved.id, include_deleted=True) is None
        assert db.delete_image_record(saved.id) is False

    def test_upload_stats(self):
        db.save_image(make_variant(device=DeviceClass.MOBILE))
        db.save_image(make_variant(device=DeviceClass.DESKTOP, original_size=3000, compressed_size=1400))
        stats = db.get_upload_stats(1)
        assert stats == {
            "total_images": 2,
            "mobile_images": 1,
            "desktop_images": 1,
            "total_original_size": 4000,
            "total_compressed_size": 2000,
            "total_savings": 2000,
            "compression_ratio": 50.0,
            "total_original_size_formatted": "3.91 KB",
            "total_compressed_size_formatted": "1.95 KB",
            "total_savings_formatted": "1.95 KB",
        }

    def test_stats_for_unknown_product(self):
        assert db.get_upload_stats(404)["compression_ratio"] == 0.0


def failing_on_call(n, real):
    """Wrap ``real`` so its ``n``-th call raises."""
    calls = {"count": 0}

    def wrapper(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == n:
            raise RuntimeError("database went away")
        return real(*args, **kwargs)

    return wrapper


@pytest.mark.usefixtures("database")
class TestSaveImages:
    """Tests for the all-or-nothing batch insert."""

    def test_saves_every_record(self):
        variants = [make_variant(sort_order=i) for i in range(3)]
        db.save_images(variants)
        assert all(v.id is not None for v in variants)
        assert [i.sort_order for i in db.get_images_for_device(1, "mobile")] == [0, 1, 2]

    def test_failure_saves_nothing(self):
        variants = [make_variant(sort_order=i) for i in range(3)]
        with patch("image_ingest.db._insert_image", side_effect=failing_on_call(2, db._insert_image)):
            with pytest.raises(RuntimeError):
                db.save_images(variants)
        assert db.get_images_for_product(1) == []
        assert [v.id for v in variants] == [None, None, None]
        assert variants[0].image_type == ImageType.GALLERY


@pytest.mark.usefixtures("database")
class TestThumbnailRules:
    """One thumbnail per product and device; the first image becomes it."""

    def test_first_image_per_device_becomes_thumbnail(self):
        mobile = db.save_image(make_variant(device=DeviceClass.MOBILE))
        desktop = db.save_image(make_variant(device=DeviceClass.DESKTOP))
        later = db.save_image(make_variant(device=DeviceClass.MOBILE, sort_order=1))
        assert mobile.image_type == ImageType.THUMBNAIL
        assert desktop.image_type == ImageType.THUMBNAIL
        assert later.image_type == ImageType.GALLERY

    def test_new_thumbnail_demotes_previous(self):
        first = db.save_image(make_variant())
        second = db.save_image(make_variant(image_type=ImageType.THUMBNAIL, sort_order=1))
        assert db.get_image(first.id).image_type == ImageType.GALLERY
        assert db.get_thumbnail_for_device(1, "mobile").id == second.id

    def test_other_device_thumbnail_untouched(self):
        desktop = db.save_image(make_variant(device=DeviceClass.DESKTOP))
        db.save_image(make_variant(device=DeviceClass.MOBILE, image_type=ImageType.THUMBNAIL))
        assert db.get_image(desktop.id).image_type == ImageType.THUMBNAIL

    def test_soft_deleted_images_do_not_count(self):
        first = db.save_image(make_variant())
        db.soft_delete_image(first.id)
        replacement = db.save_image(make_variant(sort_order=1))
        assert replacement.image_type == ImageType.THUMBNAIL

    def test_update_sort_order_keeps_single_thumbnail(self):
        first = db.save_image(make_variant())
        second = db.save_image(make_variant(image_type=ImageType.THUMBNAIL, sort_order=1))
        # rows written outside save_image can hold a second thumbnail
        with db.session() as conn:
            conn.execute(
                text("UPDATE product_images SET image_type = 'thumbnail' WHERE id = :id"),
                {"id": first.id},
            )
        assert db.update_sort_order(second.id, 0) is True
        assert db.get_image(first.id).image_type == ImageType.GALLERY
        assert db.get_image(second.id).image_type == ImageType.THUMBNAIL


class TestInitDb:
    def test_falls_back_to_memory_when_unreachable(self, tmp_path, monkeypatch):
        # a directory path cannot be opened as a SQLite database file
        monkeypatch.setattr(app_config, "DATABASE_URL", f"sqlite:///{tmp_path}")
        db.reset_engine()
        try:
            db.init_db()
            assert app_config.DATABASE_URL == "sqlite:///:memory:"
            saved = db.save_image(make_variant())
            assert db.get_image(saved.id) is not None
        finally:
            db.reset_engine()
