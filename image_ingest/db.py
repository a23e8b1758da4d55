"""Image record bookkeeping. SQLite by default; set DATABASE_URL for MySQL or SQL Server.
Startup ensures the product_images table exists; on connection failure logs verbosely and falls back to in-memory SQLite so the app can start."""
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from image_ingest import config as app_config
from image_ingest.compression.models import CompressionLevel, DeviceClass, ImageType
from image_ingest.pipeline import ImageVariant
from image_ingest.utils import format_file_size

logger = logging.getLogger("ingest.db")

_engine: Optional[Engine] = None

REQUIRED_TABLES = ("product_images",)

_COLUMNS = (
    "id, product_id, image_path, alt_text, sort_order, image_type, device_type, "
    "aspect_ratio, image_dimensions, created_at, updated_at, deleted_at"
)


def _is_sqlite() -> bool:
    return "sqlite" in app_config.DATABASE_URL


def _is_mysql() -> bool:
    return "mysql" in app_config.DATABASE_URL


def _db_kind() -> str:
    if _is_mysql():
        return "MySQL"
    if _is_sqlite():
        return "SQLite"
    return "SQL Server"


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        kwargs = {}
        if _is_sqlite():
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in app_config.DATABASE_URL:
                # one shared connection, otherwise every checkout sees an empty database
                kwargs["poolclass"] = StaticPool
        _engine = create_engine(app_config.DATABASE_URL, **kwargs)
        logger.info("Database engine created (%s)", _db_kind())
    return _engine


def reset_engine() -> None:
    """Drop the cached engine so the next call picks up a changed DATABASE_URL."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def _create_sqlite_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS product_images (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            product_id INTEGER NOT NULL,
            image_path TEXT NOT NULL,
            alt_text TEXT,
            sort_order INTEGER NOT NULL DEFAULT 0,
            image_type TEXT NOT NULL,
            device_type TEXT NOT NULL,
            aspect_ratio REAL,
            image_dimensions TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            deleted_at TEXT
        )
    """))
    conn.execute(text(
        "CREATE INDEX IF NOT EXISTS idx_product_images_device ON product_images (product_id, device_type, sort_order)"
    ))
    conn.commit()


def _create_mysql_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS product_images (
            id BIGINT AUTO_INCREMENT PRIMARY KEY,
            product_id BIGINT NOT NULL,
            image_path VARCHAR(512) NOT NULL,
            alt_text VARCHAR(255),
            sort_order INT NOT NULL DEFAULT 0,
            image_type VARCHAR(20) NOT NULL,
            device_type VARCHAR(20) NOT NULL,
            aspect_ratio DECIMAL(5, 2),
            image_dimensions TEXT,
            created_at VARCHAR(50) NOT NULL,
            updated_at VARCHAR(50) NOT NULL,
            deleted_at VARCHAR(50),
            INDEX idx_product_images_device (product_id, device_type, sort_order)
        )
    """))
    conn.commit()


def _create_sqlserver_tables(conn) -> None:
    conn.execute(text("""
        IF NOT EXISTS (SELECT * FROM sys.tables WHERE name = 'product_images')
        CREATE TABLE product_images (
            id BIGINT IDENTITY(1,1) PRIMARY KEY,
            product_id BIGINT NOT NULL,
            image_path NVARCHAR(512) NOT NULL,
            alt_text NVARCHAR(255),
            sort_order INT NOT NULL DEFAULT 0,
            image_type NVARCHAR(20) NOT NULL,
            device_type NVARCHAR(20) NOT NULL,
            aspect_ratio DECIMAL(5, 2),
            image_dimensions NVARCHAR(MAX),
            created_at NVARCHAR(50) NOT NULL,
            updated_at NVARCHAR(50) NOT NULL,
            deleted_at NVARCHAR(50)
        )
    """))
    conn.commit()


def _ensure_tables(engine: Engine) -> None:
    """Create required tables if they do not exist."""
    with engine.connect() as conn:
        if _is_sqlite():
            _create_sqlite_tables(conn)
        elif _is_mysql():
            _create_mysql_tables(conn)
        else:
            _create_sqlserver_tables(conn)
    logger.info("Required tables ensured: %s", ", ".join(REQUIRED_TABLES))


def init_db() -> None:
    """Prepare database at startup. On failure, fall back to in-memory SQLite so the app can start."""
    kind = _db_kind()
    logger.info("Database init: preparing %s (tables: %s)", kind, ", ".join(REQUIRED_TABLES))
    try:
        engine = get_engine()
        _ensure_tables(engine)
        logger.info("Database ready: %s", kind)
        return
    except OperationalError as e:
        logger.warning("Database connection failed (%s): %s. Trying in-memory SQLite.", kind, e.orig, exc_info=True)

    # Last resort: image records will not persist across restarts
    app_config.DATABASE_URL = "sqlite:///:memory:"
    reset_engine()
    _ensure_tables(get_engine())
    logger.warning("Database unavailable. Using in-memory SQLite. Image records will not persist across restarts.")


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_variant(row) -> ImageVariant:
    dims = json.loads(row[8]) if row[8] else {}
    return ImageVariant(
        id=row[0],
        product_id=row[1],
        image_path=row[2],
        alt_text=row[3],
        sort_order=row[4],
        image_type=ImageType(row[5]),
        device_type=DeviceClass(row[6]),
        aspect_ratio=float(row[7]) if row[7] is not None else 0.0,
        width=dims.get("width", 0),
        height=dims.get("height", 0),
        original_size=dims.get("original_size", 0),
        compressed_size=dims.get("compressed_size", 0),
        compression_ratio=dims.get("compression_ratio", 0.0),
        compression_level=CompressionLevel(dims.get("compression_level", CompressionLevel.LOSSLESS.value)),
        quality_used=dims.get("quality_used"),
        deleted_at=row[11],
    )


def _enforce_thumbnail_rules(conn, variant: ImageVariant) -> None:
    """One live thumbnail per product and device; the first live image becomes it."""
    if variant.image_type != ImageType.THUMBNAIL:
        live = conn.execute(
            text("SELECT COUNT(*) FROM product_images WHERE product_id = :pid AND device_type = :device AND deleted_at IS NULL"),
            {"pid": variant.product_id, "device": variant.device_type.value},
        ).scalar()
        if live > 1:
            return
        conn.execute(
            text("UPDATE product_images SET image_type = :thumb WHERE id = :id"),
            {"thumb": ImageType.THUMBNAIL.value, "id": variant.id},
        )
        variant.image_type = ImageType.THUMBNAIL
    conn.execute(
        text("""
            UPDATE product_images SET image_type = :gallery, updated_at = :now
            WHERE product_id = :pid AND device_type = :device AND image_type = :thumb AND id != :id AND deleted_at IS NULL
        """),
        {
            "gallery": ImageType.GALLERY.value,
            "thumb": ImageType.THUMBNAIL.value,
            "now": _now_iso(),
            "pid": variant.product_id,
            "device": variant.device_type.value,
            "id": variant.id,
        },
    )


def _insert_image(conn, variant: ImageVariant) -> None:
    now = _now_iso()
    params = {
        "product_id": variant.product_id,
        "image_path": variant.image_path,
        "alt_text": variant.alt_text,
        "sort_order": variant.sort_order,
        "image_type": variant.image_type.value,
        "device_type": variant.device_type.value,
        "aspect_ratio": variant.aspect_ratio,
        "image_dimensions": json.dumps(variant.image_dimensions),
        "now": now,
    }
    result = conn.execute(
        text("""
            INSERT INTO product_images (product_id, image_path, alt_text, sort_order, image_type, device_type, aspect_ratio, image_dimensions, created_at, updated_at)
            VALUES (:product_id, :image_path, :alt_text, :sort_order, :image_type, :device_type, :aspect_ratio, :image_dimensions, :now, :now)
        """),
        params,
    )
    variant.id = result.lastrowid
    _enforce_thumbnail_rules(conn, variant)


def save_image(variant: ImageVariant) -> ImageVariant:
    """Insert the record and set ``variant.id``."""
    save_images([variant])
    return variant


def save_images(variants: list[ImageVariant]) -> list[ImageVariant]:
    """Insert all records in one transaction: either every record is saved or none is."""
    original_types = [v.image_type for v in variants]
    try:
        with session() as conn:
            for variant in variants:
                _insert_image(conn, variant)
    except Exception:
        for variant, image_type in zip(variants, original_types):
            variant.id = None
            variant.image_type = image_type
        raise
    for variant in variants:
        logger.info("Saved image record %s for product %s (%s)", variant.id, variant.product_id, variant.image_path)
    return variants


def get_image(image_id: int, include_deleted: bool = False) -> Optional[ImageVariant]:
    sql = f"SELECT {_COLUMNS} FROM product_images WHERE id = :id"
    if not include_deleted:
        sql += " AND deleted_at IS NULL"
    with get_engine().connect() as conn:
        row = conn.execute(text(sql), {"id": image_id}).fetchone()
    return _row_to_variant(row) if row else None


def get_images_for_device(product_id: int, device_type: str, image_type: Optional[str] = None) -> list[ImageVariant]:
    """Live images for a product and device, ordered by sort_order."""
    sql = f"SELECT {_COLUMNS} FROM product_images WHERE product_id = :pid AND device_type = :device AND deleted_at IS NULL"
    params = {"pid": product_id, "device": device_type}
    if image_type:
        sql += " AND image_type = :itype"
        params["itype"] = image_type
    sql += " ORDER BY sort_order, id"
    with get_engine().connect() as conn:
        rows = conn.execute(text(sql), params).fetchall()
    return [_row_to_variant(r) for r in rows]


def get_images_for_product(product_id: int) -> list[ImageVariant]:
    with get_engine().connect() as conn:
        rows = conn.execute(
            text(f"SELECT {_COLUMNS} FROM product_images WHERE product_id = :pid AND deleted_at IS NULL ORDER BY device_type, sort_order, id"),
            {"pid": product_id},
        ).fetchall()
    return [_row_to_variant(r) for r in rows]


def get_thumbnail_for_device(product_id: int, device_type: str) -> Optional[ImageVariant]:
    images = get_images_for_device(product_id, device_type, ImageType.THUMBNAIL.value)
    return images[0] if images else None


def update_sort_order(image_id: int, sort_order: int) -> bool:
    with session() as conn:
        result = conn.execute(
            text("UPDATE product_images SET sort_order = :so, updated_at = :now WHERE id = :id AND deleted_at IS NULL"),
            {"so": sort_order, "now": _now_iso(), "id": image_id},
        )
        updated = result.rowcount > 0
        if updated:
            row = conn.execute(text(f"SELECT {_COLUMNS} FROM product_images WHERE id = :id"), {"id": image_id}).fetchone()
            variant = _row_to_variant(row)
            if variant.image_type == ImageType.THUMBNAIL:
                _enforce_thumbnail_rules(conn, variant)
    return updated


def soft_delete_image(image_id: int) -> bool:
    now = _now_iso()
    with session() as conn:
        result = conn.execute(
            text("UPDATE product_images SET deleted_at = :now, updated_at = :now WHERE id = :id AND deleted_at IS NULL"),
            {"now": now, "id": image_id},
        )
        updated = result.rowcount > 0
    return updated


def delete_image_record(image_id: int) -> bool:
    with session() as conn:
        result = conn.execute(text("DELETE FROM product_images WHERE id = :id"), {"id": image_id})
        deleted = result.rowcount > 0
    return deleted


def get_upload_stats(product_id: int) -> dict:
    """Aggregate compression statistics over a product's live images."""
    images = get_images_for_product(product_id)
    total_original = sum(i.original_size for i in images)
    total_compressed = sum(i.compressed_size for i in images)
    compression_ratio = 0.0
    if total_original > 0:
        compression_ratio = round((total_original - total_compressed) / total_original * 100, 2)
    return {
        "total_images": len(images),
        "mobile_images": sum(1 for i in images if i.device_type == DeviceClass.MOBILE),
        "desktop_images": sum(1 for i in images if i.device_type == DeviceClass.DESKTOP),
        "total_original_size": total_original,
        "total_compressed_size": total_compressed,
        "total_savings": total_original - total_compressed,
        "compression_ratio": compression_ratio,
        "total_original_size_formatted": format_file_size(total_original),
        "total_compressed_size_formatted": format_file_size(total_compressed),
        "total_savings_formatted": format_file_size(total_original - total_compressed),
    }
