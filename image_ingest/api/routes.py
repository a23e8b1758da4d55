"""API routes for device image analysis, upload and bookkeeping."""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, File, Form, HTTPException, Query, UploadFile

from image_ingest.compression.models import CompressionLevel, DeviceClass, ImageType, RawUpload
from image_ingest.compression.policy import COMPRESSION_LEVEL_INFO
from image_ingest.config import MAX_FILE_SIZE_BYTES, MAX_FILES_PER_UPLOAD, SUPPORTED_MIME_TYPES
from image_ingest.db import (
    delete_image_record,
    get_image,
    get_images_for_device,
    get_images_for_product,
    get_upload_stats,
    save_images,
    soft_delete_image,
    update_sort_order,
)
from image_ingest.exceptions import FileTooLarge
from image_ingest.pipeline import IngestionPipeline

logger = logging.getLogger("ingest.api")
router = APIRouter(prefix="/api/images", tags=["images"])

# Singleton
_pipeline: Optional[IngestionPipeline] = None


def get_pipeline() -> IngestionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = IngestionPipeline()
    return _pipeline


def set_pipeline(pipeline: Optional[IngestionPipeline]) -> None:
    """Swap the pipeline (e.g. in-memory stores for tests)."""
    global _pipeline
    _pipeline = pipeline


# uploads are read in chunks and rejected once past the size limit
READ_CHUNK_SIZE = 1024 * 1024


async def _read_upload(file: UploadFile, max_size: Optional[int] = None) -> RawUpload:
    name = file.filename or "upload"
    chunks = []
    total = 0
    while True:
        chunk = await file.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if max_size is not None and total > max_size:
            raise FileTooLarge(
                f"File size exceeds {max_size // (1024 * 1024)}MB limit: {name}",
                {"file_name": name, "bytes_read": total, "max_file_size": max_size},
            )
        chunks.append(chunk)
    return RawUpload(data=b"".join(chunks), filename=name, mime_type=file.content_type)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    return {
        "max_files_per_upload": MAX_FILES_PER_UPLOAD,
        "max_file_size_mb": MAX_FILE_SIZE_BYTES // (1024 * 1024),
        "max_file_size_bytes": MAX_FILE_SIZE_BYTES,
        "supported_mime_types": list(SUPPORTED_MIME_TYPES),
    }


@router.get("/compression-levels")
def get_compression_levels():
    policy = get_pipeline().compressor.policy
    return {
        "success": True,
        "data": {
            "compression_levels": {level.value: info for level, info in COMPRESSION_LEVEL_INFO.items()},
            "quality": {level.value: q for level, q in policy.settings.quality.items()},
            "png_effort": {level.value: e for level, e in policy.settings.png_effort.items()},
        },
    }


@router.get("/aspect-ratios")
def get_aspect_ratios():
    return {"success": True, "data": get_pipeline().aspect_policy.info()}


@router.post("/analyze")
async def analyze_image(
    file: UploadFile = File(...),
    device_type: str = Form(...),
):
    """Check ratio compatibility and suggest a compression level without storing anything."""
    raw = await _read_upload(file)
    pipeline = get_pipeline()
    report = await asyncio.to_thread(pipeline.analyze_for_upload, raw, device_type)
    return {"success": True, "data": report.to_dict()}


@router.post("/compression-preview")
async def compression_preview(
    file: UploadFile = File(...),
    compression_level: str = Form(CompressionLevel.LOSSLESS.value),
):
    pipeline = get_pipeline()
    raw = await _read_upload(file, pipeline.validator.settings.max_file_size)
    preview = await asyncio.to_thread(pipeline.compression_preview, raw, compression_level)
    return {"success": True, "data": preview}


@router.post("/upload")
async def upload_device_images(
    files: list[UploadFile] = File(...),
    product_id: int = Form(...),
    device_type: str = Form(...),
    image_type: str = Form(ImageType.GALLERY.value),
    compression_level: str = Form(CompressionLevel.LOSSLESS.value),
):
    """Compress, ratio-check and store several images for one device. Per-file failures are reported, not raised."""
    if len(files) > MAX_FILES_PER_UPLOAD:
        raise HTTPException(400, f"Max {MAX_FILES_PER_UPLOAD} images per upload")
    # fail fast on bad options before reading any file
    device = DeviceClass.parse(device_type)
    itype = ImageType.parse(image_type)
    level = CompressionLevel.parse(compression_level)

    pipeline = get_pipeline()
    max_size = pipeline.validator.settings.max_file_size
    start_sort_order = len(get_images_for_device(product_id, device.value))
    # an oversized file rejects the whole request before anything is processed
    raws = [await _read_upload(f, max_size) for f in files]
    outcome = await asyncio.to_thread(
        pipeline.ingest_many, raws, product_id, device, itype, level, start_sort_order
    )
    try:
        save_images(outcome.results)
    except Exception as e:
        logger.exception("Could not save image records for product %s: %s", product_id, e)
        for variant in outcome.results:
            pipeline.delete_image(variant)
        raise HTTPException(500, f"Upload rolled back, image records could not be saved: {e}")
    body = outcome.to_dict()
    body["success"] = bool(outcome.results)
    body["message"] = f"Uploaded {len(outcome.results)} of {len(files)} images for {device.value}"
    return body


@router.post("/upload-variants")
async def upload_with_variants(
    file: UploadFile = File(...),
    product_id: int = Form(...),
    image_type: str = Form(ImageType.GALLERY.value),
    compression_level: str = Form(CompressionLevel.LOSSLESS.value),
):
    """Store an optimized original plus mobile portrait, mobile square and desktop landscape crops."""
    pipeline = get_pipeline()
    raw = await _read_upload(file, pipeline.validator.settings.max_file_size)
    renditions = await asyncio.to_thread(
        pipeline.ingest_with_variants, raw, product_id, image_type, compression_level
    )
    return {"success": True, "data": renditions.to_dict()}


@router.get("/products/{product_id}")
def list_product_images(
    product_id: int,
    device_type: Optional[str] = Query(None, description="mobile | desktop"),
    image_type: Optional[str] = Query(None, description="thumbnail | gallery | hero"),
):
    if device_type:
        device = DeviceClass.parse(device_type)
        itype = ImageType.parse(image_type).value if image_type else None
        images = get_images_for_device(product_id, device.value, itype)
    else:
        images = get_images_for_product(product_id)
    return {"success": True, "data": [i.to_dict() for i in images]}


@router.get("/products/{product_id}/stats")
def product_upload_stats(product_id: int):
    return {"success": True, "data": get_upload_stats(product_id)}


@router.patch("/{image_id}/sort-order")
def change_sort_order(image_id: int, sort_order: int = Body(..., embed=True, ge=0)):
    if not update_sort_order(image_id, sort_order):
        raise HTTPException(404, "Image not found")
    return {"success": True, "data": {"id": image_id, "sort_order": sort_order}}


@router.delete("/{image_id}")
def delete_image(image_id: int, soft: bool = Query(False, description="Keep files, mark record deleted")):
    """Delete an image record and both stored copies, or only mark it deleted with ?soft=true."""
    image = get_image(image_id)
    if image is None:
        raise HTTPException(404, "Image not found")
    if soft:
        soft_delete_image(image_id)
        return {"success": True, "message": "Image marked deleted"}
    if not get_pipeline().delete_image(image):
        logger.warning("Some copies of %s could not be removed", image.image_path)
    delete_image_record(image_id)
    return {"success": True, "message": "Image deleted"}
