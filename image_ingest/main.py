"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from image_ingest.api.routes import router
from image_ingest.config import CORS_ORIGINS, DEBUG, logger as config_logger
from image_ingest.db import init_db
from image_ingest.exceptions import ImageProcessingError

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    config_logger.info("Image ingest API started")
    yield
    config_logger.info("Image ingest API shutting down")


app = FastAPI(
    title="Device Image Ingest API",
    description="Validate, compress, ratio-check and store product images per device.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def image_processing_error_handler(request: Request, exc: ImageProcessingError):
    # 422 for rejected input, 500 for storage and unexpected failures
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(debug=DEBUG))


app.add_exception_handler(ImageProcessingError, image_processing_error_handler)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    from image_ingest.config import HOST, PORT
    uvicorn.run("image_ingest.main:app", host=HOST, port=PORT, reload=True)
