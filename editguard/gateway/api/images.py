"""Image upload and ground-truth analysis endpoints.

- POST /api/v1/images -> store raw image bytes, return a reference
- GET /api/v1/images/{image_ref}/analysis -> flat ground-truth summary
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from editguard.analysis.imaging import decode_image
from editguard.analysis.summary import format_summary, summarize
from editguard.shared.errors import ValidationError

if TYPE_CHECKING:
    from editguard.analysis.analyzer import GroundTruthAnalyzer
    from editguard.ports.image_store_port import ImageStorePort

logger = logging.getLogger(__name__)

# Max upload size: 50MB
MAX_IMAGE_SIZE = 50 * 1024 * 1024


class ImageUploadResponse(BaseModel):
    image_ref: str
    width: int
    height: int
    format: str
    size_bytes: int


class ImageAnalysisResponse(BaseModel):
    image_ref: str
    summary: dict[str, Any]
    description: str


def create_image_router(*, images: ImageStorePort, analyzer: GroundTruthAnalyzer) -> APIRouter:
    """Create image API router with injected store and analyzer."""
    router = APIRouter(prefix="/api/v1/images", tags=["images"])

    @router.post("", response_model=ImageUploadResponse, status_code=201)
    async def upload_image(request: Request) -> ImageUploadResponse:
        """Store the request body as an image; rejects bytes that do not decode."""
        data = await request.body()
        if not data:
            raise ValidationError("Request body is empty", field="body")
        if len(data) > MAX_IMAGE_SIZE:
            raise ValidationError(f"Image exceeds limit: {len(data)} > {MAX_IMAGE_SIZE}", field="body")

        decoded = await asyncio.to_thread(decode_image, data)
        ref = await images.save(data)
        logger.info("Stored image %s (%dx%d, %d bytes)", ref, decoded.width, decoded.height, len(data))
        return ImageUploadResponse(
            image_ref=ref,
            width=decoded.width,
            height=decoded.height,
            format=decoded.format,
            size_bytes=len(data),
        )

    @router.get("/{image_ref}/analysis", response_model=ImageAnalysisResponse)
    async def analyze_image(image_ref: str) -> ImageAnalysisResponse:
        data = await images.load(image_ref)
        ground_truth = await asyncio.to_thread(analyzer.analyze, data)
        return ImageAnalysisResponse(
            image_ref=image_ref,
            summary=summarize(ground_truth),
            description=format_summary(ground_truth),
        )

    return router
