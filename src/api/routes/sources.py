"""Forced rescrape and channel check endpoints."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from src.api.dependencies import get_pipeline
from src.api.models import ChannelCheckResponse, ErrorResponse, ScrapeResponse
from src.errors import SourceNotFoundError
from src.services.pipeline import Pipeline

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/sources/{source_id}/rescrape",
    response_model=ScrapeResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Force a site rescrape",
)
async def rescrape_source(
    source_id: int,
    pipeline: Pipeline = Depends(get_pipeline),
) -> ScrapeResponse:
    """Scrape a site source now and return the reconcile counts."""
    try:
        outcome = await pipeline.scraper.scrape_by_id(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    logger.info("Forced rescrape", **outcome.to_dict())
    return ScrapeResponse(**outcome.to_dict())


@router.post(
    "/channels/{channel_id}/check",
    response_model=ChannelCheckResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Force a channel check",
)
async def check_channel(
    channel_id: int,
    pipeline: Pipeline = Depends(get_pipeline),
) -> ChannelCheckResponse:
    """Check a channel now and return the reconcile counts."""
    try:
        outcome = await pipeline.poller.check_by_id(channel_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    logger.info("Forced channel check", **outcome.to_dict())
    return ChannelCheckResponse(**outcome.to_dict())
