"""
WebSub callback endpoints.

The hub verifies subscriptions with a GET carrying ``hub.*`` query
parameters and delivers new or updated videos as Atom POST bodies.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import PlainTextResponse

from src.api.dependencies import get_pipeline
from src.errors import ParseError
from src.services.pipeline import Pipeline

router = APIRouter(prefix="/websub")
logger = structlog.get_logger(__name__)


@router.get(
    "/callback",
    response_class=PlainTextResponse,
    summary="Hub verification",
    responses={404: {"description": "Topic is not a known channel"}},
)
async def verify_subscription(
    mode: str | None = Query(default=None, alias="hub.mode"),
    topic: str | None = Query(default=None, alias="hub.topic"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
    lease_seconds: int | None = Query(default=None, alias="hub.lease_seconds"),
    pipeline: Pipeline = Depends(get_pipeline),
) -> PlainTextResponse:
    """Echo ``hub.challenge`` for subscribe/unsubscribe of a known channel."""
    echoed = await pipeline.websub.verify_challenge(mode, topic, challenge, lease_seconds)
    if echoed is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown topic")
    return PlainTextResponse(echoed)


@router.post(
    "/callback",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Push notification",
    responses={400: {"description": "Body is not an Atom document"}},
)
async def receive_notification(
    request: Request,
    pipeline: Pipeline = Depends(get_pipeline),
) -> Response:
    """Reconcile the videos in a pushed Atom body."""
    body = await request.body()
    signature = request.headers.get("X-Hub-Signature")
    try:
        await pipeline.websub.handle_notification(body, signature)
    except ParseError as e:
        logger.warning("Unparseable WebSub notification", error=str(e), size=len(body))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
