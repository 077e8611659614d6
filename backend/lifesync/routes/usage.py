"""
LifeSync Backend: LLM Usage Route Handlers
============================================

Operator view of the gateway's in-memory accounting and circuit state.
Counters are per process; with several workers each reports its own.
"""

import logging

from fastapi import APIRouter, Depends, Response, status

from lifesync.dependencies import get_gateway
from lifesync.schemas.usage import UsageResponse
from lifesync.services.chat_gateway import ChatCompletionGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/usage", tags=["Usage"])


@router.get("", response_model=UsageResponse, summary="LLM usage statistics")
async def get_usage(gateway: ChatCompletionGateway = Depends(get_gateway)) -> UsageResponse:
    return UsageResponse(
        usage=gateway.get_usage_stats(),
        circuit=gateway.circuit_snapshot(),
    )


@router.post(
    "/reset",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset LLM usage statistics",
)
async def reset_usage(gateway: ChatCompletionGateway = Depends(get_gateway)) -> Response:
    gateway.reset_usage_stats()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
