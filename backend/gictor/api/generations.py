import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Request, Response
from sqlalchemy import select

from gictor.api.deps import BearerToken, CurrentPrincipal, DbSession, DispatchGatewayDep, read_json_object
from gictor.constants.generation import ACTIVE_STATUSES
from gictor.exceptions import GenerationNotFoundError
from gictor.models.generation import GenerationRequest
from gictor.schemas.generation import GenerationResponse
from gictor.services.generation_estimates import time_remaining

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("")
async def create_generation(
    request: Request,
    response: Response,
    gateway: DispatchGatewayDep,
    token: BearerToken,
) -> dict[str, Any]:
    """Dispatch a generation request: `{type, payload}`.

    The body is read as-is and validated by the gateway after authentication
    and rate limiting, so an anonymous caller never learns schema details.
    """
    body = await read_json_object(request)
    result = await gateway.dispatch(token, body.get("type"), body.get("payload"))
    response.headers["X-RateLimit-Remaining"] = str(result.rate_limit_remaining)
    return result.to_response()


@router.get("/{generation_id}", response_model=GenerationResponse)
async def get_generation(
    generation_id: UUID,
    principal: CurrentPrincipal,
    db: DbSession,
) -> GenerationResponse:
    result = await db.execute(
        select(GenerationRequest).where(
            GenerationRequest.id == generation_id,
            GenerationRequest.user_id == principal.user_id,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise GenerationNotFoundError(str(generation_id))

    response = GenerationResponse.model_validate(record)
    if record.status in ACTIVE_STATUSES:
        response.time_remaining = time_remaining(record.generation_started_at, record.estimated_duration_seconds)
    return response
