import logging
from uuid import UUID

from fastapi import APIRouter, status
from sqlalchemy import select

from gictor.api.deps import CurrentPrincipal, DbSession
from gictor.exceptions import PipelineNotFoundError
from gictor.models.pipeline import Pipeline
from gictor.schemas.pipeline import PipelineCreate, PipelineResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=PipelineResponse, status_code=status.HTTP_201_CREATED)
async def create_pipeline(
    body: PipelineCreate,
    principal: CurrentPrincipal,
    db: DbSession,
) -> Pipeline:
    pipeline = Pipeline(
        user_id=principal.user_id,
        project_id=body.project_id,
        folder_id=body.folder_id,
        name=body.name,
        pipeline_type=body.pipeline_type,
        stage_flags={},
        stage_outputs={},
    )
    db.add(pipeline)
    await db.flush()
    await db.refresh(pipeline)
    logger.info(f"Created {body.pipeline_type} pipeline {pipeline.id} for user {principal.user_id}")
    return pipeline


@router.get("/{pipeline_id}", response_model=PipelineResponse)
async def get_pipeline(
    pipeline_id: UUID,
    principal: CurrentPrincipal,
    db: DbSession,
) -> Pipeline:
    result = await db.execute(
        select(Pipeline).where(Pipeline.id == pipeline_id, Pipeline.user_id == principal.user_id)
    )
    pipeline = result.scalar_one_or_none()
    if pipeline is None:
        raise PipelineNotFoundError(str(pipeline_id))
    return pipeline
