"""Status Reconciler: applies worker callbacks to generation records.

Callbacks are delivered at least once and possibly out of order. A record
reaches a terminal state at most once; any callback for a terminal record is
acknowledged without effect. The failure refund uses the cost stored on the
record and is keyed by the record id, so a redelivered failure never refunds
twice. Store errors surface as StorageError (5xx) so the worker redelivers.
"""

import hmac
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gictor.config import Settings
from gictor.constants.generation import (
    FINAL_STAGE_BY_PIPELINE_TYPE,
    PIPELINE_COMPLETED,
    PIPELINE_DRAFT,
    PIPELINE_PROCESSING,
    STAGE_FILE_TYPES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    TERMINAL_STATUSES,
)
from gictor.exceptions import (
    GenerationNotFoundError,
    InvalidInputError,
    StorageError,
    UnauthorizedCallbackError,
)
from gictor.models.asset import GeneratedAsset
from gictor.models.base import utcnow
from gictor.models.database import session_scope
from gictor.models.generation import GenerationRequest
from gictor.models.pipeline import Pipeline
from gictor.schemas.callback import (
    CallbackBase,
    FileStatusCallback,
    PipelineStageCallback,
    StageOutput,
    is_pipeline_callback,
)
from gictor.schemas.envelope import FieldIssue
from gictor.services.credit_ledger import CENT, CreditLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    request_id: uuid.UUID
    status: str
    applied: bool  # False for a callback on an already-terminal record


class StatusReconciler:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ledger: CreditLedger,
        settings: Settings,
    ):
        self._session_maker = session_maker
        self._ledger = ledger
        self._settings = settings

    async def reconcile(self, shared_secret: str | None, payload: dict[str, Any]) -> ReconcileResult:
        self._verify_secret(shared_secret)
        callback = self._parse(payload)

        try:
            async with session_scope(self._session_maker) as db:
                record = await self._find_record(db, callback)

                if record.status in TERMINAL_STATUSES:
                    logger.info(
                        f"Ignoring {callback.status} callback for request {record.id}: already {record.status}"
                    )
                    return ReconcileResult(request_id=record.id, status=record.status, applied=False)

                pipeline = await self._lock_pipeline(db, record)

                if callback.status == STATUS_COMPLETED:
                    await self._complete(db, record, pipeline, callback)
                elif callback.status == STATUS_FAILED:
                    await self._fail(db, record, pipeline, callback)
                else:
                    self._progress(record, pipeline, callback)

                await db.flush()
                logger.info(f"Reconciled request {record.id}: {record.status} ({record.progress}%)")
                return ReconcileResult(request_id=record.id, status=record.status, applied=True)
        except SQLAlchemyError as e:
            logger.exception("Failed to reconcile status callback")
            raise StorageError(f"Failed to reconcile status callback: {e}") from e

    # =========================================================================
    # Authentication and parsing
    # =========================================================================

    def _verify_secret(self, shared_secret: str | None) -> None:
        expected = self._settings.callback_secret
        if not expected:
            logger.error("Callback secret is not configured; rejecting status callback")
            raise UnauthorizedCallbackError()
        if not shared_secret or not hmac.compare_digest(shared_secret.encode(), expected.encode()):
            logger.warning("Rejected status callback with invalid or missing API key")
            raise UnauthorizedCallbackError()

    @staticmethod
    def _parse(payload: dict[str, Any]) -> FileStatusCallback | PipelineStageCallback:
        schema = PipelineStageCallback if is_pipeline_callback(payload) else FileStatusCallback
        try:
            return schema.model_validate(payload)
        except ValidationError as e:
            issues = [
                FieldIssue(field=".".join(str(p) for p in err["loc"]) or "payload", message=err["msg"])
                for err in e.errors()
            ]
            raise InvalidInputError(issues, "Invalid status callback") from e

    # =========================================================================
    # Lookup
    # =========================================================================

    @staticmethod
    async def _find_record(
        db: AsyncSession, callback: FileStatusCallback | PipelineStageCallback
    ) -> GenerationRequest:
        query = select(GenerationRequest).with_for_update()
        if callback.file_id is not None:
            query = query.where(GenerationRequest.id == callback.file_id)
        else:
            # Pipeline form without a file id: the latest request for that stage
            query = (
                query.where(
                    GenerationRequest.pipeline_id == callback.pipeline_id,
                    GenerationRequest.stage == callback.stage,
                )
                .order_by(GenerationRequest.created_at.desc())
                .limit(1)
            )

        record = (await db.execute(query)).scalar_one_or_none()
        if record is None:
            target = callback.file_id or f"{callback.pipeline_id}/{callback.stage}"
            logger.warning(f"Status callback for unknown generation request: {target}")
            raise GenerationNotFoundError(str(target))

        # A pipeline callback only ever settles the stage it names
        if isinstance(callback, PipelineStageCallback) and (
            record.pipeline_id != callback.pipeline_id or record.stage != callback.stage
        ):
            logger.warning(
                f"Pipeline callback for {callback.pipeline_id}/{callback.stage} names request {record.id} "
                f"of {record.pipeline_id}/{record.stage}"
            )
            raise InvalidInputError(
                [FieldIssue(field="file_id", message="Request does not belong to this pipeline stage")],
                "Invalid status callback",
            )
        return record

    @staticmethod
    async def _lock_pipeline(db: AsyncSession, record: GenerationRequest) -> Pipeline | None:
        if record.pipeline_id is None:
            return None
        result = await db.execute(select(Pipeline).where(Pipeline.id == record.pipeline_id).with_for_update())
        return result.scalar_one_or_none()

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _complete(
        self,
        db: AsyncSession,
        record: GenerationRequest,
        pipeline: Pipeline | None,
        callback: FileStatusCallback | PipelineStageCallback,
    ) -> None:
        output = _output_of(callback)

        record.status = STATUS_COMPLETED
        record.progress = 100
        record.error_message = None
        record.completed_at = utcnow()
        record.preview_url = callback.preview_url or record.preview_url
        record.download_url = output.url or record.download_url
        record.result = {
            **(callback.metadata or {}),
            **output.model_dump(exclude_none=True),
        }

        if pipeline is None or record.stage is None:
            return

        now = utcnow().isoformat()
        pipeline.stage_outputs = {
            **(pipeline.stage_outputs or {}),
            record.stage: {**output.model_dump(exclude_none=True), "generated_at": now},
        }
        pipeline.stage_flags = {**(pipeline.stage_flags or {}), record.stage: True}

        if FINAL_STAGE_BY_PIPELINE_TYPE.get(pipeline.pipeline_type) == record.stage:
            pipeline.status = PIPELINE_COMPLETED
            pipeline.progress = 100
            await self._materialize_asset(db, record, pipeline, output)
        else:
            pipeline.status = PIPELINE_DRAFT
            pipeline.progress = 0

    async def _fail(
        self,
        db: AsyncSession,
        record: GenerationRequest,
        pipeline: Pipeline | None,
        callback: CallbackBase,
    ) -> None:
        if callback.credits_cost is not None and Decimal(str(callback.credits_cost)).quantize(CENT) != record.cost:
            logger.warning(
                f"Callback credits_cost {callback.credits_cost} differs from reserved cost {record.cost} "
                f"for request {record.id}; refunding the reserved cost"
            )
        if callback.user_id is not None and callback.user_id != str(record.user_id):
            logger.warning(f"Callback user_id does not match owner of request {record.id}; refunding the owner")

        record.status = STATUS_FAILED
        record.progress = 0
        record.error_message = callback.error_message or "Generation failed"
        record.preview_url = None
        record.download_url = None
        record.result = callback.metadata or None
        record.completed_at = utcnow()

        await self._ledger.refund(
            record.user_id,
            record.cost,
            str(record.id),
            description=f"Refund for failed {record.kind} generation: {record.error_message}",
            session=db,
        )

        if pipeline is not None:
            pipeline.status = PIPELINE_DRAFT
            pipeline.progress = 0

    @staticmethod
    def _progress(record: GenerationRequest, pipeline: Pipeline | None, callback: CallbackBase) -> None:
        reported = min(max(callback.progress or 0, 0), 100)
        # Out-of-order updates never move progress backwards
        record.progress = max(record.progress or 0, reported)
        record.status = STATUS_PROCESSING

        if pipeline is not None:
            pipeline.status = PIPELINE_PROCESSING
            pipeline.progress = record.progress

    @staticmethod
    async def _materialize_asset(
        db: AsyncSession,
        record: GenerationRequest,
        pipeline: Pipeline,
        output: StageOutput,
    ) -> None:
        """Create (or refresh) the finished-file entry of a completed pipeline."""
        result = await db.execute(select(GeneratedAsset).where(GeneratedAsset.pipeline_id == pipeline.id))
        asset = result.scalar_one_or_none()
        if asset is None:
            asset = GeneratedAsset(
                user_id=pipeline.user_id,
                project_id=pipeline.project_id,
                pipeline_id=pipeline.id,
            )
            db.add(asset)

        asset.folder_id = pipeline.folder_id
        asset.name = pipeline.name
        asset.file_type = STAGE_FILE_TYPES.get(record.stage, "video")
        asset.download_url = output.url
        asset.preview_url = record.preview_url or output.url
        asset.duration_seconds = output.duration_seconds
        asset.generation_request_id = record.id
        logger.info(f"Materialized output of pipeline {pipeline.id} from request {record.id}")


def _output_of(callback: FileStatusCallback | PipelineStageCallback) -> StageOutput:
    if isinstance(callback, PipelineStageCallback):
        return callback.output or StageOutput()
    return StageOutput(url=callback.download_url, duration_seconds=callback.duration_seconds, text=callback.text)
