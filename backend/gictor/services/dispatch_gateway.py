"""Dispatch Gateway: the entry point of the generation saga.

    authenticate -> rate check -> validate -> cost -> reserve + record
      -> forward to worker -> processing
                           -> (worker failure) mark failed + refund

The credit reservation and the pending GenerationRequest are written in one
transaction before the worker is called, so a crash during forwarding leaves
a record the status reconciler can still settle. Any forwarding failure is
compensated (record failed, credit refunded) before the error is returned.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gictor.config import Settings
from gictor.constants.generation import (
    ACTIVE_STATUSES,
    FILE_KIND_STAGES,
    PIPELINE_DRAFT,
    PIPELINE_KIND_STAGES,
    PIPELINE_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
)
from gictor.exceptions import (
    DuplicateRequestError,
    InsufficientCreditsError,
    PipelineNotFoundError,
    RateLimitedError,
    ServiceConfigurationError,
    StorageError,
    WorkerTimeoutError,
    WorkerUnavailableError,
)
from gictor.models.base import utcnow
from gictor.models.database import session_scope
from gictor.models.generation import GenerationRequest
from gictor.models.pipeline import Pipeline
from gictor.schemas.generation import PayloadBase
from gictor.services.authentication import Authenticator, Principal
from gictor.services.cost_model import compute_cost
from gictor.services.credit_ledger import CreditLedger
from gictor.services.generation_estimates import estimate_duration_seconds
from gictor.services.rate_limiter import FixedWindowRateLimiter
from gictor.services.request_validation import validate
from gictor.services.worker_client import WorkerClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    request_id: uuid.UUID
    cost: Decimal
    ack: dict[str, Any]
    rate_limit_remaining: int

    def to_response(self) -> dict[str, Any]:
        """`{success, credits_deducted, ...ack}`; ack fields never override ours."""
        return {
            **self.ack,
            "success": True,
            "credits_deducted": float(self.cost),
            "request_id": str(self.request_id),
        }


class DispatchGateway:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ledger: CreditLedger,
        rate_limiter: FixedWindowRateLimiter,
        worker: WorkerClient,
        authenticator: Authenticator,
        settings: Settings,
    ):
        self._session_maker = session_maker
        self._ledger = ledger
        self._rate_limiter = rate_limiter
        self._worker = worker
        self._authenticator = authenticator
        self._settings = settings

    async def dispatch(self, auth_token: str | None, kind: str | None, raw_payload: Any) -> DispatchResult:
        principal = await self._authenticator.authenticate(auth_token)

        decision = self._rate_limiter.check(str(principal.user_id))
        if not decision.allowed:
            logger.info(f"Rate limit exceeded for user {principal.user_id}")
            raise RateLimitedError(decision.retry_after)

        payload = validate(kind, raw_payload)

        if not self._worker.is_configured:
            logger.error("Worker webhook URL or API key is not configured")
            raise ServiceConfigurationError()

        params = payload.model_dump(mode="json", exclude_none=True)
        cost = compute_cost(kind, params, self._settings)
        request_id = getattr(payload, "file_id", None) or uuid.uuid4()

        record = await self._reserve_and_record(principal, kind, payload, params, cost, request_id)
        logger.info(f"Dispatching {kind} request {request_id} for user {principal.user_id} (cost {cost})")

        worker_payload = {
            **params,
            "file_id": str(request_id),
            "user_id": str(principal.user_id),
            "credits_cost": float(cost),
        }
        try:
            ack = await self._worker.forward(kind, worker_payload)
        except (WorkerTimeoutError, WorkerUnavailableError) as e:
            await self._compensate(record, reason=e.message)
            raise

        await self._mark_processing(request_id)
        return DispatchResult(
            request_id=request_id,
            cost=cost,
            ack=ack,
            rate_limit_remaining=decision.remaining,
        )

    # =========================================================================
    # Saga steps
    # =========================================================================

    async def _reserve_and_record(
        self,
        principal: Principal,
        kind: str,
        payload: PayloadBase,
        params: dict[str, Any],
        cost: Decimal,
        request_id: uuid.UUID,
    ) -> GenerationRequest:
        """Reserve credit and persist the pending record atomically."""
        try:
            async with session_scope(self._session_maker) as db:
                if await db.get(GenerationRequest, request_id) is not None:
                    raise DuplicateRequestError(str(request_id))

                pipeline = None
                pipeline_id = getattr(payload, "pipeline_id", None)
                if pipeline_id is not None:
                    pipeline = await self._load_pipeline(db, pipeline_id, principal.user_id)
                stage = PIPELINE_KIND_STAGES.get(kind) or (FILE_KIND_STAGES.get(kind) if pipeline else None)

                reservation = await self._ledger.reserve(
                    principal.user_id,
                    cost,
                    str(request_id),
                    description=f"{kind} generation",
                    session=db,
                )
                if not reservation.reserved:
                    raise InsufficientCreditsError(required=cost, available=reservation.balance)

                record = GenerationRequest(
                    id=request_id,
                    user_id=principal.user_id,
                    project_id=getattr(payload, "project_id", None) or (pipeline.project_id if pipeline else None),
                    folder_id=getattr(payload, "folder_id", None) or (pipeline.folder_id if pipeline else None),
                    pipeline_id=pipeline.id if pipeline else None,
                    stage=stage,
                    kind=kind,
                    name=getattr(payload, "file_name", None) or kind.replace("_", " ").title(),
                    status=STATUS_PENDING,
                    progress=0,
                    cost=cost,
                    params=params,
                    generation_started_at=utcnow(),
                    estimated_duration_seconds=estimate_duration_seconds(kind, params),
                )
                db.add(record)

                if pipeline is not None:
                    pipeline.status = PIPELINE_PROCESSING
                    pipeline.current_stage = stage or pipeline.current_stage
                    pipeline.progress = 0

                await db.flush()
                return record
        except SQLAlchemyError as e:
            logger.exception(f"Failed to record generation request {request_id}")
            raise StorageError(f"Failed to record generation request: {e}") from e

    @staticmethod
    async def _load_pipeline(db: AsyncSession, pipeline_id: uuid.UUID, user_id: uuid.UUID) -> Pipeline:
        result = await db.execute(
            select(Pipeline)
            .where(Pipeline.id == pipeline_id, Pipeline.user_id == user_id)
            .with_for_update()
        )
        pipeline = result.scalar_one_or_none()
        if pipeline is None:
            raise PipelineNotFoundError(str(pipeline_id))
        return pipeline

    async def _compensate(self, record: GenerationRequest, *, reason: str) -> None:
        """Fail the record and return its credit, in one transaction."""
        try:
            async with session_scope(self._session_maker) as db:
                result = await db.execute(
                    update(GenerationRequest)
                    .where(
                        GenerationRequest.id == record.id,
                        GenerationRequest.status.in_(ACTIVE_STATUSES),
                    )
                    .values(
                        status=STATUS_FAILED,
                        progress=0,
                        error_message=reason,
                        completed_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    current = await db.scalar(
                        select(GenerationRequest.status).where(GenerationRequest.id == record.id)
                    )
                    if current == STATUS_COMPLETED:
                        # The worker delivered a result despite the failed acknowledgement
                        logger.warning(f"Request {record.id} already completed; not refunding")
                        return

                await self._ledger.refund(
                    record.user_id,
                    record.cost,
                    str(record.id),
                    description=f"Refund: {record.kind} generation failed ({reason})",
                    session=db,
                )

                if record.pipeline_id is not None:
                    await db.execute(
                        update(Pipeline)
                        .where(Pipeline.id == record.pipeline_id, Pipeline.status == PIPELINE_PROCESSING)
                        .values(status=PIPELINE_DRAFT, progress=0, updated_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            logger.exception(f"Compensation failed for request {record.id}; credit remains reserved")
            raise StorageError(f"Failed to compensate request {record.id}: {e}") from e

        logger.info(f"Compensated request {record.id}: marked failed and refunded {record.cost}")

    async def _mark_processing(self, request_id: uuid.UUID) -> None:
        # A callback may already have settled the record; only pending moves.
        try:
            async with session_scope(self._session_maker) as db:
                await db.execute(
                    update(GenerationRequest)
                    .where(GenerationRequest.id == request_id, GenerationRequest.status == STATUS_PENDING)
                    .values(status=STATUS_PROCESSING, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError:
            # The worker already accepted the job; the record stays pending
            # until its status callback arrives.
            logger.exception(f"Failed to mark request {request_id} as processing")
