"""Tests for worker status callbacks: terminal transitions, refunds, pipelines."""

import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from conftest import CALLBACK_SECRET
from gictor.constants.generation import (
    PIPELINE_COMPLETED,
    PIPELINE_DRAFT,
    PIPELINE_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
)
from gictor.exceptions import GenerationNotFoundError, InvalidInputError, UnauthorizedCallbackError
from gictor.models.asset import GeneratedAsset
from gictor.models.credit import TRANSACTION_REFUND

TOKEN = "token-creator"


@pytest_asyncio.fixture
async def user_id(make_user, authenticator):
    uid = await make_user("5.00")
    authenticator.tokens[TOKEN] = uid
    return uid


@pytest_asyncio.fixture
async def script_request(user_id, worker, make_gateway):
    """A processing script request that reserved 0.25."""
    gateway = make_gateway(worker)
    result = await gateway.dispatch(TOKEN, "script", {"project_id": str(uuid.uuid4())})
    return result.request_id


def _failed_callback(request_id, user_id) -> dict:
    return {
        "file_id": str(request_id),
        "status": "failed",
        "error_message": "x",
        "user_id": str(user_id),
        "credits_cost": 0.25,
    }


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, reconciler, script_request, user_id, fetch):
        with pytest.raises(UnauthorizedCallbackError):
            await reconciler.reconcile("wrong", _failed_callback(script_request, user_id))

        record = await fetch.request(script_request)
        assert record.status == STATUS_PROCESSING

    @pytest.mark.asyncio
    async def test_missing_secret_rejected(self, reconciler, script_request, user_id):
        with pytest.raises(UnauthorizedCallbackError):
            await reconciler.reconcile(None, _failed_callback(script_request, user_id))


class TestSingleRequestCallbacks:
    @pytest.mark.asyncio
    async def test_failure_refunds_stored_cost(self, reconciler, script_request, user_id, ledger, fetch):
        result = await reconciler.reconcile(CALLBACK_SECRET, _failed_callback(script_request, user_id))

        assert result.applied is True
        assert await ledger.get_balance(user_id) == Decimal("5.00")
        refunds = await fetch.transactions(user_id, TRANSACTION_REFUND)
        assert [(r.amount, r.reference_id) for r in refunds] == [(Decimal("0.25"), str(script_request))]
        record = await fetch.request(script_request)
        assert record.status == STATUS_FAILED
        assert record.error_message == "x"
        assert record.progress == 0

    @pytest.mark.asyncio
    async def test_duplicate_failure_is_noop(self, reconciler, script_request, user_id, ledger, fetch):
        payload = _failed_callback(script_request, user_id)
        await reconciler.reconcile(CALLBACK_SECRET, payload)

        result = await reconciler.reconcile(CALLBACK_SECRET, payload)

        assert result.applied is False
        assert result.status == STATUS_FAILED
        assert await ledger.get_balance(user_id) == Decimal("5.00")
        assert len(await fetch.transactions(user_id, TRANSACTION_REFUND)) == 1

    @pytest.mark.asyncio
    async def test_callback_cost_never_changes_refund(self, reconciler, script_request, user_id, ledger, caplog):
        payload = {**_failed_callback(script_request, user_id), "credits_cost": 100}

        await reconciler.reconcile(CALLBACK_SECRET, payload)

        assert await ledger.get_balance(user_id) == Decimal("5.00")
        assert "differs from reserved cost" in caplog.text

    @pytest.mark.asyncio
    async def test_completion_writes_result(self, reconciler, script_request, ledger, user_id, fetch):
        await reconciler.reconcile(
            CALLBACK_SECRET,
            {
                "file_id": str(script_request),
                "status": "completed",
                "download_url": "https://cdn.example.com/script.txt",
                "preview_url": "https://cdn.example.com/script-preview.txt",
                "metadata": {"words": 120},
            },
        )

        record = await fetch.request(script_request)
        assert record.status == STATUS_COMPLETED
        assert record.progress == 100
        assert record.error_message is None
        assert record.download_url == "https://cdn.example.com/script.txt"
        assert record.preview_url == "https://cdn.example.com/script-preview.txt"
        assert record.result["words"] == 120
        assert record.completed_at is not None
        assert await ledger.get_balance(user_id) == Decimal("4.75")

    @pytest.mark.asyncio
    async def test_audio_url_alias(self, reconciler, script_request, fetch):
        await reconciler.reconcile(
            CALLBACK_SECRET,
            {
                "file_id": str(script_request),
                "status": "completed",
                "audio_url": "https://cdn.example.com/voice.mp3",
                "audio_duration": 12.5,
            },
        )

        record = await fetch.request(script_request)
        assert record.download_url == "https://cdn.example.com/voice.mp3"
        assert record.result["duration_seconds"] == 12.5

    @pytest.mark.asyncio
    async def test_terminal_state_is_final(self, reconciler, script_request, user_id, ledger, fetch):
        await reconciler.reconcile(CALLBACK_SECRET, {"file_id": str(script_request), "status": "completed"})

        late_failure = await reconciler.reconcile(CALLBACK_SECRET, _failed_callback(script_request, user_id))
        late_progress = await reconciler.reconcile(
            CALLBACK_SECRET, {"file_id": str(script_request), "status": "processing", "progress": 10}
        )

        assert late_failure.applied is False
        assert late_progress.applied is False
        record = await fetch.request(script_request)
        assert record.status == STATUS_COMPLETED
        assert record.progress == 100
        assert await ledger.get_balance(user_id) == Decimal("4.75")
        assert await fetch.transactions(user_id, TRANSACTION_REFUND) == []

    @pytest.mark.asyncio
    async def test_progress_never_moves_backwards(self, reconciler, script_request, fetch):
        await reconciler.reconcile(CALLBACK_SECRET, {"file_id": str(script_request), "status": "processing", "progress": 60})
        await reconciler.reconcile(CALLBACK_SECRET, {"file_id": str(script_request), "status": "processing", "progress": 30})

        record = await fetch.request(script_request)
        assert record.status == STATUS_PROCESSING
        assert record.progress == 60

    @pytest.mark.asyncio
    async def test_progress_is_clamped(self, reconciler, script_request, fetch):
        await reconciler.reconcile(CALLBACK_SECRET, {"file_id": str(script_request), "status": "processing", "progress": 250})

        record = await fetch.request(script_request)
        assert record.progress == 100
        assert record.status == STATUS_PROCESSING

    @pytest.mark.asyncio
    async def test_unknown_request(self, reconciler):
        with pytest.raises(GenerationNotFoundError):
            await reconciler.reconcile(CALLBACK_SECRET, {"file_id": str(uuid.uuid4()), "status": "completed"})

    @pytest.mark.asyncio
    async def test_invalid_status(self, reconciler, script_request):
        with pytest.raises(InvalidInputError):
            await reconciler.reconcile(CALLBACK_SECRET, {"file_id": str(script_request), "status": "exploded"})


class TestPipelineCallbacks:
    @pytest_asyncio.fixture
    async def pipeline_id(self, user_id, make_pipeline):
        return await make_pipeline(user_id, pipeline_type="talking_head")

    async def _dispatch(self, make_gateway, worker, kind, payload):
        return (await make_gateway(worker).dispatch(TOKEN, kind, payload)).request_id

    @pytest.mark.asyncio
    async def test_intermediate_stage_completion(self, reconciler, make_gateway, worker, pipeline_id, fetch):
        await self._dispatch(
            make_gateway, worker, "pipeline_voice", {"pipeline_id": str(pipeline_id), "script_text": "Hello world"}
        )

        await reconciler.reconcile(
            CALLBACK_SECRET,
            {
                "type": "pipeline_voice",
                "pipeline_id": str(pipeline_id),
                "status": "completed",
                "output": {"url": "https://cdn.example.com/voice.mp3", "duration_seconds": 4.2},
            },
        )

        pipeline = await fetch.pipeline(pipeline_id)
        assert pipeline.status == PIPELINE_DRAFT
        assert pipeline.stage_flags == {"voice": True}
        assert pipeline.stage_outputs["voice"]["url"] == "https://cdn.example.com/voice.mp3"
        assert pipeline.stage_outputs["voice"]["duration_seconds"] == 4.2
        assert "generated_at" in pipeline.stage_outputs["voice"]

    @pytest.mark.asyncio
    async def test_flat_stage_form(self, reconciler, make_gateway, worker, pipeline_id, fetch):
        request_id = await self._dispatch(
            make_gateway, worker, "pipeline_script", {"pipeline_id": str(pipeline_id)}
        )

        await reconciler.reconcile(
            CALLBACK_SECRET,
            {
                "pipeline_id": str(pipeline_id),
                "stage": "script",
                "status": "completed",
                "script_text": "Welcome to the launch.",
            },
        )

        record = await fetch.request(request_id)
        assert record.status == STATUS_COMPLETED
        pipeline = await fetch.pipeline(pipeline_id)
        assert pipeline.stage_outputs["script"]["text"] == "Welcome to the launch."

    @pytest.mark.asyncio
    async def test_processing_marks_pipeline(self, reconciler, make_gateway, worker, pipeline_id, fetch):
        await self._dispatch(make_gateway, worker, "pipeline_script", {"pipeline_id": str(pipeline_id)})

        await reconciler.reconcile(
            CALLBACK_SECRET,
            {"type": "pipeline_script", "pipeline_id": str(pipeline_id), "status": "processing", "progress": 40},
        )

        pipeline = await fetch.pipeline(pipeline_id)
        assert pipeline.status == PIPELINE_PROCESSING
        assert pipeline.progress == 40

    @pytest.mark.asyncio
    async def test_final_stage_materializes_asset(
        self, reconciler, make_gateway, worker, pipeline_id, session_maker, fetch
    ):
        request_id = await self._dispatch(
            make_gateway,
            worker,
            "pipeline_final_video",
            {"pipeline_id": str(pipeline_id), "audio_duration_seconds": 8},
        )

        await reconciler.reconcile(
            CALLBACK_SECRET,
            {
                "type": "pipeline_final_video",
                "pipeline_id": str(pipeline_id),
                "file_id": str(request_id),
                "status": "completed",
                "output": {"url": "https://cdn.example.com/final.mp4", "duration_seconds": 8},
            },
        )

        pipeline = await fetch.pipeline(pipeline_id)
        assert pipeline.status == PIPELINE_COMPLETED
        assert pipeline.progress == 100
        async with session_maker() as db:
            assets = (await db.execute(select(GeneratedAsset))).scalars().all()
        assert len(assets) == 1
        assert assets[0].pipeline_id == pipeline_id
        assert assets[0].generation_request_id == request_id
        assert assets[0].file_type == "video"
        assert assets[0].download_url == "https://cdn.example.com/final.mp4"
        assert assets[0].duration_seconds == 8

    @pytest.mark.asyncio
    async def test_stage_failure_refunds_and_resets(
        self, reconciler, make_gateway, worker, pipeline_id, user_id, ledger, fetch
    ):
        request_id = await self._dispatch(
            make_gateway, worker, "pipeline_voice", {"pipeline_id": str(pipeline_id), "script_text": "Hello"}
        )
        assert await ledger.get_balance(user_id) == Decimal("4.75")

        await reconciler.reconcile(
            CALLBACK_SECRET,
            {
                "type": "pipeline_voice",
                "pipeline_id": str(pipeline_id),
                "status": "failed",
                "error_message": "voice provider down",
                "user_id": str(user_id),
                "credits_cost": 0.25,
            },
        )

        assert await ledger.get_balance(user_id) == Decimal("5.00")
        record = await fetch.request(request_id)
        assert record.status == STATUS_FAILED
        assert record.error_message == "voice provider down"
        pipeline = await fetch.pipeline(pipeline_id)
        assert pipeline.status == PIPELINE_DRAFT
        assert pipeline.stage_flags == {}

    @pytest.mark.asyncio
    async def test_unknown_stage_rejected(self, reconciler, pipeline_id):
        with pytest.raises(InvalidInputError):
            await reconciler.reconcile(
                CALLBACK_SECRET,
                {"type": "pipeline_hologram", "pipeline_id": str(pipeline_id), "status": "completed"},
            )

    @pytest.mark.asyncio
    async def test_stage_without_request(self, reconciler, pipeline_id):
        with pytest.raises(GenerationNotFoundError):
            await reconciler.reconcile(
                CALLBACK_SECRET,
                {"type": "pipeline_voice", "pipeline_id": str(pipeline_id), "status": "completed"},
            )

    @pytest.mark.asyncio
    async def test_speech_stage_settles_voice_request(self, reconciler, make_gateway, worker, pipeline_id, fetch):
        request_id = await self._dispatch(
            make_gateway, worker, "pipeline_voice", {"pipeline_id": str(pipeline_id), "script_text": "Hello"}
        )

        await reconciler.reconcile(
            CALLBACK_SECRET,
            {
                "pipeline_id": str(pipeline_id),
                "stage": "speech",
                "status": "completed",
                "output_url": "https://cdn.example.com/voice.mp3",
            },
        )

        record = await fetch.request(request_id)
        assert record.status == STATUS_COMPLETED
        pipeline = await fetch.pipeline(pipeline_id)
        assert pipeline.stage_flags == {"voice": True}
        assert pipeline.stage_outputs["voice"]["url"] == "https://cdn.example.com/voice.mp3"

    @pytest.mark.asyncio
    async def test_file_id_from_another_pipeline_rejected(
        self, reconciler, make_gateway, worker, pipeline_id, user_id, make_pipeline, fetch
    ):
        request_id = await self._dispatch(
            make_gateway, worker, "pipeline_voice", {"pipeline_id": str(pipeline_id), "script_text": "Hello"}
        )
        other_pipeline_id = await make_pipeline(user_id)

        with pytest.raises(InvalidInputError):
            await reconciler.reconcile(
                CALLBACK_SECRET,
                {
                    "type": "pipeline_voice",
                    "pipeline_id": str(other_pipeline_id),
                    "file_id": str(request_id),
                    "status": "completed",
                },
            )

        record = await fetch.request(request_id)
        assert record.status == STATUS_PROCESSING
        assert (await fetch.pipeline(pipeline_id)).stage_flags == {}
        assert (await fetch.pipeline(other_pipeline_id)).stage_flags == {}

    @pytest.mark.asyncio
    async def test_file_id_from_another_stage_rejected(self, reconciler, make_gateway, worker, pipeline_id, fetch):
        request_id = await self._dispatch(
            make_gateway, worker, "pipeline_voice", {"pipeline_id": str(pipeline_id), "script_text": "Hello"}
        )

        with pytest.raises(InvalidInputError):
            await reconciler.reconcile(
                CALLBACK_SECRET,
                {
                    "type": "pipeline_script",
                    "pipeline_id": str(pipeline_id),
                    "file_id": str(request_id),
                    "status": "completed",
                },
            )

        record = await fetch.request(request_id)
        assert record.status == STATUS_PROCESSING
        pipeline = await fetch.pipeline(pipeline_id)
        assert pipeline.stage_flags == {}
        assert pipeline.stage_outputs == {}
