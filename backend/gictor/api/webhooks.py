import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Header, Request

from gictor.api.deps import StatusReconcilerDep, read_json_object

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generation-status")
async def generation_status(
    request: Request,
    reconciler: StatusReconcilerDep,
    x_api_key: Annotated[Optional[str], Header(alias="x-api-key")] = None,
) -> dict[str, Any]:
    """Worker status callback (single-request or pipeline-stage form)."""
    body = await read_json_object(request)
    result = await reconciler.reconcile(x_api_key, body)
    return {"success": True, "file_id": str(result.request_id), "status": result.status}
