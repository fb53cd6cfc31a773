from gictor.schemas.callback import FileStatusCallback, PipelineStageCallback
from gictor.schemas.credit import CreditBalanceResponse, CreditTransactionResponse
from gictor.schemas.envelope import ErrorInfo, ErrorResponse, FieldIssue
from gictor.schemas.generation import KIND_SCHEMAS, GenerationResponse, PayloadBase
from gictor.schemas.pipeline import PipelineCreate, PipelineResponse

__all__ = [
    "FieldIssue",
    "ErrorInfo",
    "ErrorResponse",
    "PayloadBase",
    "KIND_SCHEMAS",
    "GenerationResponse",
    "FileStatusCallback",
    "PipelineStageCallback",
    "PipelineCreate",
    "PipelineResponse",
    "CreditBalanceResponse",
    "CreditTransactionResponse",
]
