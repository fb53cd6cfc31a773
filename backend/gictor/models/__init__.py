from gictor.models.asset import GeneratedAsset
from gictor.models.base import Base
from gictor.models.credit import CreditAccount, CreditTransaction
from gictor.models.generation import GenerationRequest
from gictor.models.pipeline import Pipeline
from gictor.models.user import User

__all__ = [
    "Base",
    "User",
    "CreditAccount",
    "CreditTransaction",
    "GenerationRequest",
    "Pipeline",
    "GeneratedAsset",
]
