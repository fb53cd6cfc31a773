"""Per-kind validation of generation payloads."""

import logging
from typing import Any

from pydantic import ValidationError

from gictor.exceptions import InvalidInputError
from gictor.schemas.envelope import FieldIssue
from gictor.schemas.generation import KIND_SCHEMAS, PayloadBase

logger = logging.getLogger(__name__)

# Fields the server computes itself. A client-supplied value is discarded,
# never trusted and never an error.
SERVER_OWNED_FIELDS = frozenset({"credits_cost", "cost", "credits", "user_id"})


def _issues_from_validation_error(exc: ValidationError) -> list[FieldIssue]:
    issues = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "payload"
        issues.append(FieldIssue(field=field, message=error["msg"]))
    return issues


def validate(kind: str | None, raw: Any) -> PayloadBase:
    """Validate `raw` against the schema for `kind`.

    Returns the parsed payload, or raises InvalidInputError carrying one
    FieldIssue per violation. Pure; touches no state.
    """
    if not isinstance(kind, str) or not kind:
        raise InvalidInputError([FieldIssue(field="type", message="Generation type is required")])
    schema = KIND_SCHEMAS.get(kind)
    if schema is None:
        raise InvalidInputError([FieldIssue(field="type", message=f"Unknown generation type: {kind}")])

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidInputError([FieldIssue(field="payload", message="Payload must be an object")])

    stripped = {key: value for key, value in raw.items() if key not in SERVER_OWNED_FIELDS}
    dropped = sorted(set(raw) - set(stripped))
    if dropped:
        logger.info(f"Ignoring server-owned fields in {kind} payload: {', '.join(dropped)}")

    try:
        return schema.model_validate(stripped)
    except ValidationError as e:
        raise InvalidInputError(_issues_from_validation_error(e)) from e
