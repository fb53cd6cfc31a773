"""Server-side credit cost of a generation request.

Costs are always derived from the validated request parameters; a cost value
sent by the client is never consulted. Per-kind pricing is data (COST_RULES)
whose rates come from Settings.credit_costs.
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Any, Literal

from gictor.config import Settings, get_settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CostRule:
    """How one kind is priced.

    basis:
        flat            -> rate
        per_second      -> rate * duration, floored at one billable second
                           (or the configured minimum), duration clamped
        per_1000_chars  -> rate * started blocks of 1000 characters
        frame           -> 4K frames use the 4K rate, everything else the base rate
    fields: parameter names searched in order for the duration / text.
    """

    basis: Literal["flat", "per_second", "per_1000_chars", "frame"]
    rate_key: str
    fields: tuple[str, ...] = ()
    default_seconds: Decimal = Decimal("5")
    minimum_key: str | None = None


COST_RULES: dict[str, CostRule] = {
    "first_frame": CostRule("flat", "first_frame"),
    "pipeline_first_frame": CostRule("flat", "first_frame"),
    "pipeline_first_frame_b_roll": CostRule("flat", "first_frame"),
    "script": CostRule("flat", "script"),
    "pipeline_script": CostRule("flat", "script"),
    "humanize": CostRule("flat", "humanize"),
    "frame": CostRule("frame", "frame_base"),
    "speech": CostRule("per_1000_chars", "speech_per_1000_chars", ("script",)),
    "audio": CostRule("per_1000_chars", "speech_per_1000_chars", ("script",)),
    "pipeline_voice": CostRule("per_1000_chars", "voice_per_1000_chars", ("script_text",)),
    "lip_sync": CostRule(
        "per_second",
        "lip_sync_per_second",
        ("audio_duration",),
        default_seconds=Decimal("0"),
        minimum_key="lip_sync_minimum",
    ),
    "animate": CostRule("per_second", "animate_per_second", ("duration", "duration_seconds")),
    "talking_head": CostRule("per_second", "video_per_second", ("audio_duration",)),
    "b_roll": CostRule("per_second", "video_per_second", ("audio_duration",)),
    "pipeline_final_video": CostRule(
        "per_second", "video_per_second", ("audio_duration_seconds", "duration_seconds")
    ),
}


def _first_present(params: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    for name in fields:
        value = params.get(name)
        if value:
            return value
    return None


def _ceil_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_CEILING)


def _per_second_cost(rule: CostRule, params: Mapping[str, Any], settings: Settings) -> Decimal:
    raw = _first_present(params, rule.fields)
    seconds = Decimal(str(raw)) if raw is not None else rule.default_seconds
    seconds = min(max(seconds, Decimal("0")), Decimal(settings.max_billable_seconds))

    rate = settings.credit_rate(rule.rate_key)
    minimum = settings.credit_rate(rule.minimum_key) if rule.minimum_key else rate
    return _ceil_cents(max(minimum, seconds * rate))


def _per_1000_chars_cost(rule: CostRule, params: Mapping[str, Any], settings: Settings) -> Decimal:
    text = _first_present(params, rule.fields) or ""
    blocks = math.ceil(len(text) / 1000)
    return _ceil_cents(blocks * settings.credit_rate(rule.rate_key))


def compute_cost(
    kind: str,
    params: Mapping[str, Any],
    settings: Settings | None = None,
) -> Decimal:
    """Credit cost of a request of `kind` with validated `params`.

    Pure and deterministic. Unknown kinds fall back to settings.default_credit_cost
    instead of raising.
    """
    settings = settings or get_settings()
    rule = COST_RULES.get(kind)

    if rule is None:
        logger.warning(f"Unknown generation type for cost calculation: {kind}")
        return _ceil_cents(Decimal(str(settings.default_credit_cost)))

    if rule.basis == "flat":
        return _ceil_cents(settings.credit_rate(rule.rate_key))
    if rule.basis == "frame":
        key = "frame_4k" if params.get("frame_resolution") == "4K" else rule.rate_key
        return _ceil_cents(settings.credit_rate(key))
    if rule.basis == "per_second":
        return _per_second_cost(rule, params, settings)
    return _per_1000_chars_cost(rule, params, settings)
