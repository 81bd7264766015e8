"""Response schema for model span labeling.

Validated with pydantic. ``isAdversarial`` is required: a response that does
not state the safety flag is invalid, never assumed safe.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError


class LabeledSpan(BaseModel):
    """One span as returned by the model."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    text: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1, validation_alias=AliasChoices("role", "category"))
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    start: int | None = Field(default=None, ge=0)
    explanation: str | None = None


class ResponseMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: str = "v3"
    notes: str = ""


class LabelingResponse(BaseModel):
    """Top-level model response."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    spans: list[LabeledSpan]
    meta: ResponseMeta
    is_adversarial: bool = Field(
        ..., validation_alias=AliasChoices("isAdversarial", "is_adversarial"),
    )
    analysis_trace: str | None = None


def inject_default_meta(payload: dict[str, Any], template_version: str) -> dict[str, Any]:
    """Return a copy of *payload* with ``meta`` filled in when absent."""
    data = dict(payload)
    meta = data.get("meta")
    if not isinstance(meta, dict):
        data["meta"] = {"version": template_version, "notes": ""}
    else:
        data["meta"] = {"version": template_version, "notes": "", **meta}
    return data


def read_adversarial_flag(payload: Any) -> bool:
    """Best-effort read of the safety flag from an unvalidated payload."""
    if not isinstance(payload, dict):
        return False
    value = payload.get("isAdversarial", payload.get("is_adversarial"))
    return value is True or (isinstance(value, str) and value.lower() == "true")


def validate_response(payload: Any, template_version: str) -> tuple[LabelingResponse | None, list[str]]:
    """Validate a parsed payload.

    Returns:
        ``(response, [])`` when valid, ``(None, errors)`` otherwise.
    """
    if not isinstance(payload, dict):
        return None, ["response is not a JSON object"]
    try:
        return LabelingResponse.model_validate(inject_default_meta(payload, template_version)), []
    except ValidationError as e:
        errors = []
        for err in e.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
            errors.append(f"{loc}: {err.get('msg', 'invalid')}")
        return None, errors
