"""AI decision contract.

The action-detection prompt answers with a JSON object whose ``decision``
field is one of five values. Each value has its own model; the union is
discriminated on ``decision`` and validated when the AI response is parsed.
"""

import json
import logging
import re
from enum import Enum
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from ..models import ActionType

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    NO_ACTION = "NO_ACTION"
    ACTION_NEEDED = "ACTION_NEEDED"
    SET_FUTURE_REMINDER = "SET_FUTURE_REMINDER"
    REQUEST_HUMAN_REVIEW = "REQUEST_HUMAN_REVIEW"
    QUERY_KNOWLEDGE_BASE = "QUERY_KNOWLEDGE_BASE"


MessageChannel = Literal["sms", "email", "call"]
MESSAGE_CHANNELS = frozenset(get_args(MessageChannel))


# =============================================================================
# ACTION PAYLOADS
# =============================================================================


class MessagePayload(BaseModel):
    """Payload of a ``message`` action."""

    # Models sometimes emit ids and phone numbers as bare numbers
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    message_content: str = Field(
        min_length=1,
        validation_alias=AliasChoices("message_content", "message_text", "message", "content"),
    )
    recipient_id: str | None = None
    recipient_name: str | None = Field(
        default=None, validation_alias=AliasChoices("recipient_name", "recipient")
    )
    recipient_phone: str | None = Field(
        default=None, validation_alias=AliasChoices("recipient_phone", "phone")
    )
    recipient_email: str | None = Field(
        default=None, validation_alias=AliasChoices("recipient_email", "email")
    )
    sender: str | None = None
    channel: MessageChannel | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_recipient(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("recipient"), dict):
            return data
        data = dict(data)
        nested = data.pop("recipient")
        for key in ("id", "name", "phone", "email"):
            if nested.get(key) is not None:
                data.setdefault(f"recipient_{key}", nested[key])
        return data

    @field_validator("channel", mode="before")
    @classmethod
    def _normalize_channel(cls, value: Any) -> str | None:
        """Unknown channels are dropped so delivery picks one from the recipient."""
        if not isinstance(value, str):
            return None
        channel = value.lower().strip()
        if channel not in MESSAGE_CHANNELS:
            logger.info(f"Ignoring unsupported message channel {value!r}")
            return None
        return channel


class DataUpdatePayload(BaseModel):
    """Payload of a ``data_update`` action."""

    model_config = ConfigDict(extra="allow")

    field: str = Field(min_length=1)
    value: Any = None
    description: str | None = None


PAYLOAD_MODELS: dict[ActionType, type[BaseModel]] = {
    ActionType.MESSAGE: MessagePayload,
    ActionType.DATA_UPDATE: DataUpdatePayload,
}


# =============================================================================
# DECISIONS
# =============================================================================


class _DecisionBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    reason: str | None = None
    priority: str | None = None


class NoActionDecision(_DecisionBase):
    decision: Literal["NO_ACTION"]


class ActionNeededDecision(_DecisionBase):
    decision: Literal["ACTION_NEEDED"]
    action_type: ActionType = ActionType.MESSAGE
    action_payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("action_type")
    @classmethod
    def _executable_type(cls, value: ActionType) -> ActionType:
        if value not in PAYLOAD_MODELS:
            raise ValueError(f"action_type {value.value!r} cannot be requested as ACTION_NEEDED")
        return value

    @model_validator(mode="after")
    def _validate_payload(self) -> "ActionNeededDecision":
        # Payload fields may be nested under action_payload or sent flat
        raw = {**(self.model_extra or {}), **self.action_payload}
        model = PAYLOAD_MODELS[self.action_type]
        self.action_payload = model.model_validate(raw).model_dump(exclude_none=True)
        return self


class SetFutureReminderDecision(_DecisionBase):
    decision: Literal["SET_FUTURE_REMINDER"]
    days_until_check: int = Field(default=7, ge=1, le=365)
    check_reason: str = "Follow-up check"


class RequestHumanReviewDecision(_DecisionBase):
    decision: Literal["REQUEST_HUMAN_REVIEW"]
    review_reason: str | None = None


class QueryKnowledgeBaseDecision(_DecisionBase):
    decision: Literal["QUERY_KNOWLEDGE_BASE"]
    query: str | None = Field(
        default=None, validation_alias=AliasChoices("query", "knowledge_query", "question")
    )

    @property
    def search_text(self) -> str:
        return self.query or self.reason or ""


AIDecision = Annotated[
    Union[
        NoActionDecision,
        ActionNeededDecision,
        SetFutureReminderDecision,
        RequestHumanReviewDecision,
        QueryKnowledgeBaseDecision,
    ],
    Field(discriminator="decision"),
]

_decision_adapter: TypeAdapter[AIDecision] = TypeAdapter(AIDecision)


# =============================================================================
# PARSING
# =============================================================================


_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_decoder = json.JSONDecoder()


def extract_json_object(text: str) -> dict[str, Any] | None:
    """
    Pull a JSON object out of an AI response.

    Tries, in order: the whole text, a fenced code block, and then the first
    ``{`` in the prose that starts a complete JSON object.
    """
    if not text:
        return None

    candidates = [text.strip()]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    start = text.find("{")
    while start != -1:
        try:
            data, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data
        start = text.find("{", start + 1)
    return None


def parse_ai_decision(text: str) -> AIDecision | None:
    """Parse raw AI output into a decision, or None if it is not one."""
    data = extract_json_object(text)
    if data is None:
        logger.warning("AI response did not contain a JSON object")
        return None

    decision = data.get("decision")
    if isinstance(decision, str):
        data["decision"] = decision.strip().upper()

    try:
        return _decision_adapter.validate_python(data)
    except ValidationError as e:
        logger.warning(f"AI decision failed validation: {e.error_count()} error(s): {e.errors()[:3]}")
        return None
