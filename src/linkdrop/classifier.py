"""Classification of Account Activity webhook events.

Everything here is pure: the same raw event always yields an equal
``InboundEvent`` and nothing outside the arguments is read or written.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ClassificationAmbiguous

DEFAULT_MARKER = "UpDog"
BATCH_KEYS = ("direct_message_events", "tweet_create_events")

MessageFilter = Callable[[str, str], bool]


class EventKind(str, Enum):
    DIRECT_MESSAGE = "direct_message"
    PUBLIC_MENTION = "public_mention"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ReplyContext:
    post_id: str
    handle: str


@dataclass(frozen=True, slots=True)
class InboundEvent:
    kind: EventKind
    requester_id: Optional[str] = None
    payload_text: str = ""
    qualifying_marker_present: bool = False
    reply_context: Optional[ReplyContext] = None

    @property
    def qualifies(self) -> bool:
        return self.kind is not EventKind.UNKNOWN and bool(self.requester_id)


UNKNOWN_EVENT = InboundEvent(kind=EventKind.UNKNOWN)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, coerce_numbers_to_str=True)


class _Target(_Payload):
    recipient_id: str


class _MessageData(_Payload):
    text: str = ""


class _MessageCreate(_Payload):
    target: _Target
    sender_id: str
    message_data: _MessageData = Field(default_factory=_MessageData)


class _DirectMessageEvent(_Payload):
    type: str
    message_create: _MessageCreate


class _Hashtag(_Payload):
    text: str


class _Entities(_Payload):
    hashtags: List[_Hashtag] = Field(default_factory=list)


class _User(_Payload):
    id_str: str
    screen_name: str = ""


class _TweetCreateEvent(_Payload):
    id_str: str
    text: str = ""
    user: _User
    entities: _Entities = Field(default_factory=_Entities)


def accept_all(text: str, sender_id: str) -> bool:
    """Default direct-message filter; no content rules are defined."""

    return True


def _parse(model: type[BaseModel], raw: Mapping[str, Any]) -> Any:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise ClassificationAmbiguous(details={"model": model.__name__, "errors": exc.error_count()}) from exc


@dataclass(frozen=True)
class EventClassifier:
    """Decide whether a raw event earns a response and for whom."""

    bot_user_id: str
    marker: str = DEFAULT_MARKER
    message_filter: MessageFilter = accept_all

    def classify(self, raw_event: Any) -> InboundEvent:
        if not isinstance(raw_event, Mapping):
            return UNKNOWN_EVENT
        try:
            if "message_create" in raw_event:
                return self._classify_direct_message(raw_event)
            if "user" in raw_event or "entities" in raw_event:
                return self._classify_mention(raw_event)
        except ClassificationAmbiguous:
            return UNKNOWN_EVENT
        return UNKNOWN_EVENT

    def split_batch(self, body: Any) -> List[Mapping[str, Any]]:
        """Return the individual events of a webhook body addressed to the bot."""

        if not isinstance(body, Mapping):
            return []
        if str(body.get("for_user_id", "")) != self.bot_user_id:
            return []
        events: List[Mapping[str, Any]] = []
        for key in BATCH_KEYS:
            batch = body.get(key)
            if isinstance(batch, list):
                events.extend(item for item in batch if isinstance(item, Mapping))
        return events

    def has_marker(self, hashtags: List[_Hashtag]) -> bool:
        wanted = self.marker.casefold()
        return any(tag.text.casefold() == wanted for tag in hashtags)

    def _classify_direct_message(self, raw: Mapping[str, Any]) -> InboundEvent:
        event: _DirectMessageEvent = _parse(_DirectMessageEvent, raw)
        create = event.message_create
        text = create.message_data.text
        addressed = event.type == "message_create" and create.target.recipient_id == self.bot_user_id
        kind = EventKind.DIRECT_MESSAGE
        if not addressed or not self.message_filter(text, create.sender_id):
            kind = EventKind.UNKNOWN
        return InboundEvent(kind=kind, requester_id=create.sender_id, payload_text=text)

    def _classify_mention(self, raw: Mapping[str, Any]) -> InboundEvent:
        event: _TweetCreateEvent = _parse(_TweetCreateEvent, raw)
        marker_present = self.has_marker(event.entities.hashtags)
        sender = event.user.id_str
        if not marker_present or sender == self.bot_user_id:
            return InboundEvent(
                kind=EventKind.UNKNOWN,
                requester_id=sender,
                payload_text=event.text,
                qualifying_marker_present=marker_present,
            )
        handle = f"@{event.user.screen_name}" if event.user.screen_name else ""
        return InboundEvent(
            kind=EventKind.PUBLIC_MENTION,
            requester_id=sender,
            payload_text=event.text,
            qualifying_marker_present=True,
            reply_context=ReplyContext(post_id=event.id_str, handle=handle),
        )
