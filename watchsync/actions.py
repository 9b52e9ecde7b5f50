"""
Queued mutations awaiting acknowledgement by the remote store.

Each action kind is its own dataclass carrying a typed payload. Actions
serialize to (kind, JSON payload) rows for the durable queue; the payload
shapes match what the remote store receives on replay:

    ADD              full item record
    ADD_MULTIPLE     list of item records
    UPDATE           {"id": ..., "updates": {...}}
    DELETE           {"id": ...}
    DELETE_MULTIPLE  list of ids
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Iterable, Optional, Union

from .types import WatchlistItem, update_payload


class ActionKind(str, Enum):
    ADD = "ADD"
    ADD_MULTIPLE = "ADD_MULTIPLE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    DELETE_MULTIPLE = "DELETE_MULTIPLE"


class _ActionBase:
    kind: ClassVar[ActionKind]

    def entity_ids(self) -> list[str]:
        raise NotImplementedError

    def payload(self) -> Any:
        raise NotImplementedError

    def payload_json(self) -> str:
        return json.dumps(self.payload(), ensure_ascii=False)

    def touches(self, entity_id: str) -> bool:
        return entity_id in self.entity_ids()


@dataclass
class AddAction(_ActionBase):
    item: WatchlistItem
    id: Optional[int] = None
    timestamp: float = 0.0
    kind: ClassVar[ActionKind] = ActionKind.ADD

    def entity_ids(self) -> list[str]:
        return [self.item.id]

    def payload(self) -> Any:
        return self.item.to_dict()


@dataclass
class AddMultipleAction(_ActionBase):
    items: list[WatchlistItem] = field(default_factory=list)
    id: Optional[int] = None
    timestamp: float = 0.0
    kind: ClassVar[ActionKind] = ActionKind.ADD_MULTIPLE

    def entity_ids(self) -> list[str]:
        return [item.id for item in self.items]

    def payload(self) -> Any:
        return [item.to_dict() for item in self.items]


@dataclass
class UpdateAction(_ActionBase):
    entity_id: str
    updates: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    timestamp: float = 0.0
    kind: ClassVar[ActionKind] = ActionKind.UPDATE

    def entity_ids(self) -> list[str]:
        return [self.entity_id]

    def payload(self) -> Any:
        return {"id": self.entity_id, "updates": update_payload(self.updates)}


@dataclass
class DeleteAction(_ActionBase):
    entity_id: str
    id: Optional[int] = None
    timestamp: float = 0.0
    kind: ClassVar[ActionKind] = ActionKind.DELETE

    def entity_ids(self) -> list[str]:
        return [self.entity_id]

    def payload(self) -> Any:
        return {"id": self.entity_id}


@dataclass
class DeleteMultipleAction(_ActionBase):
    ids: list[str] = field(default_factory=list)
    id: Optional[int] = None
    timestamp: float = 0.0
    kind: ClassVar[ActionKind] = ActionKind.DELETE_MULTIPLE

    def entity_ids(self) -> list[str]:
        return list(self.ids)

    def payload(self) -> Any:
        return list(self.ids)


QueuedAction = Union[
    AddAction, AddMultipleAction, UpdateAction, DeleteAction, DeleteMultipleAction
]


def action_from_row(
    action_id: int, kind: str, payload_json: str, timestamp: float
) -> QueuedAction:
    """Rebuild an action from its durable (kind, payload) row."""
    payload = json.loads(payload_json)
    kind = ActionKind(kind)
    if kind is ActionKind.ADD:
        return AddAction(WatchlistItem.from_dict(payload), id=action_id, timestamp=timestamp)
    if kind is ActionKind.ADD_MULTIPLE:
        return AddMultipleAction(
            [WatchlistItem.from_dict(p) for p in payload], id=action_id, timestamp=timestamp,
        )
    if kind is ActionKind.UPDATE:
        return UpdateAction(
            payload["id"], dict(payload.get("updates") or {}), id=action_id, timestamp=timestamp,
        )
    if kind is ActionKind.DELETE:
        return DeleteAction(payload["id"], id=action_id, timestamp=timestamp)
    return DeleteMultipleAction(list(payload), id=action_id, timestamp=timestamp)


def pending_ids(actions: Iterable[QueuedAction]) -> list[str]:
    """Entity ids referenced by any queued action, in first-seen order."""
    seen: dict[str, None] = {}
    for action in actions:
        for entity_id in action.entity_ids():
            seen.setdefault(entity_id, None)
    return list(seen)
