"""Change notifications and an idempotent client-side sprint collection.

The bus is transport-agnostic: services publish to it directly, and any
polling or push mechanism can feed it the same events. Delivering an event
twice has no additional effect.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Iterable, Optional

from sprinttracker.models import ChangeEvent, ChangeKind, EntityType, Sprint

log = logging.getLogger(__name__)

Listener = Callable[[ChangeEvent], None]


def new_event(
    entity: EntityType,
    kind: ChangeKind,
    entity_id: int,
    user_id: int,
    payload: Optional[dict] = None,
) -> ChangeEvent:
    return ChangeEvent(
        event_id=uuid.uuid4().hex,
        entity=entity,
        kind=kind,
        entity_id=entity_id,
        user_id=user_id,
        payload=payload,
    )


class EventBus:
    """In-process publish/subscribe keyed by entity type."""

    def __init__(self) -> None:
        self._listeners: dict[EntityType, list[Listener]] = {}

    def on_change(self, entity: EntityType, callback: Listener) -> Callable[[], None]:
        """Subscribe to one entity type. Returns an unsubscribe function."""
        listeners = self._listeners.setdefault(entity, [])
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        for callback in list(self._listeners.get(event.entity, [])):
            callback(event)


class SprintCollection:
    """A user's sprints kept current from change events.

    Events already seen are ignored, and an entity deleted once is never
    resurrected by a late create or update.
    """

    def __init__(self, user_id: int, sprints: Iterable[Sprint] = ()) -> None:
        self.user_id = user_id
        self._items: dict[int, Sprint] = {}
        self._seen: set[str] = set()
        self._deleted: set[int] = set()
        self.replace(sprints)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, sprint_id: object) -> bool:
        return sprint_id in self._items

    @property
    def items(self) -> list[Sprint]:
        """Sprints, most recently completed first."""
        return sorted(self._items.values(), key=lambda s: (s.completed_at, s.id), reverse=True)

    def replace(self, sprints: Iterable[Sprint]) -> None:
        """Reset from a full refetch, keeping known deletions applied."""
        self._items = {s.id: s for s in sprints if s.id not in self._deleted}

    def subscribe(self, bus: EventBus) -> Callable[[], None]:
        return bus.on_change(EntityType.SPRINT, self.apply)

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one event. Returns False when it was a duplicate or irrelevant."""
        if event.entity is not EntityType.SPRINT or event.user_id != self.user_id:
            return False
        if event.event_id in self._seen:
            log.debug("Ignoring duplicate event %s", event.event_id)
            return False
        self._seen.add(event.event_id)

        if event.kind is ChangeKind.DELETED:
            self._deleted.add(event.entity_id)
            self._items.pop(event.entity_id, None)
            return True
        if event.entity_id in self._deleted or event.payload is None:
            return False
        self._items[event.entity_id] = Sprint(**event.payload)
        return True
