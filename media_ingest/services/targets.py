"""Target scopes and their resolution to concrete room ids."""

from dataclasses import dataclass
from typing import Any, Protocol

from media_ingest.services.errors import ValidationError


class RoomDirectory(Protocol):
    """Read side of the room store needed for resolution."""

    def list_room_ids(self, room_type: str | None = None) -> list[str]: ...

    def room_exists(self, room_id: str) -> bool: ...


@dataclass(frozen=True)
class Single:
    """A batch destined for exactly one room."""

    target_id: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"scope": "single", "target_id": self.target_id}


@dataclass(frozen=True)
class Bulk:
    """A batch fanned out to several rooms.

    Either an explicit selection (``target_ids``) or a room-type filter applied to all
    rooms. An explicit selection wins when both are given; ids of rooms that do not
    exist are dropped.
    """

    target_ids: tuple[str, ...] = ()
    room_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "scope": "bulk",
            "target_ids": list(self.target_ids),
            "room_type": self.room_type,
        }


TargetScope = Single | Bulk


def resolve_targets(scope: TargetScope, directory: RoomDirectory) -> list[str]:
    """Resolve a scope to the room ids the batch will be applied to.

    Args:
        scope: Single or Bulk scope
        directory: Room lookup; only existing rooms are resolved

    Returns:
        Non-empty list of existing room ids, without duplicates, in selection order

    Raises:
        ValidationError: If the scope resolves to no existing rooms
    """
    if isinstance(scope, Single):
        if not scope.target_id:
            raise ValidationError("No room selected")
        if not directory.room_exists(scope.target_id):
            raise ValidationError(f"Room {scope.target_id} not found")
        return [scope.target_id]

    if scope.target_ids:
        selected = dict.fromkeys(i for i in scope.target_ids if i)
        ids = [i for i in selected if directory.room_exists(i)]
    elif scope.room_type:
        ids = directory.list_room_ids(room_type=scope.room_type)
    else:
        ids = []

    if not ids:
        raise ValidationError("No rooms selected")
    return ids
