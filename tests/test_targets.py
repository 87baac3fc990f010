"""Tests for target scope resolution."""

import pytest

from media_ingest.services.errors import ValidationError
from media_ingest.services.room_store import RoomStore
from media_ingest.services.targets import Bulk, Single, resolve_targets


class TestResolveTargets:
    """Tests for resolve_targets."""

    def test_single(self, store: RoomStore) -> None:
        """Test that a single scope resolves to its id."""
        store.create_room("Lounge", room_id="room-1")
        assert resolve_targets(Single("room-1"), store) == ["room-1"]

    def test_single_empty_id(self, store: RoomStore) -> None:
        """Test that a single scope without an id is rejected."""
        with pytest.raises(ValidationError, match="No room selected"):
            resolve_targets(Single(""), store)

    def test_single_unknown_room(self, store: RoomStore) -> None:
        """Test that a single scope naming a missing room is rejected."""
        with pytest.raises(ValidationError, match="Room ghost not found"):
            resolve_targets(Single("ghost"), store)

    def test_bulk_explicit_ids_deduplicated(self, store: RoomStore) -> None:
        """Test that explicit ids keep their order without duplicates."""
        store.create_room("A", room_id="a")
        store.create_room("B", room_id="b")
        scope = Bulk(target_ids=("b", "a", "b", ""))
        assert resolve_targets(scope, store) == ["b", "a"]

    def test_bulk_drops_unknown_rooms(self, store: RoomStore) -> None:
        """Test that ids of missing rooms are left out of the selection."""
        store.create_room("A", room_id="a")
        assert resolve_targets(Bulk(target_ids=("ghost", "a")), store) == ["a"]

    def test_bulk_only_unknown_rooms(self, store: RoomStore) -> None:
        """Test that a selection of missing rooms resolves to nothing."""
        with pytest.raises(ValidationError, match="No rooms selected"):
            resolve_targets(Bulk(target_ids=("ghost1", "ghost2")), store)

    def test_bulk_type_filter(self, store: RoomStore) -> None:
        """Test that a type filter resolves to every room of that type."""
        first = store.create_room("Bedroom 1", room_type="bedroom")
        store.create_room("Kitchen", room_type="kitchen")
        second = store.create_room("Bedroom 2", room_type="bedroom")

        assert resolve_targets(Bulk(room_type="bedroom"), store) == [first.id, second.id]

    def test_explicit_ids_win_over_filter(self, store: RoomStore) -> None:
        """Test that an explicit selection ignores the type filter."""
        store.create_room("Bedroom", room_type="bedroom")
        store.create_room("Study", room_id="x")
        assert resolve_targets(Bulk(target_ids=("x",), room_type="bedroom"), store) == ["x"]

    def test_bulk_without_selection(self, store: RoomStore) -> None:
        """Test that an empty bulk scope is rejected."""
        store.create_room("Bedroom", room_type="bedroom")
        with pytest.raises(ValidationError, match="No rooms selected"):
            resolve_targets(Bulk(), store)

    def test_to_dict(self) -> None:
        """Test scope serialization."""
        assert Single("r1").to_dict() == {"scope": "single", "target_id": "r1"}
        assert Bulk(room_type="bedroom").to_dict() == {
            "scope": "bulk",
            "target_ids": [],
            "room_type": "bedroom",
        }
