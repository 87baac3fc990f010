"""Room API routes for media_ingest"""

from flask import Blueprint, Response, jsonify, request

from media_ingest.services.log_service import get_log_service
from media_ingest.services.room_store import RoomNotFound, get_room_store

rooms_bp = Blueprint("rooms", __name__)


@rooms_bp.route("", methods=["GET"])
def list_rooms() -> tuple[Response, int]:
    """List rooms.

    Query params:
        room_type: Only rooms of this type
    """
    rooms = get_room_store().list_rooms(room_type=request.args.get("room_type") or None)
    return jsonify({"rooms": [r.to_dict() for r in rooms]}), 200


@rooms_bp.route("", methods=["POST"])
def create_room() -> tuple[Response, int]:
    """Create a room.

    Request body:
        name: Display name (required)
        room_type: Room category
        id: Optional explicit id

    Returns:
        JSON room (201 Created)
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json() or {}
    name = str(data.get("name", "")).strip()
    if not name:
        return jsonify({"error": "name is required"}), 400

    store = get_room_store()
    room_id = data.get("id") or None
    if room_id and store.get_room(room_id):
        return jsonify({"error": f"Room {room_id} already exists"}), 409

    room = store.create_room(name, room_type=str(data.get("room_type", "")), room_id=room_id)
    get_log_service().info(
        "rooms",
        "room_created",
        f"Room created: {room.name}",
        {"room_id": room.id, "room_type": room.room_type},
    )
    return jsonify(room.to_dict()), 201


@rooms_bp.route("/<room_id>", methods=["GET"])
def get_room(room_id: str) -> tuple[Response, int]:
    """Get a room with its media."""
    room = get_room_store().get_room(room_id)
    if room is None:
        return jsonify({"error": "Room not found"}), 404
    return jsonify(room.to_dict()), 200


@rooms_bp.route("/<room_id>/images/<int:index>", methods=["DELETE"])
def remove_image(room_id: str, index: int) -> tuple[Response, int]:
    """Detach the image at a position from a room.

    The stored object itself is left in place.
    """
    try:
        room = get_room_store().remove_image(room_id, index)
    except RoomNotFound:
        return jsonify({"error": "Room not found"}), 404
    except IndexError as e:
        return jsonify({"error": str(e)}), 404

    get_log_service().info(
        "rooms",
        "room_image_removed",
        f"Removed image {index} from {room.name}",
        {"room_id": room_id, "index": index},
    )
    return jsonify(room.to_dict()), 200
