from fastapi import Request

from realtrack.services.room_system import RoomSystem


def get_room_system(request: Request) -> RoomSystem:
    return request.app.state.room_system
