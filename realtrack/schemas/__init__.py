"""
realtrack.schemas
~~~~~~~~~~~~~~~~~
Pydantic schemas for the HTTP API and the WebSocket event protocol.
"""
from realtrack.schemas.api_response import ApiResponse
from realtrack.schemas.events import (
    ClientEvent,
    DestinationData,
    MemberData,
    RoomJoinedData,
    ServerEvent,
    parse_client_event,
    server_event,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
ServerEvent.model_rebuild()
