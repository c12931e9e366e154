"""
streamchat.schemas
~~~~~~~~~~~~~~~~~~
Pydantic schemas: REST envelopes, chat records and WebSocket frames.
"""
from streamchat.schemas.api_response import ApiResponse
from streamchat.schemas.chat import (
    ChatMessage,
    DonationRecord,
    DonationRequest,
    RoomInfoData,
    StoredChatMessage,
    UserIdentity,
)
from streamchat.schemas.frames import (
    ChatFrame,
    DonationFrame,
    ErrorFrame,
    HistoryFrame,
    JoinFrame,
    LeaveFrame,
    MessageFrame,
    decode_frame,
    encode_frame,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
