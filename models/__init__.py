from .messages import (
    Action,
    CategoryHints,
    FanOutDelivery,
    FanOutRequest,
    MarkListedRequest,
    Message,
    SequentialDelivery,
    SequentialRequest,
)
from .session import (
    Checkpoint,
    ListingStage,
    PendingUpdate,
    SessionKind,
    SessionResponse,
)

__all__ = [
    "Action",
    "CategoryHints",
    "FanOutDelivery",
    "FanOutRequest",
    "MarkListedRequest",
    "Message",
    "SequentialDelivery",
    "SequentialRequest",
    "Checkpoint",
    "ListingStage",
    "PendingUpdate",
    "SessionKind",
    "SessionResponse",
]
