from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime


class MessageStatus(str, Enum):
    pending = "pending"
    approved = "approved"


# Wall message, held in memory only
class Message(BaseModel):
    id: int = Field(..., description="Process-unique, strictly increasing id")
    text: str
    author: str
    timestamp: datetime
    status: MessageStatus = MessageStatus.pending

    def to_wire(self, section: Optional[str] = None) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        if section is not None:
            data["section"] = section
        return data


# Admin-facing operational event (bounded ring buffer)
class LogEntry(BaseModel):
    type: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


# Realtime frame sent to every client
class Frame(BaseModel):
    type: str
    data: Any = None
