from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from errors import InvalidRequest

MESSAGES_REQUIRED = 'The "messages" field is required and must be a non-empty array.'


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    modelId: Optional[str] = None
    messages: List[ChatMessage] = Field(..., min_length=1)


def parse_chat_request(data: Any) -> ChatRequest:
    """Validate a decoded JSON body, raising InvalidRequest on any shape problem."""
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object.")
    try:
        return ChatRequest.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        if first["loc"] and first["loc"][0] == "messages" and len(first["loc"]) == 1:
            raise InvalidRequest(MESSAGES_REQUIRED) from e
        raise InvalidRequest(f"Invalid field {location}: {first['msg']}") from e
