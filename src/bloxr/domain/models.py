from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


ScriptKind = Literal["Script", "LocalScript", "ModuleScript"]
TargetService = Literal[
    "ServerScriptService",
    "StarterPlayerScripts",
    "ReplicatedStorage",
    "StarterGui",
]
PartClass = Literal[
    "Part",
    "MeshPart",
    "WedgePart",
    "CornerWedgePart",
    "TrussPart",
    "SpawnLocation",
    "Seat",
    "Model",
]
QueueStatus = Literal["pending", "error"]


class ScriptPayload(BaseModel):
    type: Literal["script"] = "script"
    name: str = Field(min_length=1)
    scriptType: ScriptKind
    targetService: TargetService
    code: str = Field(min_length=1)


class PartPayload(BaseModel):
    type: Literal["part"] = "part"
    name: str = Field(min_length=1)
    className: PartClass = "Part"
    properties: Dict[str, Any] = Field(default_factory=dict)


Payload = Annotated[Union[PartPayload, ScriptPayload], Field(discriminator="type")]

_payload_adapter: TypeAdapter[Payload] = TypeAdapter(Payload)


def normalize_payload(data: Any) -> Union[PartPayload, ScriptPayload]:
    """Validate a raw document into exactly one payload variant.

    Documents without a ``type`` field are treated as scripts; older
    responses never carried the discriminant.

    Raises ``pydantic.ValidationError`` (or ``TypeError`` for non-objects).
    """
    if not isinstance(data, dict):
        raise TypeError(f"payload must be an object, got {type(data).__name__}")
    doc = dict(data)
    if not doc.get("type"):
        doc["type"] = "script"
    return _payload_adapter.validate_python(doc)


class Session(BaseModel):
    token: str
    user_id: str
    expires_at: datetime


class TokenRequest(BaseModel):
    user_id: str = Field(min_length=1)


class TokenResponse(BaseModel):
    token: str
    expires_at: datetime


class QueueItem(BaseModel):
    id: str
    user_id: str
    payload: Payload
    status: QueueStatus = "pending"
    created_at: str

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payload": self.payload.model_dump(),
            "status": self.status,
            "created_at": self.created_at,
        }


class ConfirmRequest(BaseModel):
    id: str = Field(min_length=1)


class RuntimeErrorReport(BaseModel):
    message: str
    script: Optional[str] = None
    line: Optional[int] = None


class ErrorReportRequest(RuntimeErrorReport):
    id: Optional[str] = None


class WorkspaceContext(BaseModel):
    context: List[str] = Field(default_factory=list)


class PlaceReport(BaseModel):
    placeId: Optional[Union[int, str]] = None
    gameId: Optional[Union[int, str]] = None
