"""Message contract between the host and the preview iframe.

Inbound messages (view -> host) form a closed union discriminated on ``type``.
Every inbound message may carry the nonce of the content that produced it, so
late messages from replaced content can be recognised and dropped.
"""
import logging
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class ViewMessage(BaseModel):
    nonce: Optional[str] = None


class ReadyMessage(ViewMessage):
    type: Literal["ready"] = "ready"


class RenderedMessage(ViewMessage):
    type: Literal["rendered"] = "rendered"
    html: str = ""


class RenderErrorMessage(ViewMessage):
    type: Literal["renderError"] = "renderError"
    error: str = ""


class GlobalsMessage(ViewMessage):
    type: Literal["globals"] = "globals"
    globals: Dict[str, bool] = Field(default_factory=dict)


class LogMessage(ViewMessage):
    type: Literal["log"] = "log"
    level: str = "info"
    message: str = ""


InboundMessage = Annotated[
    Union[ReadyMessage, RenderedMessage, RenderErrorMessage, GlobalsMessage, LogMessage],
    Field(discriminator="type")
]

_inbound_adapter = TypeAdapter(InboundMessage)


class UpdateMessage(BaseModel):
    """Full replacement of the document's raw text"""
    type: Literal["update"] = "update"
    text: str


def parse_inbound(raw: Any) -> Optional[InboundMessage]:
    """Validate a decoded message; returns None for anything outside the contract"""
    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(f"Dropping malformed view message {raw!r}: {e.error_count()} error(s)")
        return None
