import logging
from typing import Any, Optional

from pydantic import BaseModel

from .messages import InboundMessage, parse_inbound

logger = logging.getLogger(__name__)


class PanelDisposedError(RuntimeError):
    """Raised by a view handle that is used after disposal"""


class MessageChannel:
    """Host side of the conversation with one preview view.

    Sends are best effort: a failed post is logged and reported as False, never
    raised. Ordering within each direction is provided by the view handle,
    whose ``post_message`` only enqueues.
    """

    def __init__(self, view):
        self.view = view

    @property
    def is_open(self) -> bool:
        return not self.view.disposed

    def send(self, message: BaseModel) -> bool:
        """Post a message to the view; returns whether it was accepted"""
        payload = message.model_dump()
        try:
            self.view.post_message(payload)
            return True
        except PanelDisposedError:
            logger.info(f"Dropped {payload.get('type')} message: preview panel is closed")
        except Exception as e:
            logger.error(f"Failed to post {payload.get('type')} message: {e}")
        return False

    @staticmethod
    def receive(raw: Any) -> Optional[InboundMessage]:
        return parse_inbound(raw)
