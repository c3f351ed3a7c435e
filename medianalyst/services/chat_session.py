"""
Follow-up chat for MediAnalyst.

A ChatSession pairs a server-side chat handle with the visible
transcript. Delivery failures never end the session: they show up as a
single model message in the transcript.
"""

from typing import Iterable, List, Optional, Protocol

from medianalyst.core.errors import ChatSendFailure, InvalidRequestError, PipelineBusyError
from medianalyst.models.schemas import ChatMessage, ChatRole
from medianalyst.utils.logger import get_logger

logger = get_logger("chat_session")

CHAT_ERROR_MESSAGE = "Error communicating with AI."
EMPTY_REPLY_MESSAGE = "Sorry, I couldn't understand that."


class ChatHandle(Protocol):
    """Anything that can deliver a message and return the reply text."""

    async def send(self, text: str) -> str:
        ...


class ChatSession:
    """
    Stateful conversation seeded with the analysis context.

    The transcript is append-only. Sends are serialized: a new message
    is refused while the previous reply is outstanding.
    """

    def __init__(self, handle: ChatHandle, transcript: Optional[Iterable[ChatMessage]] = None):
        self._handle = handle
        self._transcript: List[ChatMessage] = list(transcript or [])
        self._pending = False

    @property
    def transcript(self) -> List[ChatMessage]:
        """Copy of the conversation so far."""
        return list(self._transcript)

    @property
    def pending(self) -> bool:
        return self._pending

    def append(self, message: ChatMessage) -> None:
        self._transcript.append(message)

    async def send(self, text: str) -> ChatMessage:
        """
        Send a user message and record the reply.

        The user message is appended before the reply arrives.

        Args:
            text: Message typed by the user

        Returns:
            The model message appended to the transcript
        """
        if not text or not text.strip():
            raise InvalidRequestError("Message must not be empty")
        if self._pending:
            raise PipelineBusyError("Previous message is still awaiting a reply")

        self._pending = True
        self.append(ChatMessage(role=ChatRole.USER, content=text))
        try:
            reply_text = await self._handle.send(text)
            reply = ChatMessage(role=ChatRole.MODEL, content=reply_text or EMPTY_REPLY_MESSAGE)
        except Exception as e:
            failure = ChatSendFailure(f"Chat reply failed: {e}")
            logger.warning("Chat send failed", error=failure.message, error_code=failure.error_code)
            reply = ChatMessage(role=ChatRole.MODEL, content=CHAT_ERROR_MESSAGE)
        finally:
            self._pending = False

        self.append(reply)
        return reply
