from __future__ import annotations

from tutor_gateway.schemas import ChatMessage, ChatOptions

from .retry import ChatFailure
from .secure_client import ChatOutcome, OptionsLike, SecureChatClient, coerce_options

MAX_HISTORY_LENGTH = 20


class Conversation:
    """
    Multi-turn history on top of a shared ``SecureChatClient``.

    The user turn is appended before the request is sent; the assistant turn
    only after a successful reply. A failed call leaves no assistant turn, so
    fallback text shown to the user never becomes model context. A user turn
    the gateway blocked is dropped again so it is never resent as history.

    At most ``max_history`` user/assistant turns are kept, oldest first out.
    The system prompt is held separately and is always sent.
    """

    def __init__(
        self,
        client: SecureChatClient,
        system_prompt: str | None = None,
        options: OptionsLike = None,
        max_history: int = MAX_HISTORY_LENGTH,
    ) -> None:
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.client = client
        self.system_prompt = system_prompt
        self.options: ChatOptions = coerce_options(options)
        self.max_history = max_history
        self._history: list[ChatMessage] = []

    @property
    def history(self) -> list[ChatMessage]:
        return list(self._history)

    def _append(self, message: ChatMessage) -> None:
        self._history.append(message)
        del self._history[: -self.max_history]

    def _discard(self, message: ChatMessage) -> None:
        # By identity: another send may have appended turns meanwhile.
        for index, existing in enumerate(self._history):
            if existing is message:
                del self._history[index]
                return

    def _request_messages(self) -> list[ChatMessage]:
        messages = list(self._history)
        if self.system_prompt:
            messages.insert(0, ChatMessage(role="system", content=self.system_prompt))
        return messages

    async def send_with_outcome(self, text: str) -> ChatOutcome:
        user_turn = ChatMessage(role="user", content=text)
        self._append(user_turn)
        outcome = await self.client.request_completion(self._request_messages(), self.options)
        if outcome.ok:
            self._append(ChatMessage(role="assistant", content=outcome.text))
        elif outcome.failure is ChatFailure.CONTENT_BLOCKED:
            self._discard(user_turn)
        return outcome

    async def send(self, text: str) -> str:
        outcome = await self.send_with_outcome(text)
        return outcome.text

    def reset(self) -> None:
        self._history.clear()


__all__ = ["Conversation", "MAX_HISTORY_LENGTH"]
