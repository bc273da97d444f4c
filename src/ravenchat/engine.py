"""The send engine: one user message in, one streamed assistant message out."""

import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from .budget import TokenBudgetContext, compute_max_tokens, estimate_input_tokens
from .config import Settings
from .errors import ConfigurationError, classify_error
from .llm import LLM, build_chat_payload
from .models import (
    ASSISTANT_ROLE,
    REASONING_MODE,
    USER_ROLE,
    Attachment,
    ChatMessage,
    ChatSession,
    Citation,
    Content,
)
from .store import Store
from .streaming import (
    CancelToken,
    SendGeneration,
    StreamAccumulator,
    StreamCallbacks,
    ingest,
)

logger = logging.getLogger(__name__)


class SendState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


def compose_user_content(
    text: str, attachments: Optional[Sequence[Attachment]] = None
) -> Content:
    """Builds the user turn from typed text and already-encoded attachments.

    Any image attachment turns the message into a multimodal list; otherwise
    documents are appended to the text with a header naming the file.
    """
    text = text.strip()
    attachments = list(attachments or [])
    images = [a for a in attachments if a.type == "image"]
    if images:
        return [{"type": "text", "text": text}] + [
            {"type": "image_url", "image_url": {"url": a.url}} for a in images
        ]
    for attachment in attachments:
        if attachment.type == "document":
            text += f"\n\n[Attached document: {attachment.name}]\n{attachment.url}"
    return text


class _Attempt:
    """Store writes for one send attempt, keyed by its assistant message id."""

    def __init__(self, engine: "Engine", session_id: str):
        self.engine = engine
        self.store = engine.store
        self.session_id = session_id
        self.message_id = ChatMessage(role=ASSISTANT_ROLE).id
        self.accumulator = StreamAccumulator()

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_reasoning=self.on_reasoning,
            on_first_content=self.on_first_content,
            on_content=self.on_content,
            on_citations=self.on_citations,
        )

    def on_reasoning(self, reasoning: str) -> None:
        self.engine._reasoning[self.session_id] = reasoning

    def on_first_content(self, content: str) -> None:
        self.store.create_message(
            self.session_id,
            ChatMessage(id=self.message_id, role=ASSISTANT_ROLE, content=content),
        )

    def on_content(self, content: str) -> None:
        self.store.update_message(self.session_id, self.message_id, content=content)

    def on_citations(self, citations: List[Citation]) -> None:
        self.store.update_message(
            self.session_id, self.message_id, citations=citations or None
        )

    def finalize(self) -> None:
        acc = self.accumulator
        if not acc.assistant_message_created:
            return
        self.store.update_message(
            self.session_id,
            self.message_id,
            content=acc.content_text,
            reasoning=acc.reasoning_text or None,
            citations=acc.citations or None,
        )

    def fail(self, message: str) -> None:
        if self.accumulator.assistant_message_created:
            self.store.update_message(
                self.session_id, self.message_id, content=message, reasoning=None
            )
        else:
            self.store.create_message(
                self.session_id,
                ChatMessage(id=self.message_id, role=ASSISTANT_ROLE, content=message),
            )


class Engine:
    """Runs send attempts against an LLM transport and a session store.

    At most one attempt is live at a time: starting a send, opening a new
    session, switching sessions or calling :meth:`cancel` advances the send
    generation, after which an older attempt writes nothing more.
    """

    def __init__(self, llm: LLM, store: Store, settings: Optional[Settings] = None):
        self.llm = llm
        self.store = store
        self.settings = settings or Settings()
        self.state = SendState.IDLE
        self.generation = SendGeneration()
        self.active_session_id: Optional[str] = None
        self._reasoning: Dict[str, str] = {}

    def streaming_reasoning(self, session_id: str) -> str:
        """The live reasoning text of the in-flight attempt, if any."""
        return self._reasoning.get(session_id, "")

    def cancel(self) -> None:
        self.generation.advance()
        self.active_session_id = None

    def delete_session(self, session_id: str) -> None:
        """Deletes a session, first abandoning a send that is streaming into it."""
        if self.active_session_id == session_id:
            self.cancel()
        self._reasoning.pop(session_id, None)
        self.store.delete_session(session_id)

    def rename_session(self, session_id: str, title: str) -> Optional[ChatSession]:
        title = title.strip()
        if not title:
            return None
        return self.store.rename_session(session_id, title)

    def update_preferences(self, **changes) -> Settings:
        """Applies user preferences and writes them to ``settings_path`` if set.

        Parameters
        ----------
        **changes
            Settings fields to change, e.g. ``show_reasoning=False``. ``None``
            values are ignored.

        Raises
        ------
        ConfigurationError
            If a value fails validation. Nothing is applied in that case.
        """
        changes = {key: value for key, value in changes.items() if value is not None}
        updated = self.settings.model_dump()
        updated.update(changes)
        try:
            Settings.model_validate(updated)
        except ValidationError as e:
            raise ConfigurationError(str(e), original_error=e) from e
        for key, value in changes.items():
            setattr(self.settings, key, value)
        if self.settings.settings_path is not None:
            self.settings.save(self.settings.settings_path)
        return self.settings

    def new_session(
        self, feature_mode: Optional[str] = None, model: Optional[str] = None
    ) -> ChatSession:
        self.cancel()
        return self.store.create_session(
            feature_mode or self.settings.feature_mode, model or self.settings.model
        )

    def switch_session(self, session_id: str) -> Optional[ChatSession]:
        self.cancel()
        return self.store.load_session(session_id)

    async def send_message(
        self,
        session_id: str,
        user_input: str,
        *,
        attachments: Optional[Sequence[Attachment]] = None,
        feature_mode: Optional[str] = None,
        model: Optional[str] = None,
    ) -> SendState:
        """Sends one user message and streams the answer into the store.

        Returns
        -------
        SendState
            ``COMPLETE`` or ``FAILED`` for a finished attempt, ``IDLE`` when
            the input was blank and nothing was sent. A cancelled attempt
            reports ``COMPLETE`` with whatever it had written before.
        """
        if not user_input or not user_input.strip():
            return SendState.IDLE

        settings = self.settings
        feature_mode = feature_mode or settings.feature_mode
        model = model or settings.model

        self.generation.advance()
        token = self.generation.token()

        session = self.store.load_session(session_id)
        history = list(session.messages) if session else []

        content = compose_user_content(user_input, attachments)
        self.store.create_message(
            session_id,
            ChatMessage(
                role=USER_ROLE, content=content, attachments=list(attachments or []) or None
            ),
        )

        attempt = _Attempt(self, session_id)
        self.active_session_id = session_id
        self._set_state(token, SendState.SENDING)
        outcome = SendState.FAILED
        try:
            context = TokenBudgetContext(
                input_tokens=estimate_input_tokens(history, content),
                provider=settings.provider,
                model=model,
                user_max_tokens=settings.max_tokens,
                adaptive=settings.use_adaptive_tokens,
                feature_mode=feature_mode,
            )
            payload = build_chat_payload(
                history,
                content,
                model=model,
                provider=settings.provider,
                feature_mode=feature_mode,
                max_tokens=compute_max_tokens(context),
                show_reasoning=settings.show_reasoning,
            )
            async with self.llm.stream(payload) as body:
                self._set_state(token, SendState.STREAMING)
                await ingest(
                    body,
                    attempt.callbacks(),
                    capture_reasoning=(
                        settings.show_reasoning and feature_mode == REASONING_MODE
                    ),
                    cancel_token=token,
                    accumulator=attempt.accumulator,
                )
            outcome = SendState.COMPLETE
            if not token.cancelled:
                attempt.finalize()
        except Exception as e:
            logger.error("Error sending message: %s", e, exc_info=True)
            if not token.cancelled:
                attempt.fail(classify_error(e, model))
        finally:
            # The live reasoning entry belongs to whichever attempt is current.
            if not token.cancelled or self.active_session_id != session_id:
                self._reasoning.pop(session_id, None)
            if not token.cancelled:
                self.active_session_id = None
            self._set_state(token, SendState.IDLE)
        return outcome

    def _set_state(self, token: CancelToken, state: SendState) -> None:
        # A superseded attempt must not overwrite the live attempt's state.
        if not token.cancelled:
            self.state = state
