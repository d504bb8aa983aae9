"""Chat message handling on top of the memory store.

Platform adapters turn their webhook payloads into ``IncomingMessage`` and
hand them to ``ConversationHandler.handle``.  Model calls and outbound
delivery are injected, so this module only decides what to say and what to
remember.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from src.memory.errors import BackendError
from src.memory.store import MemoryStore

logger = logging.getLogger(__name__)

# async (context: str) -> reply text
ReplyGenerator = Callable[[str], Awaitable[str]]
# async (conversation_id, text) -> delivered?
ReplySender = Callable[[int, str], Awaitable[bool]]

FALLBACK_REPLY = "Sorry, I'm having trouble right now. Please try again shortly."
SETPROMPT_USAGE = "Usage: /setprompt <your prompt text>"
HELP_TEXT = (
    "🤖 *Bot Commands*\n\n"
    "/start - Start the bot\n"
    "/help - Show this help message\n"
    "/setprompt <text> - Prepend <text> to every message you send\n"
    "/getprompt - Show the current prompt\n"
    "/clearprompt - Remove the prompt\n\n"
    "Just send me any text and I'll respond using AI!"
)


@dataclass
class IncomingMessage:
    """What a platform adapter extracts from a webhook payload."""

    conversation_id: int
    sender_id: int
    display_name: str | None
    text: str


class ConversationHandler:
    """Answers one message at a time and records the exchange."""

    def __init__(
        self,
        store: MemoryStore,
        generate_reply: ReplyGenerator,
        send_reply: ReplySender,
    ) -> None:
        self._store = store
        self._generate_reply = generate_reply
        self._send_reply = send_reply

    async def handle(self, message: IncomingMessage) -> str | None:
        """Process *message*. Returns the reply sent, or None if nothing was sent."""
        text = message.text.strip()
        if not text:
            logger.debug("Skipping empty message in conversation %s", message.conversation_id)
            return None

        logger.info(
            "Processing message from %s in conversation %s",
            message.display_name or message.sender_id,
            message.conversation_id,
        )

        if text == "/start":
            greeting = f" {message.display_name}" if message.display_name else ""
            reply = (
                f"👋 Hello{greeting}! I'm an AI-powered bot. "
                "Send me any message and I'll respond using advanced language models."
            )
            return await self._reply_and_record(message, text, reply)

        if text == "/help":
            return await self._reply_and_record(message, text, HELP_TEXT)

        if text == "/setprompt" or text.startswith("/setprompt "):
            return await self._handle_setprompt(message, text)

        if text == "/getprompt":
            prompt = await self._load_prompt(message.conversation_id)
            reply = f"Current prompt: {prompt}" if prompt else "No prompt set for this chat."
            return await self._reply_and_record(message, text, reply)

        if text == "/clearprompt":
            await self._store.clear_prompt(message.conversation_id)
            reply = "Prompt cleared for this chat."
            await self._deliver(message.conversation_id, reply)
            return reply

        return await self._handle_chat(message, text)

    # -- Commands --------------------------------------------------------------

    async def _handle_setprompt(self, message: IncomingMessage, text: str) -> str:
        prompt = text.removeprefix("/setprompt").strip()
        if not prompt:
            await self._deliver(message.conversation_id, SETPROMPT_USAGE)
            return SETPROMPT_USAGE

        if await self._store.set_prompt(message.conversation_id, prompt):
            reply = "Prompt saved for this chat."
        else:
            reply = "Prompt saved for now, but it may not survive a restart."
        await self._deliver(message.conversation_id, reply)
        return reply

    # -- Chat ------------------------------------------------------------------

    async def _handle_chat(self, message: IncomingMessage, text: str) -> str:
        context = await self.compose_context(message.conversation_id, text)

        try:
            reply = await self._generate_reply(context)
        except Exception:
            logger.exception("Reply generation failed for conversation %s", message.conversation_id)
            reply = FALLBACK_REPLY

        if not reply or not reply.strip():
            reply = FALLBACK_REPLY
        return await self._reply_and_record(message, text, reply.strip())

    async def compose_context(self, conversation_id: int, text: str) -> str:
        """History lines plus the new user line (prefixed by the prompt, if set).

        A storage failure degrades to no history and no prompt.
        """
        try:
            lines = await self._store.build_context(conversation_id, self._store.keep)
        except BackendError:
            logger.exception("History unavailable for conversation %s", conversation_id)
            lines = []

        prompt = await self._load_prompt(conversation_id)
        combined = f"{prompt}\n{text}" if prompt else text
        lines.append(f"User: {combined}")
        return "\n".join(lines)

    # -- Helpers ---------------------------------------------------------------

    async def _load_prompt(self, conversation_id: int) -> str | None:
        try:
            prompt = await self._store.get_prompt(conversation_id)
        except BackendError:
            logger.exception("Prompt unavailable for conversation %s", conversation_id)
            return None
        return prompt

    async def _deliver(self, conversation_id: int, reply: str) -> bool:
        delivered = await self._send_reply(conversation_id, reply)
        if not delivered:
            logger.warning("Reply delivery failed for conversation %s", conversation_id)
        return delivered

    async def _reply_and_record(self, message: IncomingMessage, text: str, reply: str) -> str:
        """Send first, then record; storage trouble never blocks delivery."""
        await self._deliver(message.conversation_id, reply)
        saved = await self._store.record_interaction(
            message.conversation_id,
            message.sender_id,
            message.display_name,
            text,
            reply,
        )
        if not saved:
            logger.warning(
                "Interaction for conversation %s was not persisted durably",
                message.conversation_id,
            )
        return reply
