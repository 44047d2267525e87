"""
Telegram transport: long-polling loop that feeds the wizard controller
"""
import asyncio
from typing import Any, Dict, Optional, Set

from dbms_advisor.core.config import Settings, get_settings
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.telegram_client import TelegramClient, TelegramError
from dbms_advisor.core.wizard_engine import WizardController, WizardReply
from dbms_advisor.core.wizard_prompts import SLOT_CRITERIA, Prompt

logger = LoggingConfig.get_logger(__name__)


def update_chat_id(update: Dict[str, Any]) -> Optional[int]:
    """Chat an update belongs to, None for updates the bot does not handle"""
    if "callback_query" in update:
        message = update["callback_query"].get("message")
    else:
        message = update.get("message")
    if not message:
        return None
    return message["chat"]["id"]


class TelegramTransport:
    """
    Background poller for the Telegram bot

    Remembers, per chat, the message id behind every prompt slot so that
    prompts marked for editing replace the earlier message instead of
    sending a new one.
    """

    def __init__(
        self,
        controller: WizardController,
        client: Optional[TelegramClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.controller = controller
        self.client = client or TelegramClient(self.settings)
        self.running = False
        self.retry_interval = 5
        self._offset: Optional[int] = None
        self._slots: Dict[int, Dict[str, int]] = {}
        self._chat_locks: Dict[int, asyncio.Lock] = {}
        self._pending: Dict[int, int] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    async def start(self):
        """Start polling"""
        if not self.settings.telegram_enabled:
            logger.warning("TELEGRAM_BOT_TOKEN is not set, Telegram bot disabled")
            return
        if self.running:
            logger.warning("Telegram transport is already running")
            return

        self.running = True
        logger.info("Starting Telegram polling...")
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self):
        """Stop polling and wait for in-flight updates"""
        self.running = False
        logger.info("Stopping Telegram polling...")
        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.client.close()

    async def _poll_loop(self):
        while self.running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in Telegram polling loop: {e}", exc_info=True)
                await asyncio.sleep(self.retry_interval)

    async def poll_once(self) -> int:
        """Fetch one batch of updates and dispatch them. Returns the batch size."""
        updates = await self.client.get_updates(self._offset)
        for update in updates:
            self._offset = update["update_id"] + 1
            chat_id = update_chat_id(update)
            if chat_id is not None:
                # Claimed before the task starts so updates of a chat keep arrival order
                self._pending[chat_id] = self._pending.get(chat_id, 0) + 1
                self._chat_lock(chat_id)
            task = asyncio.create_task(self.process_update(update, chat_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        for chat_id in list(self._slots):
            if chat_id not in self._pending and self.controller.store.get(str(chat_id)) is None:
                self._slots.pop(chat_id, None)
        return len(updates)

    def _chat_lock(self, chat_id: int) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        return lock

    def _release_chat(self, chat_id: int) -> None:
        left = self._pending.get(chat_id, 1) - 1
        if left > 0:
            self._pending[chat_id] = left
        else:
            # No update of this chat is waiting or running
            self._pending.pop(chat_id, None)
            self._chat_locks.pop(chat_id, None)

    async def process_update(self, update: Dict[str, Any], chat_id: Optional[int] = None) -> None:
        """
        Handle one update; errors are logged and do not stop polling

        Updates of one chat run one at a time, in the order they were polled.
        """
        if chat_id is None:
            chat_id = update_chat_id(update)
            if chat_id is not None:
                self._pending[chat_id] = self._pending.get(chat_id, 0) + 1
        try:
            if chat_id is None:
                if "callback_query" in update:
                    await self._answer_callback(update["callback_query"])
                return
            async with self._chat_lock(chat_id):
                LoggingConfig.set_context(chat_id=chat_id)
                try:
                    if "callback_query" in update:
                        await self._handle_callback(chat_id, update["callback_query"])
                    elif update["message"].get("text"):
                        await self._handle_message(chat_id, update["message"])
                finally:
                    LoggingConfig.clear_context()
        except Exception as e:
            logger.error(
                f"Failed to process update {update.get('update_id')}: {e}",
                exc_info=True,
            )
        finally:
            if chat_id is not None:
                self._release_chat(chat_id)

    async def _answer_callback(self, callback: Dict[str, Any]) -> None:
        try:
            await self.client.answer_callback_query(callback["id"])
        except TelegramError as e:
            logger.warning("answerCallbackQuery failed", extra={"error": str(e)})

    async def _handle_message(self, chat_id: int, message: Dict[str, Any]) -> None:
        reply = await self.controller.handle_text(str(chat_id), message["text"])
        await self.render(chat_id, reply)

    async def _handle_callback(self, chat_id: int, callback: Dict[str, Any]) -> None:
        await self._answer_callback(callback)
        reply = await self.controller.handle_action(str(chat_id), callback.get("data", ""))
        await self.render(chat_id, reply)

    async def render(self, chat_id: int, reply: WizardReply) -> None:
        """Deliver the reply's prompts in order"""
        if reply.conversation_reset:
            self._slots.pop(chat_id, None)
        slots = self._slots.setdefault(chat_id, {})

        for prompt in reply.prompts:
            await self._deliver(chat_id, slots, prompt)

        if reply.session_closed:
            self._slots.pop(chat_id, None)

    async def _deliver(self, chat_id: int, slots: Dict[str, int], prompt: Prompt) -> None:
        message_id = slots.get(prompt.slot) if prompt.slot else None

        if prompt.edit and message_id is not None:
            try:
                if prompt.slot == SLOT_CRITERIA:
                    await self.client.edit_message_reply_markup(chat_id, message_id, prompt)
                else:
                    await self.client.edit_message_text(chat_id, message_id, prompt)
                return
            except TelegramError as e:
                if "not modified" in str(e):
                    return
                logger.warning(
                    "Edit failed, sending a new message",
                    extra={"chat_id": chat_id, "slot": prompt.slot, "error": str(e)},
                )

        message_id = await self.client.send_message(chat_id, prompt)
        if prompt.slot:
            slots[prompt.slot] = message_id
