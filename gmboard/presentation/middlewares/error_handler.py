import logging
from typing import Callable, Dict, Any, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import Message, CallbackQuery, TelegramObject, Update

from gmboard.domain.exceptions import InvalidArgument

logger = logging.getLogger(__name__)

class ErrorHandlingMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        try:
            return await handler(event, data)
        except InvalidArgument as e:
            error_text = f"⚠️ {e}"
        except Exception as e:
            logger.error(f"Unhandled exception in middleware: {e}", exc_info=True)
            error_text = (
                "⚠️ <b>Something went wrong.</b>\n\n"
                "Please try again in a moment."
            )

        if isinstance(event, Update):
            event = event.message or event.callback_query

        try:
            if isinstance(event, Message):
                await event.answer(error_text, parse_mode="HTML")
            elif isinstance(event, CallbackQuery):
                await event.message.answer(error_text, parse_mode="HTML")
                await event.answer()
        except Exception as send_err:
            logger.error(f"Failed to send error message to user: {send_err}")

        # Suppressed so polling keeps running; logged above
        return None
