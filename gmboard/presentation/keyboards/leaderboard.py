from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from gmboard.domain.enums import Timeframe

TIMEFRAME_LABELS = {
    Timeframe.DAILY: "☀️ Daily",
    Timeframe.WEEKLY: "📅 Weekly",
    Timeframe.ALL_TIME: "🏛 All time",
}

def timeframe_kb(active: Timeframe) -> InlineKeyboardMarkup:
    buttons = []
    for timeframe, label in TIMEFRAME_LABELS.items():
        text = f"• {label} •" if timeframe == active else label
        buttons.append(InlineKeyboardButton(text=text, callback_data=f"lb:{timeframe.value}"))
    return InlineKeyboardMarkup(inline_keyboard=[buttons])
