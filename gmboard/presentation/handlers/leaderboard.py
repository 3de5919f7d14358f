import html

from aiogram import Router, F
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message, CallbackQuery

from gmboard.config.settings import settings
from gmboard.domain.enums import Timeframe
from gmboard.use_cases.leaderboard import LeaderboardService
from gmboard.presentation.keyboards.leaderboard import timeframe_kb
from gmboard.utils.formatters import format_leaderboard, format_utc, short_address

router = Router()

@router.message(CommandStart())
async def start(message: Message):
    text = (
        "☀️ <b>GM leaderboard</b>\n\n"
        "/leaderboard [daily|weekly|allTime]: top greeters\n"
        "/rank &lt;address&gt; [timeframe]: where an address stands\n"
        "/profile &lt;address&gt;: name and socials\n"
        "/search &lt;text&gt;: find a profile\n"
        "/status: indexer progress"
    )
    await message.answer(text, parse_mode="HTML")

@router.message(Command("leaderboard"))
async def show_leaderboard(
    message: Message,
    command: CommandObject,
    leaderboard_service: LeaderboardService
):
    timeframe = Timeframe.parse(command.args or Timeframe.ALL_TIME)
    rows = await leaderboard_service.get_leaderboard(timeframe, settings.LEADERBOARD_DEFAULT_LIMIT)
    await message.answer(format_leaderboard(rows, timeframe.value), parse_mode="HTML", reply_markup=timeframe_kb(timeframe))

@router.callback_query(F.data.startswith("lb:"))
async def switch_timeframe(callback: CallbackQuery, leaderboard_service: LeaderboardService):
    timeframe = Timeframe.parse(callback.data.split(":", 1)[1])
    rows = await leaderboard_service.get_leaderboard(timeframe, settings.LEADERBOARD_DEFAULT_LIMIT)
    await callback.message.edit_text(
        format_leaderboard(rows, timeframe.value),
        parse_mode="HTML",
        reply_markup=timeframe_kb(timeframe)
    )
    await callback.answer()

@router.message(Command("rank"))
async def show_rank(
    message: Message,
    command: CommandObject,
    leaderboard_service: LeaderboardService
):
    if not command.args:
        await message.answer("Send an address: /rank 0x1234… [daily|weekly|allTime]")
        return

    parts = command.args.split()
    timeframe = Timeframe.parse(parts[1]) if len(parts) > 1 else Timeframe.ALL_TIME
    standing = await leaderboard_service.get_actor_standing(parts[0], timeframe)

    if standing is None:
        await message.answer(f"No greetings from {short_address(parts[0])} in {timeframe.value}.")
        return

    name = html.escape(standing["displayName"] or short_address(standing["actor"]))
    text = (
        f"👤 <b>{name}</b>\n\n"
        f"🏅 Rank: <b>{standing['rank']}</b> of {standing['total']} ({timeframe.value})\n"
        f"⭐ Score: <b>{standing['score']}</b>\n"
        f"☀️ Sent: {standing['sentCount']} · 📥 Received: {standing['receivedCount']}\n"
        f"🔥 Streak: {standing['streakDays']} days\n"
        f"🕒 Last GM: {format_utc(standing['lastEventAt'])}"
    )
    await message.answer(text, parse_mode="HTML")

@router.message(Command("status"))
async def show_status(message: Message, cursor_repo, event_repo, scheduler_service=None):
    cursor = await cursor_repo.get(settings.cursor_key)
    total = await event_repo.count()

    text = "📡 <b>Indexer status</b>\n\n"
    if cursor is None:
        text += "Not started yet.\n"
    else:
        text += f"Last indexed block: <b>{cursor.last_indexed_block}</b>\n"
    text += f"Stored greetings: <b>{total}</b>\n"

    report = scheduler_service.last_report if scheduler_service else None
    if report is not None:
        text += f"Chain head at last run: {report.target_height}\n"
        if report.error:
            text += "Last run stopped early, it will resume on the next poll.\n"

    await message.answer(text, parse_mode="HTML")
