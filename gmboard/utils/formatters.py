import html
import re
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from gmboard.domain.enums import SECONDS_PER_DAY
from gmboard.domain.exceptions import InvalidArgument

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

def normalize_address(address: str) -> str:
    """Lower-cases a 20-byte hex address, rejecting anything else."""
    if not isinstance(address, str) or not _ADDRESS_RE.match(address.strip()):
        raise InvalidArgument(f"Malformed address: {address!r}")
    return address.strip().lower()

def day_index(occurred_at: int) -> int:
    # UTC calendar day, independent of the host timezone
    return occurred_at // SECONDS_PER_DAY

def format_utc(ts: Optional[int]) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

def short_address(address: str) -> str:
    return f"{address[:6]}…{address[-4:]}"

def format_leaderboard(rows: List[Dict[str, Any]], timeframe: str) -> str:
    """
    Renders decorated leaderboard rows as Telegram HTML.

    Rows use the keys produced by LeaderboardService.get_leaderboard.
    """
    text = f"🏆 <b>GM leaderboard ({html.escape(timeframe)})</b>\n\n"
    if not rows:
        return text + "No greetings yet."

    for row in rows:
        name = row.get("displayName") or short_address(row["actor"])
        handle = f" (@{html.escape(row['socialHandle'])})" if row.get("socialHandle") else ""
        text += (
            f"{row['rank']}. {html.escape(name)}{handle} · <b>{row['score']}</b> pts\n"
            f"    ☀️ {row['sentCount']} sent · 📥 {row['receivedCount']} received · 🔥 {row['streakDays']}d\n"
        )
    return text

def format_profile(profile) -> str:
    def field(value):
        return html.escape(value) if value else "-"

    return (
        f"👤 <b>{field(profile.username)}</b>\n"
        f"<code>{profile.address}</code>\n\n"
        f"🐦 Twitter: {field(profile.twitter_username)}\n"
        f"💬 Discord: {field(profile.discord_username)}\n"
        f"📝 {field(profile.bio)}"
    )
