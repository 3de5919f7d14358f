import html

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from gmboard.presentation.handlers.admin import is_admin
from gmboard.use_cases.profiles import ProfileService
from gmboard.utils.formatters import format_profile, short_address

router = Router()

# Command field name -> ProfileService.update_profile keyword
PROFILE_FIELDS = {
    "name": "username",
    "twitter": "twitter_username",
    "discord": "discord_username",
    "bio": "bio",
}

@router.message(Command("profile"))
async def show_profile(message: Message, command: CommandObject, profile_service: ProfileService):
    if not command.args:
        await message.answer("Send an address: /profile 0x1234…")
        return

    address = command.args.split()[0]
    profile = await profile_service.get_profile(address)
    if profile is None:
        await message.answer(f"No profile for {short_address(address)} yet.")
        return

    await message.answer(format_profile(profile), parse_mode="HTML")

@router.message(Command("setprofile"))
async def set_profile(message: Message, command: CommandObject, profile_service: ProfileService):
    # Telegram users cannot prove they own an address, so edits stay with admins
    if not is_admin(message.from_user.id):
        return

    parts = (command.args or "").split(maxsplit=2)
    if len(parts) < 3 or parts[1].lower() not in PROFILE_FIELDS:
        await message.answer(
            "Usage: /setprofile &lt;address&gt; &lt;name|twitter|discord|bio&gt; &lt;value&gt;",
            parse_mode="HTML"
        )
        return

    address, field, value = parts
    profile = await profile_service.update_profile(address, **{PROFILE_FIELDS[field.lower()]: value.strip()})
    await message.answer("✅ Profile saved\n\n" + format_profile(profile), parse_mode="HTML")

@router.message(Command("search"))
async def search_profiles(message: Message, command: CommandObject, profile_service: ProfileService):
    profiles = await profile_service.search_profiles(command.args)

    if not profiles:
        await message.answer(f"Nobody matches <b>{html.escape(command.args.strip())}</b>.", parse_mode="HTML")
        return

    lines = [f"🔎 <b>{len(profiles)} found</b>\n"]
    for profile in profiles:
        handle = profile.twitter_username or profile.discord_username
        name = html.escape(profile.username or short_address(profile.address))
        lines.append(f"{name} · <code>{profile.address}</code>" + (f" (@{html.escape(handle)})" if handle else ""))
    await message.answer("\n".join(lines), parse_mode="HTML")
