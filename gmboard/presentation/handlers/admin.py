import logging
from datetime import datetime, timezone
from aiogram import Bot, Router, F
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import Message, BufferedInputFile

from gmboard.config.settings import settings
from gmboard.presentation.states import AdminSG
from gmboard.use_cases.backup import BackupService

logger = logging.getLogger(__name__)

router = Router()

def is_admin(user_id: int) -> bool:
    return user_id in settings.ADMIN_IDS

@router.message(Command("sync"))
async def manual_sync(message: Message, scheduler_service=None):
    if not is_admin(message.from_user.id):
        return
    if scheduler_service is None:
        await message.answer("Indexer is not running in this process.")
        return

    await message.answer("⏳ Syncing…")
    report = await scheduler_service.run_sync()

    if report is None:
        await message.answer("❌ Sync failed, see logs.")
    elif not report.lease_acquired:
        await message.answer("⏳ Another sync is already running.")
    else:
        text = (
            f"✅ Cursor {report.cursor_before} → {report.cursor_after} (head {report.target_height})\n"
            f"Windows: {report.windows_committed}, new events: {report.events_inserted}"
        )
        if report.error:
            text += f"\n⚠️ Stopped early: {report.error}"
        await message.answer(text)

@router.message(Command("backup"))
async def backup_db(message: Message, backup_service: BackupService):
    if not is_admin(message.from_user.id):
        return

    await message.answer("⏳ Exporting, please wait...")

    file_content = await backup_service.create_backup()
    filename = f"gm_backup_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M')}.xlsx"
    await message.answer_document(BufferedInputFile(file_content, filename=filename), caption="✅ Backup ready")

@router.message(Command("restore"))
async def restore_db_ask(message: Message, state: FSMContext):
    if not is_admin(message.from_user.id):
        return

    await state.set_state(AdminSG.wait_restore)
    await message.answer(
        "📂 <b>Restore</b>\n\n"
        "Send the .xlsx file produced by /backup.\n"
        "Greetings already stored are kept, profile fields in the file overwrite stored ones.\n"
        "/cancel to abort.",
        parse_mode="HTML"
    )

@router.message(AdminSG.wait_restore, Command("cancel"))
async def restore_db_cancel(message: Message, state: FSMContext):
    await state.clear()
    await message.answer("Restore cancelled.")

@router.message(AdminSG.wait_restore, F.document)
async def process_restore_db(message: Message, state: FSMContext, bot: Bot, backup_service: BackupService):
    if not is_admin(message.from_user.id):
        return

    document = message.document
    if not (document.file_name or "").endswith(".xlsx"):
        await message.answer("❌ Send the Excel (.xlsx) backup file.")
        return

    await message.answer("⏳ Restoring, please wait...")

    file_io = await bot.download(document)
    restored = await backup_service.restore_backup(file_io.read())

    await state.clear()
    logger.info(f"Admin {message.from_user.id} restored backup {document.file_name}: {restored}")
    await message.answer(
        f"✅ Restored {restored['greeting_events']} new greetings and {restored['profiles']} profiles."
    )
