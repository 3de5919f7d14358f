import io
import logging
import pandas as pd
from sqlalchemy import text

from gmboard.domain.entities import GreetingEvent
from gmboard.infrastructure.database.models import GreetingEventRecord, SyncCursorRecord, UserProfile
from gmboard.infrastructure.repositories.sqlalchemy import SQLAlchemyEventRepository, SQLAlchemyProfileRepository

logger = logging.getLogger(__name__)

class BackupService:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def create_backup(self) -> bytes:
        """
        Dumps events, cursors and profiles to an Excel file and returns the bytes.
        """
        output = io.BytesIO()
        writer = pd.ExcelWriter(output, engine='openpyxl')

        async with self.session_factory() as session:
            models = [
                (GreetingEventRecord, "greeting_events"),
                (SyncCursorRecord, "sync_cursors"),
                (UserProfile, "profiles"),
            ]

            for model, sheet_name in models:
                stmt = text(f"SELECT * FROM {model.__tablename__}")
                result = await session.execute(stmt)
                rows = result.fetchall()
                keys = list(result.keys())

                if rows:
                    df = pd.DataFrame([dict(zip(keys, row)) for row in rows])

                    # Excel has no timezone-aware datetimes
                    for col in df.columns:
                        if pd.api.types.is_datetime64_any_dtype(df[col]):
                            df[col] = df[col].astype(str)

                    df.to_excel(writer, sheet_name=sheet_name, index=False)
                else:
                    pd.DataFrame(columns=[c.name for c in model.__table__.columns]).to_excel(writer, sheet_name=sheet_name, index=False)

        writer.close()
        output.seek(0)
        return output.getvalue()

    async def restore_backup(self, file_content: bytes) -> dict:
        """
        Merges events and profiles from an Excel backup.

        Events go through the idempotent upsert, so existing ids are kept
        as they are; profile fields present in the file overwrite stored ones.
        Cursors are not restored, the indexer keeps its own position.
        """
        xls = pd.ExcelFile(io.BytesIO(file_content))
        restored = {"greeting_events": 0, "profiles": 0}

        async with self.session_factory() as session:
            if "greeting_events" in xls.sheet_names:
                df = pd.read_excel(xls, sheet_name="greeting_events")
                events = []
                for row in df.to_dict(orient='records'):
                    last_seen = row.get("contract_last_seen")
                    events.append(GreetingEvent(
                        id=str(row["id"]),
                        actor=str(row["actor"]).lower(),
                        recipient=str(row["recipient"]).lower(),
                        block_number=int(row["block_number"]),
                        log_index=int(row["log_index"]),
                        occurred_at=int(row["occurred_at"]),
                        contract_last_seen=None if pd.isna(last_seen) else int(last_seen),
                    ))
                restored["greeting_events"] = await SQLAlchemyEventRepository(session).upsert_many(events)

            if "profiles" in xls.sheet_names:
                df = pd.read_excel(xls, sheet_name="profiles")
                repo = SQLAlchemyProfileRepository(session)
                for row in df.to_dict(orient='records'):
                    clean = {k: (None if pd.isna(v) else str(v)) for k, v in row.items()}
                    await repo.upsert_profile(
                        clean["address"],
                        username=clean.get("username"),
                        twitter_username=clean.get("twitter_username"),
                        discord_username=clean.get("discord_username"),
                        bio=clean.get("bio")
                    )
                    restored["profiles"] += 1

        logger.info(f"Restored backup: {restored}")
        return restored
