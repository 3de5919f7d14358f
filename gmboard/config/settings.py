from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_ignore_empty=True, extra='ignore')

    # Telegram surface (disabled when BOT_TOKEN is empty)
    BOT_TOKEN: Optional[SecretStr] = None
    ADMIN_IDS: List[int] = []

    DATABASE_URL: str = "sqlite+aiosqlite:///./data/gmboard.sqlite3"

    # Chain
    RPC_URL: str = "https://testnet-rpc.monad.xyz"
    CONTRACT_ADDRESS: str = "0x0000000000000000000000000000000000000000"
    EVENT_SIGNATURE: str = "GM(address,address)"
    CURSOR_FLOOR_BLOCK: int = 7653631

    # Indexer
    WINDOW_SIZE: int = 100
    POLL_INTERVAL_SECONDS: int = 60
    RPC_TIMEOUT_SECONDS: float = 15.0
    RPC_MAX_RETRIES: int = 4
    RPC_BACKOFF_BASE_SECONDS: float = 0.5
    RPC_BACKOFF_MAX_SECONDS: float = 8.0
    TIMESTAMP_CONCURRENCY: int = 5
    FETCH_CONTRACT_LAST_SEEN: bool = True
    SYNC_LEASE_SECONDS: int = 300

    # Scoring
    SCORE_SENT_WEIGHT: int = 10
    SCORE_STREAK_WEIGHT: int = 5
    SCORE_RECEIVED_WEIGHT: int = 2
    LEADERBOARD_DEFAULT_LIMIT: int = 10
    LEADERBOARD_MAX_LIMIT: int = 50

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL

    @property
    def cursor_key(self) -> str:
        # One cursor per watched contract
        return self.CONTRACT_ADDRESS.lower()

settings = Settings()
