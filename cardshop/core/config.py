from typing import Literal

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

from cardshop.core.enums import CardCondition


class Config(BaseSettings):
    db_url: str = "sqlite+aiosqlite:///./cardshop.db"
    env: Literal["prod", "dev"] = "prod"
    log_level: str = "INFO"

    # Openings
    user_lock_timeout_seconds: float = 10.0
    stock_reservation_ttl_seconds: int = 5 * 60  # 5 minutes
    stock_sweep_interval_seconds: float = 60.0
    opened_card_condition: CardCondition = CardCondition.MINT

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"


load_dotenv()
settings = Config()
