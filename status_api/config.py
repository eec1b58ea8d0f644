from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from satlotto.config import BitcoindSettings, load_bitcoind_settings


@dataclass(frozen=True)
class FlaskSettings:
    secret_key: str = "satlotto-dev-secret"
    debug: bool = False


@dataclass(frozen=True)
class StatusApiSettings:
    flask: FlaskSettings
    database_url: str
    bitcoind: BitcoindSettings
    host: str = "0.0.0.0"
    port: int = 3001


@lru_cache(maxsize=1)
def load_settings(dotenv_path: Optional[str] = None) -> StatusApiSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()

    flask_settings = FlaskSettings(
        secret_key=os.getenv("FLASK_SECRET_KEY", "satlotto-dev-secret"),
        debug=os.getenv("FLASK_DEBUG", "0") == "1",
    )

    return StatusApiSettings(
        flask=flask_settings,
        database_url=os.getenv("DATABASE_URL", "sqlite:///satlotto.db"),
        bitcoind=load_bitcoind_settings(),
        host=os.getenv("STATUS_API_HOST", "0.0.0.0"),
        port=int(os.getenv("STATUS_API_PORT", "3001")),
    )
