# backend/config.py

"""
Environment configuration, loaded from backend/.env when present.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from history_query import HistoryScope

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Default allowed origins for local development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3001",
]


class Settings(BaseModel):
    mongo_url: str
    db_name: str
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_expire_hours: int = 24
    admin_user_id: Optional[str] = None
    history_scope: HistoryScope = HistoryScope.GLOBAL
    cors_origins: List[str] = DEFAULT_CORS_ORIGINS


def _optional(name: str) -> Optional[str]:
    value = os.environ.get(name, '').strip()
    return value or None


def load_settings() -> Settings:
    """
    Read settings from the environment.

    MONGO_URL and DB_NAME are required (KeyError if absent). A missing
    JWT_SECRET or ADMIN_USER_ID is tolerated here and reported as a
    ConfigurationError by the operations that need them.
    """
    cors_origins_env = os.environ.get('CORS_ORIGINS', '')
    if cors_origins_env:
        cors_origins = [origin.strip() for origin in cors_origins_env.split(',') if origin.strip()]
    else:
        cors_origins = DEFAULT_CORS_ORIGINS

    return Settings(
        mongo_url=os.environ['MONGO_URL'],
        db_name=os.environ['DB_NAME'],
        jwt_secret=_optional('JWT_SECRET'),
        jwt_algorithm=os.environ.get('JWT_ALGORITHM', 'HS256'),
        access_token_expire_hours=int(os.environ.get('ACCESS_TOKEN_EXPIRE_HOURS', '24')),
        admin_user_id=_optional('ADMIN_USER_ID'),
        history_scope=HistoryScope(os.environ.get('HISTORY_SCOPE', 'global').strip().lower()),
        cors_origins=cors_origins,
    )
