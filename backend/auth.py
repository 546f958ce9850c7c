"""
X-API-Key authentication for bettors and operators.

API_KEY_USER<n> maps a key to the user id ``user<n>``; ADMIN_USERS lists the
user ids allowed on /admin routes.
"""

import os
from typing import Dict, FrozenSet

from dotenv import load_dotenv
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)
MAX_KEYED_USERS = 5
DEV_KEY = "dev-key-insecure"


def get_valid_api_keys() -> Dict[str, str]:
    keys = {
        os.environ[f"API_KEY_USER{n}"]: f"user{n}"
        for n in range(1, MAX_KEYED_USERS + 1)
        if os.getenv(f"API_KEY_USER{n}")
    }
    if keys:
        return keys
    if os.getenv("ENVIRONMENT") == "development":
        return {DEV_KEY: "dev_user"}
    raise ValueError("No API keys configured, set API_KEY_USER1")


def get_admin_users() -> FrozenSet[str]:
    raw = os.getenv("ADMIN_USERS", "user1")
    return frozenset(u.strip() for u in raw.split(",") if u.strip())


VALID_API_KEYS = get_valid_api_keys()
ADMIN_USERS = get_admin_users()


def role_for(user: str) -> str:
    return "admin" if user in ADMIN_USERS else "user"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """Resolve the caller's user id from the X-API-Key header."""
    if not api_key:
        raise _unauthorized("API key required in the X-API-Key header")
    user = VALID_API_KEYS.get(api_key)
    if user is None:
        raise _unauthorized("Invalid API key")
    return user


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    if user not in ADMIN_USERS:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
