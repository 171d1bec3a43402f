"""
Issue an access token for an existing user.

Login lives outside this service; operators and the auth front end use this
to mint a token carrying the user's roles and current effective permissions.

Usage:
    uv run python -m scripts.issue_token <username>
"""
import argparse
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal
from app.core.exceptions import InvalidInput, NotFound
from app.features.users.auth import issue_token_for_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def issue_token(db: AsyncSession, username: str) -> str:
    """
    Look up a user by username and sign a token for them.

    Raises:
        NotFound: no such user
        InvalidInput: the account is not active
    """
    user = await db.scalar(select(User).where(User.username == username))
    if user is None:
        raise NotFound("User", username)
    if not user.is_active:
        raise InvalidInput(f"User '{username}' is not active")
    return await issue_token_for_user(db, user)


async def main(username: str):
    async with AsyncSessionLocal() as db:
        token = await issue_token(db, username)
    print(token)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Issue an access token for a user")
    parser.add_argument("username")
    args = parser.parse_args()
    asyncio.run(main(args.username))
