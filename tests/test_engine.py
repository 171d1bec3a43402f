"""
Tests for the transaction helper.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.database.engine import atomic
from app.core.exceptions import NotFound, StoreError


@pytest.mark.asyncio
async def test_commits_on_success():
    db = AsyncMock()

    async with atomic(db):
        pass

    db.commit.assert_awaited_once()
    db.rollback.assert_not_awaited()


@pytest.mark.asyncio
async def test_database_error_rolls_back_as_store_error():
    db = AsyncMock()
    db.commit.side_effect = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(StoreError):
        async with atomic(db):
            pass

    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_other_errors_roll_back_and_propagate():
    db = AsyncMock()

    with pytest.raises(NotFound):
        async with atomic(db):
            raise NotFound("Role", 1)

    db.rollback.assert_awaited_once()
    db.commit.assert_not_awaited()
