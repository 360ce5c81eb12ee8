"""Tests for single-use password-reset tokens."""

from datetime import timedelta

import pytest

from sessionguard.service.reset_tokens import ResetTokenStore


@pytest.fixture
def reset_tokens(cache, clock):
    return ResetTokenStore(cache, clock=clock)


@pytest.mark.asyncio
async def test_issue_and_redeem(reset_tokens):
    token = await reset_tokens.issue("user-1")

    assert len(token) >= 43
    assert await reset_tokens.redeem(token) == "user-1"
    # Lookup only; the token stays usable until consumed
    assert await reset_tokens.redeem(token) == "user-1"


@pytest.mark.asyncio
async def test_consume_makes_token_unusable(reset_tokens):
    token = await reset_tokens.issue("user-1")

    assert await reset_tokens.consume(token) is True
    assert await reset_tokens.redeem(token) is None
    assert await reset_tokens.consume(token) is False


@pytest.mark.asyncio
async def test_token_expires_after_fifteen_minutes(reset_tokens, clock):
    token = await reset_tokens.issue("user-1")

    clock.advance(timedelta(minutes=15) - timedelta(seconds=1))
    assert await reset_tokens.redeem(token) == "user-1"

    clock.advance(seconds=1)
    assert await reset_tokens.redeem(token) is None


@pytest.mark.asyncio
async def test_multiple_outstanding_tokens(reset_tokens):
    first = await reset_tokens.issue("user-1")
    second = await reset_tokens.issue("user-1", ttl=timedelta(hours=1))

    assert first != second
    assert await reset_tokens.redeem(first) == "user-1"
    assert await reset_tokens.redeem(second) == "user-1"


@pytest.mark.asyncio
async def test_unknown_token(reset_tokens):
    assert await reset_tokens.redeem("bogus") is None
    assert await reset_tokens.redeem("") is None
    assert await reset_tokens.consume("bogus") is False
