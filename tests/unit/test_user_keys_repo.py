"""Caller key lookup against ``user_settings`` with a stubbed async session."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import pytest

from proposal_engine.config import get_settings
from proposal_engine.storage.factory import build_user_key_lookup
from proposal_engine.storage.user_keys_repo import PostgresUserKeyLookup


class _Result:
  def __init__(self, value: Any) -> None:
    self._value = value

  def scalar_one_or_none(self) -> Any:
    return self._value


class _Session:
  def __init__(self, value: Any, statements: list[Any]) -> None:
    self._value = value
    self._statements = statements

  async def __aenter__(self) -> _Session:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    return None

  async def execute(self, stmt: Any) -> _Result:
    self._statements.append(stmt)
    return _Result(self._value)


def _lookup(stored: Any, statements: list[Any] | None = None) -> PostgresUserKeyLookup:
  return PostgresUserKeyLookup(session_factory=lambda: _Session(stored, statements if statements is not None else []))  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_openrouter_key_is_read_from_provider_keys() -> None:
  statements: list[Any] = []
  lookup = _lookup({"openrouter": "  sk-or-user  ", "openai": "sk-other"}, statements)
  assert await lookup.get_openrouter_key("user-1") == "sk-or-user"
  compiled = str(statements[0].compile(compile_kwargs={"literal_binds": True}))
  assert "user_settings.user_id = 'user-1'" in compiled


@pytest.mark.anyio
@pytest.mark.parametrize("stored", [None, {}, {"openrouter": ""}, {"openrouter": "   "}, {"openrouter": 42}, ["openrouter"]])
async def test_missing_or_blank_keys_resolve_to_none(stored: Any) -> None:
  assert await _lookup(stored).get_openrouter_key("user-1") is None


def test_memory_backend_has_no_user_key_store() -> None:
  assert build_user_key_lookup(replace(get_settings(), jobs_backend="memory")) is None
