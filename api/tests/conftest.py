from __future__ import annotations

import os

import pytest

os.environ.setdefault("DQ_OTEL_ENABLED", "false")

from fakes import FakeHookdeck, FakeOpenAI  # noqa: E402


@pytest.fixture
def fake_hookdeck() -> FakeHookdeck:
    return FakeHookdeck()


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()
