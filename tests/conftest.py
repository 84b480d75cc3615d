"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that
`import yuanbao_proxy` works consistently in all tests, and provides
fixtures for building settings and fake Yuanbao SSE bodies.
"""

import json
import sys
from pathlib import Path
from typing import Any, Callable, Union

import pytest


# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from yuanbao_proxy.settings import Settings  # noqa: E402


TEST_IDENTITY = {
    "AGENT_ID": "naQivTmsDa",
    "HY_USER": "user-123",
    "HY_TOKEN": "token-abc",
    "CONVERSATION_ID": "conv-1",
}


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    """
    Build Settings without reading the developer's .env file.
    Keyword overrides use the environment variable names.
    """

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {**TEST_IDENTITY, "LOG_DIR": str(tmp_path / "logs")}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


Frame = Union[dict, str]


@pytest.fixture
def sse_body() -> Callable[..., bytes]:
    """
    Encode frames the way Yuanbao streams them: one `data:` line per frame.
    Dicts are JSON-encoded, strings are sent verbatim (e.g. "[DONE]").
    """

    def _encode(*frames: Frame) -> bytes:
        parts: list[str] = []
        for frame in frames:
            data = frame if isinstance(frame, str) else json.dumps(frame, ensure_ascii=False)
            parts.append(f"data: {data}\n\n")
        return "".join(parts).encode("utf-8")

    return _encode
