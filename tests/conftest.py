from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from facecapture.config import Settings

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Build Settings isolated from the environment and any .env file."""

    def _make(**overrides: object) -> Settings:
        defaults: dict[str, object] = {
            "api_url": "http://backend.test",
            "work_dir": str(tmp_path / "work"),
            "models_dir": str(tmp_path / "models"),
            "api_key": None,
            "device": "cpu",
            "keep_captures": False,
            "stream_interval": 0.01,
        }
        defaults.update(overrides)
        return Settings(_env_file=None, **defaults)  # type: ignore[arg-type]

    return _make
