"""Shared fixtures for framesync tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from PIL import Image

from framesync.store.database import Database


@pytest.fixture
def db(tmp_path: Path) -> Iterator[Database]:
    """Create a test database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def make_image() -> Callable[..., Path]:
    """Factory writing a solid-color image; the format follows the extension."""

    def _make(
        path: Path,
        color: tuple[int, int, int] = (200, 30, 30),
        size: tuple[int, int] = (64, 48),
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path)
        return path

    return _make


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Drop handlers installed by setup_logging during a test."""
    yield
    logger = logging.getLogger("framesync")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
