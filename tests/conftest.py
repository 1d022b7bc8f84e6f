"""Shared fixtures for folder_mirror tests."""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

import pytest

from folder_mirror import MirrorEngine

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

ENGINE_LOGGER = "mirror_tests.engine"

skip_if_root = pytest.mark.skipif(
    sys.platform == "win32" or (hasattr(os, "geteuid") and os.geteuid() == 0),
    reason="permission bits are not enforced for root or on Windows",
)


def build_tree(root: Path, layout: dict) -> None:
    """Create files (bytes/str values) and directories (dict values) under root."""
    root.mkdir(parents=True, exist_ok=True)
    for name, value in layout.items():
        path = root / name
        if isinstance(value, dict):
            build_tree(path, value)
        elif isinstance(value, bytes):
            path.write_bytes(value)
        else:
            path.write_text(value)


def read_tree(root: Path) -> dict:
    """Inverse of build_tree: files become bytes, directories nested dicts."""
    result: dict = {}
    for entry in sorted(root.iterdir()):
        if entry.is_dir():
            result[entry.name] = read_tree(entry)
        else:
            result[entry.name] = entry.read_bytes()
    return result


@pytest.fixture
def engine_logger(caplog: pytest.LogCaptureFixture) -> logging.Logger:
    caplog.set_level(logging.INFO, logger=ENGINE_LOGGER)
    return logging.getLogger(ENGINE_LOGGER)


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def replica(tmp_path: Path) -> Path:
    return tmp_path / "replica"


@pytest.fixture
def engine(source: Path, replica: Path, engine_logger: logging.Logger) -> MirrorEngine:
    return MirrorEngine(source, replica, engine_logger)


@pytest.fixture
def logger_name(request: pytest.FixtureRequest) -> Iterator[str]:
    """A logger name unique to the test; its handlers are closed afterwards."""
    name = f"mirror_tests.setup.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class FullDisk:
    """Stream stand-in whose writes fail like a full disk, optionally only for matching text."""

    def __init__(self, fail_when: str = "") -> None:
        self.fail_when = fail_when
        self.written: list[str] = []

    def write(self, text: str) -> int:
        if self.fail_when in text:
            raise OSError(28, "No space left on device")
        self.written.append(text)
        return len(text)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


def break_log_file(logger: logging.Logger, fail_when: str = "") -> FullDisk:
    """Swap the stream of every file handler on logger for a FullDisk."""
    stream = FullDisk(fail_when)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            handler.setStream(stream).close()
    return stream
