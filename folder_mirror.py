# /folder_mirror.py
"""
Folder Mirror
- Periodically makes a replica folder an exact copy of a source folder.
- One-way and destructive: new/changed files are copied, missing folders are
  created, and anything in the replica that is not in the source is deleted.
- Change detection is content based (MD5), never size/mtime based.
- Unreadable folders and files are skipped with a warning; the pass goes on.
- A missing source folder is logged as an error and leaves the replica alone.
- Styled console output (INFO grey, WARNING dark yellow, ERROR red).
- Log file is always plain (no color codes).

Usage
  pip install colorama
  python folder_mirror.py <source> <replica> <log_file> <interval_seconds>
  python folder_mirror.py "/src" "/dst" ./mirror.log 30
"""

from __future__ import annotations

import argparse
import hashlib
import logging
import os
import re
import shutil
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import colorama
from colorama import Fore, Style

HASH_CHUNK_SIZE = 1024 * 1024

LOG_FORMAT = "%(asctime)s - %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


# -------------------------
# Console styling
# -------------------------

LEVEL_COLORS = {
    logging.INFO: Fore.WHITE,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.LIGHTRED_EX,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except Exception:
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            color = LEVEL_COLORS[logging.ERROR]
        elif record.levelno >= logging.WARNING:
            color = LEVEL_COLORS[logging.WARNING]
        else:
            color = LEVEL_COLORS[logging.INFO]
        return f"{color}{base}{Style.RESET_ALL}"


def print_error(message: str) -> None:
    """Startup errors go to stderr before any logger exists."""
    if _supports_color(sys.stderr):
        message = f"{Fore.LIGHTRED_EX}{message}{Style.RESET_ALL}"
    print(message, file=sys.stderr)


class LogSinkError(Exception):
    """Raised when the log file can no longer be written."""


class LogFileHandler(logging.FileHandler):
    def handleError(self, record: logging.LogRecord) -> None:
        exc = sys.exc_info()[1]
        raise LogSinkError(f"cannot write log file {self.baseFilename}: {exc}") from exc


def setup_logger(log_path: Path, name: str = "folder_mirror") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if logger.handlers:
        return logger

    colorama.just_fix_windows_console()

    log_path.parent.mkdir(parents=True, exist_ok=True)

    fh = LogFileHandler(log_path, mode="a", encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    fh.setLevel(logging.INFO)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("Logging to: %s", log_path)
    return logger


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class AppConfig:
    source_dir: Path
    replica_dir: Path
    log_file: Path
    interval_sec: int


def positive_int(raw: str) -> int:
    text = raw.strip()
    if not re.fullmatch(r"[0-9]+", text) or int(text) <= 0:
        raise argparse.ArgumentTypeError(f"invalid synchronization interval: {raw!r} (expected a positive integer)")
    return int(text)


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="folder-mirror",
        description="Periodically mirror a source folder into a replica folder.",
    )
    p.add_argument("source", type=str, help="Folder to mirror from.")
    p.add_argument("replica", type=str, help="Folder kept identical to the source.")
    p.add_argument("log_file", type=str, help="File that log lines are appended to.")
    p.add_argument("interval", type=positive_int, help="Seconds between synchronization passes.")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> AppConfig:
    return AppConfig(
        source_dir=Path(args.source).expanduser(),
        replica_dir=Path(args.replica).expanduser(),
        log_file=Path(args.log_file).expanduser(),
        interval_sec=int(args.interval),
    )


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def validate_config(cfg: AppConfig) -> None:
    """
    Reject folder layouts where a pass would feed on its own output.

    The source does not have to exist yet: a missing source is reported on
    every pass instead, so an unmounted volume never stops the daemon.
    """
    source = cfg.source_dir.expanduser().resolve()
    replica = cfg.replica_dir.expanduser().resolve()

    if source == replica:
        raise ValueError("Source and replica folders must be different.")
    if _is_subpath(replica, source):
        raise ValueError("Replica folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, replica):
        raise ValueError("Source folder must NOT be inside replica folder (it would be pruned).")


# -------------------------
# Content identity
# -------------------------

def md5_file(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    h = hashlib.md5()
    with path.open("rb") as f:
        while True:
            b = f.read(chunk_size)
            if not b:
                break
            h.update(b)
    return h.hexdigest()


def files_identical(a: Path, b: Path) -> bool:
    """
    True when both files hold the same bytes.

    Timestamps play no part; only the content digests decide.
    Differing sizes short-circuit before any hashing.
    """
    if a.stat().st_size != b.stat().st_size:
        return False
    return md5_file(a) == md5_file(b)


# -------------------------
# Mirror engine
# -------------------------

class MirrorEngine:
    """
    Makes ``replica_root`` an exact copy of ``source_root``.

    Each directory level is handled as: snapshot the source entries, sync the
    files, recurse into subdirectories, then prune replica entries that the
    snapshot does not name. Failures are logged and skipped at the smallest
    scope (file, entry or subtree); nothing raised here aborts a pass.
    """

    def __init__(self, source_root: Path, replica_root: Path, logger: logging.Logger):
        self.source_root = Path(source_root)
        self.replica_root = Path(replica_root)
        self.logger = logger

    def mirror(self) -> None:
        self.logger.info("Starting synchronization...")

        if not self.source_root.is_dir():
            self.logger.error("Source folder does not exist: %s", self.source_root)
            return

        if not self.replica_root.is_dir():
            try:
                self._ensure_directory(self.replica_root)
            except OSError as e:
                self.logger.error("Cannot create replica folder: %s | %s", self.replica_root, e)
                return

        self._sync_level(self.source_root, self.replica_root)
        self.logger.info("Synchronization completed!")

    def can_access(self, path: Path, is_directory: bool = False) -> bool:
        try:
            if is_directory:
                with os.scandir(path) as it:
                    next(it, None)
            else:
                # read-write, without truncating
                with path.open("r+b"):
                    pass
            return True
        except OSError:
            self.logger.warning("Access denied: %s", path)
        return False

    # -- per level --

    def _sync_level(self, source_dir: Path, replica_dir: Path) -> None:
        snapshot = self._snapshot(source_dir)
        if snapshot is None:
            self.logger.warning("Skipping: %s", source_dir)
            return
        files, dirs = snapshot

        for src_file in files:
            self._sync_file(src_file, replica_dir / src_file.name)

        for src_dir in dirs:
            dst_dir = replica_dir / src_dir.name
            try:
                self._ensure_directory(dst_dir)
            except OSError as e:
                self.logger.warning("Cannot create directory: %s | %s", dst_dir, e)
                continue
            self._sync_level(src_dir, dst_dir)

        self._prune_level(
            replica_dir,
            file_names={f.name for f in files},
            dir_names={d.name for d in dirs},
        )

    def _snapshot(self, source_dir: Path) -> Optional[tuple[list[Path], list[Path]]]:
        if not self.can_access(source_dir, is_directory=True):
            return None

        files: list[Path] = []
        dirs: list[Path] = []
        try:
            for entry in source_dir.iterdir():
                if entry.is_dir():
                    dirs.append(entry)
                elif entry.is_file():
                    files.append(entry)
        except OSError as e:
            self.logger.warning("Access denied: %s | %s", source_dir, e)
            return None
        return files, dirs

    def _sync_file(self, src: Path, dst: Path) -> None:
        try:
            if dst.is_dir() and not dst.is_symlink():
                shutil.rmtree(dst)
                self.logger.info("Deleted directory: %s", dst)

            existed = dst.is_file() and not dst.is_symlink()
            if existed and files_identical(src, dst):
                return

            if not self.can_access(src):
                self.logger.warning("Skipping: %s", src)
                return

            if not existed and os.path.lexists(dst):
                # symlink, FIFO or other special file
                dst.unlink()
                self.logger.info("Deleted file: %s", dst)
            shutil.copyfile(src, dst)
            if existed:
                self.logger.info("Updated file: %s", dst)
            else:
                self.logger.info("Created file: %s", dst)
        except OSError as e:
            self.logger.warning("Skipping: %s | %s", src, e)

    def _ensure_directory(self, path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            return
        if path.is_symlink() or path.exists():
            path.unlink()
            self.logger.info("Deleted file: %s", path)
        path.mkdir(parents=True, exist_ok=True)
        self.logger.info("Created directory: %s", path)

    def _prune_level(self, replica_dir: Path, file_names: set[str], dir_names: set[str]) -> None:
        try:
            entries = list(replica_dir.iterdir())
        except OSError as e:
            self.logger.warning("Cannot list replica folder, not pruning: %s | %s", replica_dir, e)
            return

        for entry in entries:
            try:
                if entry.is_dir() and not entry.is_symlink():
                    if entry.name not in dir_names:
                        shutil.rmtree(entry)
                        self.logger.info("Deleted directory: %s", entry)
                elif entry.name not in file_names:
                    entry.unlink()
                    self.logger.info("Deleted file: %s", entry)
            except OSError as e:
                self.logger.warning("Cannot delete: %s | %s", entry, e)


# -------------------------
# Scheduler
# -------------------------

class SyncScheduler:
    def __init__(
        self,
        engine: MirrorEngine,
        interval_sec: float,
        logger: logging.Logger,
        stop_event: Optional[threading.Event] = None,
    ):
        self.engine = engine
        self.interval_sec = float(interval_sec)
        self.logger = logger
        self.stop_event = stop_event or threading.Event()

    def run(self, max_passes: Optional[int] = None) -> int:
        passes = 0
        self.logger.info("Scheduler started (interval=%ds)", self.interval_sec)
        while not self.stop_event.is_set():
            try:
                self.engine.mirror()
            except LogSinkError:
                raise
            except Exception:
                self.logger.exception("Synchronization pass failed")
            passes += 1

            if max_passes is not None and passes >= max_passes:
                break
            self.stop_event.wait(self.interval_sec)
        self.logger.info("Scheduler stopped")
        return passes

    def stop(self) -> None:
        self.stop_event.set()


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    cfg = build_config(args)

    try:
        validate_config(cfg)
    except ValueError as e:
        print_error(f"Config error: {e}")
        return 2

    try:
        logger = setup_logger(cfg.log_file)
    except (OSError, LogSinkError) as e:
        print_error(f"Cannot open log file {cfg.log_file}: {e}")
        return 1

    engine = MirrorEngine(cfg.source_dir, cfg.replica_dir, logger)
    scheduler = SyncScheduler(engine, cfg.interval_sec, logger)

    try:
        logger.info("Source : %s", cfg.source_dir)
        logger.info("Replica: %s", cfg.replica_dir)
        try:
            scheduler.run()
        except KeyboardInterrupt:
            logger.info("Stopping...")
            scheduler.stop()
    except LogSinkError as e:
        print_error(f"Logging failed, stopping: {e}")
        return 1
    return 0


def cli() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    cli()
