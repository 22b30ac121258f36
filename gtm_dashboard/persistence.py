import json
import logging
import os
import shutil
import tempfile
from typing import Protocol

from .config import DATA_FILE

logger = logging.getLogger("gtm_dashboard.persistence")


class FileSystem(Protocol):
    def exists(self, path: str) -> bool: ...

    def read_text(self, path: str) -> str: ...

    def write_text(self, path: str, text: str) -> None: ...

    def copy(self, src: str, dst: str) -> None: ...


class LocalFileSystem:
    """Plain disk access. Writes land via a temp file + rename."""

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def read_text(self, path: str) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: str, text: str) -> None:
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def copy(self, src: str, dst: str) -> None:
        shutil.copyfile(src, dst)


class PersistenceManager:
    """
    Saves the whole site store as one JSON object keyed by site id, keeping
    the previous version next to it as `<path>.backup`.

    save() never raises: losing one write must not take ingestion down.
    """

    def __init__(self, path: str = DATA_FILE, fs: FileSystem | None = None):
        self.path = path
        self.backup_path = f"{path}.backup"
        self.fs = fs or LocalFileSystem()

    def save(self, snapshot: dict) -> bool:
        try:
            text = json.dumps(snapshot, indent=2)
        except (TypeError, ValueError) as e:
            logger.error("❌ Could not serialize site data: %s", e)
            return False

        self._backup()
        try:
            self.fs.write_text(self.path, text)
        except OSError as e:
            logger.error("❌ Error saving data to %s: %s", self.path, e)
            self.restore_backup()
            return False

        self._verify(snapshot)
        return True

    def load(self) -> dict[str, dict]:
        """
        Primary file first, then the backup, then an empty store.
        A missing or blank primary file is a fresh start, not corruption.
        """
        if not self.fs.exists(self.path):
            return {}
        try:
            return self._read(self.path)
        except (OSError, ValueError) as e:
            logger.warning("⚠️  Data file %s unreadable (%s), trying backup", self.path, e)

        if self.fs.exists(self.backup_path):
            try:
                data = self._read(self.backup_path)
                logger.warning("♻️  Loaded %d site(s) from backup %s", len(data), self.backup_path)
                return data
            except (OSError, ValueError) as e:
                logger.warning("⚠️  Backup %s unreadable too (%s)", self.backup_path, e)

        logger.warning("⚠️  Starting with an empty store")
        return {}

    def restore_backup(self) -> bool:
        if not self.fs.exists(self.backup_path):
            return False
        try:
            self.fs.copy(self.backup_path, self.path)
        except OSError as e:
            logger.error("❌ Backup restore failed: %s", e)
            return False
        logger.warning("♻️  Restored %s from backup", self.path)
        return True

    def _backup(self) -> None:
        if not self.fs.exists(self.path):
            return
        try:
            self.fs.copy(self.path, self.backup_path)
        except OSError as e:
            # best effort, the save still goes ahead
            logger.warning("⚠️  Could not back up %s: %s", self.path, e)

    def _verify(self, snapshot: dict) -> bool:
        try:
            written = self._read(self.path)
        except (OSError, ValueError) as e:
            logger.warning("⚠️  Save verification could not re-read %s: %s", self.path, e)
            return False
        if written != snapshot:
            logger.warning("⚠️  Save verification mismatch for %s", self.path)
            return False
        return True

    def _read(self, path: str) -> dict[str, dict]:
        text = self.fs.read_text(path)
        if not text.strip():
            return {}
        data = json.loads(text)
        if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
            raise ValueError("expected an object of site records")
        return data
