# cache.py
# Load and atomically persist the JSON cache document.
# save(): optional timestamped backup of the previous file, full write to a
# sibling .tmp file, fsync, then os.replace over the target.

from __future__ import annotations

import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import CacheFormatError, CacheNotFound, PersistenceFailure

PathLike = Union[str, Path]


class CacheStore:
    def __init__(
        self,
        path: PathLike,
        backup_dir: Optional[PathLike] = None,
        backup: bool = True,
        keep_backups: Optional[int] = 20,
    ):
        self.path = Path(path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.path.parent / "backups"
        self.backup = backup
        self.keep_backups = keep_backups

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise CacheNotFound(f"cache file not found: {self.path}")
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CacheFormatError(f"cannot read {self.path}: {e}") from e
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as e:
            raise CacheFormatError(f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(doc, dict):
            raise CacheFormatError(f"{self.path}: top level must be a JSON object")
        return doc

    def save(self, document: Mapping[str, Any]) -> Optional[Path]:
        """
        Replace the cache file with ``document``. Returns the backup path,
        if one was written. The previous file stays intact on any failure.
        """
        try:
            payload = json.dumps(document, indent=2)
        except (TypeError, ValueError) as e:
            raise PersistenceFailure(f"document is not JSON serializable: {e}") from e

        backup_path = None
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.backup and self.path.exists():
                backup_path = self._write_backup()
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            raise PersistenceFailure(f"failed to write {self.path}: {e}") from e

        print(f"[cache] saved {self.path} ({len(payload):,} bytes)")
        return backup_path

    def _write_backup(self) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = self.backup_dir / f"{self.path.stem}.{stamp}{self.path.suffix}"
        shutil.copy2(self.path, target)
        print(f"[cache] backup -> {target}")
        self._prune_backups()
        return target

    def list_backups(self) -> List[Path]:
        """Backups of this cache file, oldest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob(f"{self.path.stem}.*{self.path.suffix}"))

    def _prune_backups(self) -> None:
        if not self.keep_backups or self.keep_backups < 1:
            return
        backups = self.list_backups()
        for old in backups[:-self.keep_backups]:
            old.unlink(missing_ok=True)
