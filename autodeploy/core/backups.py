"""Backup snapshots of build output and dependencies."""

import shutil
from datetime import datetime
from pathlib import Path

from autodeploy.core.exceptions import BackupError
from autodeploy.models.deployment import BackupSnapshot
from autodeploy.utils.logging import DEPLOYMENT_LOGGER, get_logger

BACKUP_PREFIX = "backup-"
# Microseconds keep names unique and in creation order
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S-%f"


class BackupManager:
    """Creates, restores and prunes timestamped backup snapshots.

    A snapshot is a directory under ``root`` holding copies of the
    configured directories (build output, dependency tree) and files
    (manifest, lockfile) from the checkout. The path of the newest
    snapshot is also written to a pointer file.
    """

    def __init__(
        self,
        root: Path,
        source: Path,
        directories: list[str],
        files: list[str] | None = None,
        pointer_file: Path | None = None,
    ):
        self.root = root
        self.source = source
        self.directories = directories
        self.files = files or []
        self.pointer_file = pointer_file
        self.logger = get_logger(f"{DEPLOYMENT_LOGGER}.backups")

    def create(self) -> BackupSnapshot:
        """Copy the current build output and dependencies into a new snapshot."""
        created_at = datetime.now()
        path = self.root / f"{BACKUP_PREFIX}{created_at.strftime(BACKUP_TIMESTAMP_FORMAT)}"

        self.logger.info("backup.creating", path=str(path))
        try:
            path.mkdir(parents=True, exist_ok=False)
            for name in self.directories:
                src = self.source / name
                if src.is_dir():
                    shutil.copytree(src, path / name, symlinks=True)
            for name in self.files:
                src = self.source / name
                if src.is_file():
                    shutil.copy2(src, path / name)
        except OSError as e:
            # A partial snapshot must not count towards retention
            shutil.rmtree(path, ignore_errors=True)
            raise BackupError(f"Failed to create backup at {path}: {e}", {"path": str(path)})

        if self.pointer_file is not None:
            self.pointer_file.write_text(f"{path}\n")

        self.logger.info("backup.created", path=str(path))
        return BackupSnapshot(path=path, created_at=created_at)

    def list_snapshots(self) -> list[BackupSnapshot]:
        """All snapshots, oldest first."""
        if not self.root.is_dir():
            return []

        snapshots = []
        for entry in self.root.iterdir():
            if entry.is_dir() and entry.name.startswith(BACKUP_PREFIX):
                snapshots.append(BackupSnapshot(path=entry, created_at=self._created_at(entry)))
        snapshots.sort(key=lambda s: (s.created_at, s.name))
        return snapshots

    def _created_at(self, path: Path) -> datetime:
        try:
            return datetime.strptime(path.name[len(BACKUP_PREFIX):], BACKUP_TIMESTAMP_FORMAT)
        except ValueError:
            return datetime.fromtimestamp(path.stat().st_mtime)

    def last_backup(self) -> BackupSnapshot | None:
        """Snapshot named by the pointer file, if it still exists."""
        if self.pointer_file is None or not self.pointer_file.exists():
            return None
        path = Path(self.pointer_file.read_text().strip())
        if not path.is_dir():
            self.logger.error("backup.pointer_missing_directory", path=str(path))
            return None
        return BackupSnapshot(path=path, created_at=self._created_at(path))

    def restore(self, snapshot: BackupSnapshot) -> None:
        """Replace build output and dependencies in the checkout with a snapshot."""
        if not snapshot.path.is_dir():
            raise BackupError(
                f"Backup directory not found: {snapshot.path}",
                {"path": str(snapshot.path)},
            )

        self.logger.warning("backup.restoring", path=str(snapshot.path))
        try:
            for name in self.directories:
                target = self.source / name
                if target.is_symlink() or target.is_file():
                    target.unlink()
                elif target.exists():
                    shutil.rmtree(target)

            for entry in snapshot.path.iterdir():
                target = self.source / entry.name
                if entry.is_dir():
                    shutil.copytree(entry, target, symlinks=True, dirs_exist_ok=True)
                else:
                    shutil.copy2(entry, target)
        except OSError as e:
            raise BackupError(f"Failed to restore backup {snapshot.path}: {e}", {"path": str(snapshot.path)})

        self.logger.info("backup.restored", path=str(snapshot.path))

    def prune(self, keep: int) -> list[BackupSnapshot]:
        """Delete all but the newest ``keep`` snapshots. Returns the removed ones."""
        snapshots = self.list_snapshots()
        removed = snapshots[:-keep] if keep > 0 else snapshots
        for snapshot in removed:
            shutil.rmtree(snapshot.path, ignore_errors=True)

        if removed:
            self.logger.info(
                "backup.pruned",
                removed=len(removed),
                kept=len(snapshots) - len(removed),
            )
        return removed
