"""Persistence of the last deployment outcome."""

import os
from pathlib import Path

from pydantic import ValidationError

from autodeploy.models.deployment import DeploymentRecord
from autodeploy.utils.logging import DEPLOYMENT_LOGGER, get_logger

logger = get_logger(f"{DEPLOYMENT_LOGGER}.records")


class DeploymentRecordStore:
    """Stores a single DeploymentRecord as a JSON file.

    Every attempt overwrites the file; status callers read it back.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> DeploymentRecord | None:
        """Read the last record, or None if missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            return DeploymentRecord.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error("records.read_failed", path=str(self.path), error=str(e))
            return None

    def save(self, record: DeploymentRecord) -> None:
        """Overwrite the stored record."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
        logger.info(
            "records.saved",
            commit=record.commit,
            success=record.success,
        )
