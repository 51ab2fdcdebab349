"""CheckpointMetadataStore: durable checkpoint records on disk.

Layout under a checkpoint root:

    <root>/
        cp-20261019T101500123456-1a2b3c4d/
            container.info      record (see serialization.py)
            *.img               engine-owned images
            dump-<strategy>.log engine log of each attempted strategy
            restore.log         engine log of the latest restore
            restore.pid         root task pid of the latest restore
        cp-20261019T113012000042-5e6f7a8b/
            ...

Every checkpoint gets its own directory, so checkpointing the same target
into the same root twice yields two independent records.
"""

import dataclasses
import uuid
from datetime import datetime
from pathlib import Path

from dockercr.contracts import (
    CheckpointCorruptionError,
    CheckpointRecord,
    IncompatibleCheckpointError,
    MissingMetadataError,
)
from dockercr.core.checkpoint.serialization import decode_record, encode_record
from dockercr.core.logging import get_logger

logger = get_logger(__name__)

METADATA_FILENAME = "container.info"

# Metadata names written by legacy shell tooling; never restorable
_LEGACY_METADATA_FILENAMES = ("container.meta", "docker-checkpoint.info")


class CheckpointMetadataStore:
    """Allocates checkpoint directories and reads/writes their records.

    Usage:
        store = CheckpointMetadataStore()
        checkpoint_id, directory = store.allocate(root, created_at)
        ...engine writes images into directory...
        store.write(record)

        record = store.load(root)  # latest record under root
    """

    def allocate(self, root: Path, created_at: datetime) -> tuple[str, Path]:
        """Create a fresh, empty checkpoint directory under root.

        Returns:
            (checkpoint_id, directory)
        """
        root.mkdir(parents=True, exist_ok=True)
        checkpoint_id = f"cp-{created_at:%Y%m%dT%H%M%S%f}-{uuid.uuid4().hex[:8]}"
        directory = root.resolve() / checkpoint_id
        directory.mkdir()
        return checkpoint_id, directory

    def write(self, record: CheckpointRecord) -> Path:
        """Persist a record into its checkpoint directory.

        Raises:
            FileExistsError: If the directory already holds a record.
                Records are immutable once written.
        """
        path = record.checkpoint_dir / METADATA_FILENAME
        with path.open("x", encoding="utf-8") as f:
            f.write(encode_record(record))
        logger.info(
            "checkpoint record written",
            checkpoint_id=record.checkpoint_id,
            strategy=record.strategy.value,
            path=str(path),
        )
        return path

    def has_record(self, directory: Path) -> bool:
        return (directory / METADATA_FILENAME).is_file()

    def read(self, directory: Path) -> CheckpointRecord:
        """Read the record stored directly in directory.

        The returned record points at where the directory is now, even if it
        was moved since capture.

        Raises:
            MissingMetadataError: If there is no record.
            IncompatibleCheckpointError: If the record cannot be restored by
                this version.
            CheckpointCorruptionError: If the record is malformed.
        """
        path = directory / METADATA_FILENAME
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            for legacy_name in _LEGACY_METADATA_FILENAMES:
                if (directory / legacy_name).is_file():
                    raise IncompatibleCheckpointError(
                        f"{directory / legacy_name} was written by legacy tooling and records no strategy"
                    ) from None
            raise MissingMetadataError(f"no checkpoint metadata in {directory}") from None

        record = decode_record(text)
        actual_dir = directory.resolve()
        if record.checkpoint_dir != actual_dir:
            logger.info("checkpoint directory moved since capture", recorded=str(record.checkpoint_dir), actual=str(actual_dir))
            record = dataclasses.replace(record, checkpoint_dir=actual_dir)
        return record

    def list_records(self, root: Path) -> list[CheckpointRecord]:
        """All records under a checkpoint root, oldest first.

        Subdirectories without a record (failed captures) are skipped, and
        so are records that cannot be decoded or restored by this version.
        Reading such a directory directly still raises.
        """
        if not root.is_dir():
            return []
        records = []
        for child in sorted(root.iterdir()):
            if not (child.is_dir() and self.has_record(child)):
                continue
            try:
                records.append(self.read(child))
            except (CheckpointCorruptionError, IncompatibleCheckpointError) as e:
                logger.warning("skipping unreadable checkpoint record", directory=str(child), error=str(e))
        return sorted(records, key=lambda r: r.created_at)

    def load(self, path: Path) -> CheckpointRecord:
        """Load the record for a restore.

        path may be a checkpoint directory (record inside it) or a checkpoint
        root (latest record beneath it).

        Raises:
            MissingMetadataError: If neither holds a record.
        """
        if self.has_record(path):
            return self.read(path)
        if not path.is_dir():
            raise MissingMetadataError(f"checkpoint directory not found: {path}")

        records = self.list_records(path)
        if not records:
            # Surfaces legacy metadata as IncompatibleCheckpointError
            return self.read(path)
        return records[-1]
