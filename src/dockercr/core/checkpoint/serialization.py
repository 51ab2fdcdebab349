"""Versioned KEY=VALUE encoding for checkpoint records.

This is the single encode/decode pair for container.info. Call sites never
scan the file themselves.

Format:
    # docker-cr checkpoint record
    FORMAT_VERSION=1
    CHECKPOINT_ID=cp-20261019T101500123456-1a2b3c4d
    TARGET_KIND=container
    CONTAINER_ID=4f1c...
    CONTAINER_NAME=web
    IMAGE=nginx:1.27
    PID=4312
    STRATEGY=direct-container-aware
    CREATED_AT=2026-10-19T10:15:00.123456+00:00
    CHECKPOINT_DIR=/var/lib/checkpoints/web/cp-20261019T101500123456-1a2b3c4d
    RESOURCES=tcp_established,unix_socket
    LEAVE_RUNNING=true

Blank lines and '#' comments are ignored, as are unknown keys (newer writers
may add fields without bumping the version). CONTAINER_NAME, CONTAINER_ID
and IMAGE are omitted for bare processes. RUNTIME_CHECKPOINT_ID is present
only for delegated checkpoints.
"""

from datetime import datetime
from pathlib import Path

from dockercr.contracts import (
    CheckpointCorruptionError,
    CheckpointRecord,
    IncompatibleCheckpointError,
    ResourceClass,
    Strategy,
    TargetKind,
)

_HEADER = "# docker-cr checkpoint record"
_REQUIRED_KEYS = ("CHECKPOINT_ID", "TARGET_KIND", "PID", "STRATEGY", "CREATED_AT", "CHECKPOINT_DIR")


def _check_value(key: str, value: str) -> str:
    if "\n" in value or "\r" in value:
        raise ValueError(f"{key} value must be a single line: {value!r}")
    return value


def encode_record(record: CheckpointRecord) -> str:
    """Render a record as container.info text.

    Raises:
        ValueError: If a value would break the line-oriented format.
    """
    pairs: list[tuple[str, str]] = [
        ("FORMAT_VERSION", str(record.format_version)),
        ("CHECKPOINT_ID", record.checkpoint_id),
        ("TARGET_KIND", record.target_kind.value),
    ]
    if record.container_id:
        pairs.append(("CONTAINER_ID", record.container_id))
    if record.container_name:
        pairs.append(("CONTAINER_NAME", record.container_name))
    if record.image:
        pairs.append(("IMAGE", record.image))
    pairs.extend(
        [
            ("PID", str(record.pid)),
            ("STRATEGY", record.strategy.value),
            ("CREATED_AT", record.created_at.isoformat()),
            ("CHECKPOINT_DIR", str(record.checkpoint_dir)),
            ("RESOURCES", ",".join(sorted(r.value for r in record.resources))),
            ("LEAVE_RUNNING", "true" if record.leave_running else "false"),
        ]
    )
    if record.runtime_checkpoint_id:
        pairs.append(("RUNTIME_CHECKPOINT_ID", record.runtime_checkpoint_id))

    lines = [_HEADER] + [f"{key}={_check_value(key, value)}" for key, value in pairs]
    return "\n".join(lines) + "\n"


def parse_pairs(text: str) -> dict[str, str]:
    """Split container.info text into a key/value mapping."""
    pairs: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise CheckpointCorruptionError(f"malformed metadata line (expected KEY=VALUE): {line!r}")
        pairs[key.strip()] = value.strip()
    return pairs


def decode_record(text: str) -> CheckpointRecord:
    """Parse container.info text into a CheckpointRecord.

    Raises:
        IncompatibleCheckpointError: If the record has no format version
            (legacy tooling, no strategy recorded) or a different one.
        CheckpointCorruptionError: If required keys are missing or values
            do not parse.
    """
    pairs = parse_pairs(text)

    version_text = pairs.get("FORMAT_VERSION")
    if version_text is None:
        raise IncompatibleCheckpointError(
            "checkpoint metadata has no FORMAT_VERSION; it predates recorded strategies "
            "and cannot be restored without guessing one"
        )
    # Reject BOTH older AND newer versions
    if version_text != str(CheckpointRecord.CURRENT_FORMAT_VERSION):
        raise IncompatibleCheckpointError(
            f"checkpoint metadata format v{version_text} is not supported (current: v{CheckpointRecord.CURRENT_FORMAT_VERSION})"
        )

    missing = [key for key in _REQUIRED_KEYS if not pairs.get(key)]
    if missing:
        raise CheckpointCorruptionError(f"checkpoint metadata is missing required keys: {missing}")

    try:
        resources_text = pairs.get("RESOURCES", "")
        resources = frozenset(ResourceClass(item) for item in resources_text.split(",") if item)
        return CheckpointRecord(
            checkpoint_id=pairs["CHECKPOINT_ID"],
            target_kind=TargetKind(pairs["TARGET_KIND"]),
            pid=int(pairs["PID"]),
            strategy=Strategy(pairs["STRATEGY"]),
            created_at=datetime.fromisoformat(pairs["CREATED_AT"]),
            checkpoint_dir=Path(pairs["CHECKPOINT_DIR"]),
            container_id=pairs.get("CONTAINER_ID") or None,
            container_name=pairs.get("CONTAINER_NAME") or None,
            image=pairs.get("IMAGE") or None,
            resources=resources,
            leave_running=pairs.get("LEAVE_RUNNING", "true") == "true",
            runtime_checkpoint_id=pairs.get("RUNTIME_CHECKPOINT_ID") or None,
        )
    except ValueError as e:
        raise CheckpointCorruptionError(f"checkpoint metadata has an invalid value: {e}") from e
