"""Checkpoint metadata subsystem.

Provides:
- CheckpointMetadataStore: Allocate checkpoint directories, write and load records
- encode_record/decode_record: The versioned container.info format
"""

from dockercr.core.checkpoint.serialization import decode_record, encode_record
from dockercr.core.checkpoint.store import METADATA_FILENAME, CheckpointMetadataStore

__all__ = [
    "METADATA_FILENAME",
    "CheckpointMetadataStore",
    "decode_record",
    "encode_record",
]
