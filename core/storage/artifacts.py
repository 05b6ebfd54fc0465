"""Artifact storage abstraction for JSON and binary data.

Provides a consistent interface for storing and retrieving artifacts
with integrity verification and metadata tracking. Uploaded supplier
quotes and extraction results are stored here.
"""

import hashlib
import json
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Union

from core.models.refs import DataReference, SourceFileRef
from core.observability.logging import get_logger


logger = get_logger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def _compute_sha256(data: bytes) -> str:
    """Compute SHA256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()


def sanitize_file_name(file_name: str) -> str:
    """Replace characters outside ``[a-zA-Z0-9._-]`` with underscores."""
    return _UNSAFE_NAME_CHARS.sub("_", file_name)


def put_json(obj: Any, path: Path, ensure_parent: bool = True) -> DataReference:
    """Store a JSON-serializable object and return a DataReference.

    Args:
        obj: Object to serialize to JSON (dict, Pydantic model, etc.)
        path: Absolute file path where artifact will be stored
        ensure_parent: Create parent directories if they don't exist

    Returns:
        DataReference with artifact metadata for retrieval

    Raises:
        TypeError: If object is not JSON-serializable
    """
    if ensure_parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    if hasattr(obj, "model_dump"):
        obj_dict = obj.model_dump(mode="json", by_alias=True)
    else:
        obj_dict = obj

    json_bytes = json.dumps(obj_dict, indent=2, ensure_ascii=False).encode("utf-8")

    path.write_bytes(json_bytes)

    return DataReference(
        storage_uri=str(path.absolute()),
        content_hash=_compute_sha256(json_bytes),
        content_type="application/json",
        size_bytes=len(json_bytes),
        stored_at=datetime.now(),
    )


def get_json(ref: DataReference, validate_hash: bool = True) -> dict:
    """Retrieve JSON artifact from a DataReference.

    Raises:
        FileNotFoundError: If artifact path doesn't exist
        ValueError: If hash validation fails
        json.JSONDecodeError: If file is not valid JSON
    """
    json_bytes = get_binary(ref, validate_hash)
    return json.loads(json_bytes.decode("utf-8"))


def put_binary(data: bytes, path: Path, content_type: str = "application/octet-stream",
               ensure_parent: bool = True) -> DataReference:
    """Store binary data and return a DataReference.

    Args:
        data: Binary data to store
        path: Absolute file path where artifact will be stored
        content_type: MIME type of the data
        ensure_parent: Create parent directories if they don't exist

    Returns:
        DataReference with artifact metadata for retrieval
    """
    if ensure_parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    path.write_bytes(data)

    return DataReference(
        storage_uri=str(path.absolute()),
        content_hash=_compute_sha256(data),
        content_type=content_type,
        size_bytes=len(data),
        stored_at=datetime.now(),
    )


def get_binary(ref: DataReference, validate_hash: bool = True) -> bytes:
    """Retrieve binary artifact from a DataReference.

    Raises:
        FileNotFoundError: If artifact path doesn't exist
        ValueError: If hash validation fails
    """
    path = Path(ref.storage_uri)

    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {ref.storage_uri}")

    data = path.read_bytes()

    if validate_hash:
        actual_hash = _compute_sha256(data)
        if actual_hash != ref.content_hash:
            raise ValueError(
                f"Hash mismatch for {ref.storage_uri}: "
                f"expected {ref.content_hash}, got {actual_hash}"
            )

    return data


class ArtifactStore:
    """Artifact store with configurable base path.

    Provides a convenient wrapper around the put/get functions
    with a consistent base directory.
    """

    def __init__(self, base_path: Union[str, Path]):
        """Initialize artifact store.

        Args:
            base_path: Base directory for all artifacts
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def put_json(self, obj: Any, relative_path: str) -> DataReference:
        """Store JSON artifact relative to base path."""
        return put_json(obj, self.base_path / relative_path)

    def get_json(self, ref: DataReference, validate_hash: bool = True) -> dict:
        """Retrieve JSON artifact."""
        return get_json(ref, validate_hash)

    def put_binary(self, data: bytes, relative_path: str,
                   content_type: str = "application/octet-stream") -> DataReference:
        """Store binary artifact relative to base path."""
        return put_binary(data, self.base_path / relative_path, content_type)

    def get_binary(self, ref: DataReference, validate_hash: bool = True) -> bytes:
        """Retrieve binary artifact."""
        return get_binary(ref, validate_hash)

    def store_source_file(self, file_name: str, data: bytes,
                          content_type: str = "application/octet-stream") -> SourceFileRef:
        """Store an uploaded quote file under ``quotes/<year>/<month>/``.

        A failed write does not abort the import: the returned reference
        carries a ``placeholder://file-not-stored/<name>`` URL instead.
        """
        sanitized = sanitize_file_name(file_name)
        now = datetime.now()
        relative_path = f"quotes/{now.year}/{now.month:02d}/{uuid.uuid4()}_{sanitized}"

        try:
            ref = self.put_binary(data, relative_path, content_type)
        except OSError as e:
            logger.warning(
                f"Could not store source file '{file_name}', continuing with placeholder URL",
                extra_fields={"error": str(e)},
            )
            return SourceFileRef(
                file_name=file_name,
                file_url=f"placeholder://file-not-stored/{sanitized}",
                stored=False,
            )

        return SourceFileRef(
            file_name=file_name,
            file_url=ref.storage_uri,
            stored=True,
            data_ref=ref,
        )
