"""Durable per-server metadata records (one metadata.json per server directory)."""

import json
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from .server import ServerMetadata
from ..errors import NotFoundError, ValidationError
from ..utils.ids import validate_server_id

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"


class MetadataStore:
    """Reads and writes server metadata under a data root directory."""

    def __init__(self, data_root: Path, prefix: str = "bedrock-"):
        """
        Initialize metadata store.

        Args:
            data_root: Directory holding one subdirectory per server
            prefix: Name prefix identifying server directories
        """
        self.data_root = Path(data_root)
        self.prefix = prefix

    def server_dir(self, server_id: str) -> Path:
        """Directory backing a server, as seen by this process."""
        if not validate_server_id(server_id):
            raise ValidationError(f"Invalid server ID '{server_id}'", operation="metadata", server_id=server_id)
        return self.data_root / server_id

    def metadata_path(self, server_id: str) -> Path:
        return self.server_dir(server_id) / METADATA_FILE

    def exists(self, server_id: str) -> bool:
        return self.metadata_path(server_id).exists()

    def list_server_dirs(self) -> List[str]:
        """
        List server directories under the data root.

        Returns:
            Sorted directory names starting with the server prefix
        """
        if not self.data_root.exists():
            return []
        return sorted(
            entry.name for entry in self.data_root.iterdir()
            if entry.is_dir() and entry.name.startswith(self.prefix)
        )

    def read(self, server_id: str) -> ServerMetadata:
        """
        Load a server's metadata record.

        Args:
            server_id: Server ID (directory name)

        Returns:
            ServerMetadata

        Raises:
            NotFoundError: If the directory has no metadata.json
            ValidationError: If the record is unreadable or out of bounds
        """
        path = self.metadata_path(server_id)
        if not path.exists():
            raise NotFoundError("No metadata record", operation="read", server_id=server_id)

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(
                f"Unreadable metadata.json: {e.__class__.__name__}",
                operation="read", server_id=server_id, cause=e,
            )

        if not isinstance(data, dict):
            raise ValidationError("metadata.json must contain an object", operation="read", server_id=server_id)

        # Records written by older releases carry no ID; the directory name is authoritative
        data.setdefault("server_id", server_id)
        if data["server_id"] != server_id:
            raise ValidationError(
                f"Record ID '{data['server_id']}' does not match its directory",
                operation="read", server_id=server_id,
            )

        try:
            return ServerMetadata(**data)
        except PydanticValidationError as e:
            raise ValidationError(describe_validation_error(e), operation="read", server_id=server_id, cause=e)

    def write(self, metadata: ServerMetadata, create_dir: bool = False):
        """
        Persist a metadata record atomically.

        Args:
            metadata: Record to save
            create_dir: Create the server directory if missing
        """
        server_dir = self.server_dir(metadata.server_id)
        if create_dir:
            server_dir.mkdir(parents=True, exist_ok=True)
        elif not server_dir.exists():
            raise NotFoundError("Server directory missing", operation="write", server_id=metadata.server_id)

        metadata.updated_at = datetime.now()
        payload = metadata.model_dump(mode='json')

        fd, tmp_path = tempfile.mkstemp(dir=server_dir, prefix=".metadata-", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp_path, server_dir / METADATA_FILE)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self, server_id: str):
        """
        Remove a server's directory, world data included.

        Args:
            server_id: Server to remove
        """
        server_dir = self.server_dir(server_id)
        if server_dir.exists():
            shutil.rmtree(server_dir)
            logger.info("Removed data directory for %s", server_id)

    def remove_record(self, server_id: str):
        """Remove only metadata.json, leaving the rest of the directory."""
        path = self.metadata_path(server_id)
        if path.exists():
            path.unlink()

    def find(self, server_id: str) -> Optional[ServerMetadata]:
        """Like read(), but returns None when no record exists."""
        try:
            return self.read(server_id)
        except NotFoundError:
            return None


def describe_validation_error(error: PydanticValidationError) -> str:
    """Condense a pydantic error into one line without echoing input values."""
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "record"
        problems.append(f"{location}: {item.get('msg')}")
    return "; ".join(problems)
