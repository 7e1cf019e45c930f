"""Data models for Bedrock server management."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
import re

from ..utils.ids import SERVER_ID_PATTERN

BEDROCK_PORT = 19132
BEDROCK_PORT_PROTOCOL = "udp"

DEFAULT_SERVER_NAME = "Bedrock Server"
DEFAULT_VERSION = "LATEST"

MIN_MEMORY = 256 * 1024 ** 2  # 256 MiB
MAX_MEMORY = 32 * 1024 ** 3  # 32 GiB
DEFAULT_MEMORY = 2 * 1024 ** 3  # 2 GiB

SERVER_NAME_PATTERN = r"^[A-Za-z0-9 _.'-]+$"
NETWORK_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"

# Container labels used to re-associate containers with their metadata
LABEL_SERVER_ID = "server-id"
LABEL_SERVER_NAME = "server-name"
LABEL_MANAGED_BY = "managed-by"
MANAGED_BY = "bedrock-manager"


class ServerStatus(str, Enum):
    """Observed state of a server's container."""
    ABSENT = "absent"
    CREATED = "created"
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPED = "stopped"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def from_docker(cls, state: Optional[str]) -> "ServerStatus":
        """Map a Docker container state string to a ServerStatus."""
        if state is None:
            return cls.ABSENT
        mapping = {
            "created": cls.CREATED,
            "running": cls.RUNNING,
            "restarting": cls.RESTARTING,
            "paused": cls.STOPPED,
            "exited": cls.STOPPED,
            "dead": cls.ERROR,
            "removing": cls.STOPPED,
        }
        return mapping.get(state, cls.UNKNOWN)


class ServerMetadata(BaseModel):
    """Durable metadata record for one server (metadata.json)."""

    # Unknown keys in metadata.json are kept and written back unchanged
    model_config = ConfigDict(extra="allow", validate_assignment=True)

    server_id: str = Field(..., pattern=SERVER_ID_PATTERN, description="Stable server ID")
    name: str = Field(
        DEFAULT_SERVER_NAME, min_length=1, max_length=100, pattern=SERVER_NAME_PATTERN,
        description="Display name",
    )
    version: str = Field(DEFAULT_VERSION, min_length=1, max_length=64, description="Bedrock version selector")
    memory: int = Field(DEFAULT_MEMORY, ge=MIN_MEMORY, le=MAX_MEMORY, description="Memory limit in bytes")
    network: Optional[str] = Field(None, max_length=128, description="Docker network name")
    port: Optional[int] = Field(None, ge=1, le=65535, description="Host port override")
    image: Optional[str] = Field(None, description="Image reference override")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("network", "image", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("network")
    @classmethod
    def _check_network(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not re.match(NETWORK_NAME_PATTERN, value):
            raise ValueError(f"invalid network name '{value}'")
        return value

    @property
    def extra_fields(self) -> Dict[str, object]:
        """Extension fields carried through from metadata.json."""
        return dict(self.model_extra or {})


class NetworkDecision(BaseModel):
    """Port/network policy derived for one server."""
    model_config = ConfigDict(frozen=True)

    network_mode: Optional[str] = None
    requires_port_mapping: bool = True
    exposed_port: Optional[int] = None


class ContainerSpec(BaseModel):
    """Runtime-agnostic description of a server container."""
    model_config = ConfigDict(frozen=True)

    image: str
    name: str
    labels: Dict[str, str]
    environment: List[str]
    binds: List[str]
    memory: int
    network_mode: Optional[str] = None
    # "19132/udp" -> host port
    port_bindings: Dict[str, int] = Field(default_factory=dict)
    exposed_ports: List[str] = Field(default_factory=list)
    restart_policy: str = "unless-stopped"


class ServerView(BaseModel):
    """Metadata joined with the observed container state."""
    metadata: ServerMetadata
    status: ServerStatus = ServerStatus.ABSENT
    container_id: Optional[str] = None
    ip_address: Optional[str] = None

    @property
    def server_id(self) -> str:
        return self.metadata.server_id


class LifecycleResult(BaseModel):
    """Outcome of a single lifecycle operation."""
    server_id: str
    action: str
    status: str
    container_id: Optional[str] = None
    message: Optional[str] = None


class ReconcileReport(BaseModel):
    """Outcome of a batch reconciliation."""
    host_data_root: str
    created: List[str] = Field(default_factory=list)
    existing: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    # server ID -> error message
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.created) + len(self.existing)

    @property
    def failure_count(self) -> int:
        return len(self.failed)
