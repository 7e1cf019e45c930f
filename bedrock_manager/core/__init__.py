"""Core server management: metadata, container specs, lifecycle, cache and events."""

from .broadcast import BroadcastEvent, BroadcastHub, Observer
from .cache import FILES, INSPECT, Cache
from .commands import CommandExecutor, tokenize
from .lifecycle import LifecycleManager
from .metadata_store import MetadataStore
from .network_policy import resolve as resolve_network
from .server import (
    ContainerSpec,
    LifecycleResult,
    NetworkDecision,
    ReconcileReport,
    ServerMetadata,
    ServerStatus,
    ServerView,
)
from .spec_builder import ContainerSpecBuilder

__all__ = [
    "BroadcastEvent",
    "BroadcastHub",
    "Observer",
    "Cache",
    "INSPECT",
    "FILES",
    "CommandExecutor",
    "tokenize",
    "LifecycleManager",
    "MetadataStore",
    "resolve_network",
    "ContainerSpec",
    "LifecycleResult",
    "NetworkDecision",
    "ReconcileReport",
    "ServerMetadata",
    "ServerStatus",
    "ServerView",
    "ContainerSpecBuilder",
]
