"""Server lifecycle: create, start, stop, delete, import and reconcile containers."""

import asyncio
import logging
import posixpath
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .broadcast import BroadcastHub
from .cache import FILES, INSPECT, Cache
from .docker_client import DockerClient
from .metadata_store import MetadataStore, describe_validation_error
from .server import (
    DEFAULT_SERVER_NAME,
    DEFAULT_VERSION,
    LifecycleResult,
    ReconcileReport,
    ServerMetadata,
    ServerStatus,
    ServerView,
)
from .spec_builder import ContainerSpecBuilder
from ..config import Config
from ..errors import ConflictError, ManagerError, NotFoundError, OrchestrationError, ValidationError
from ..utils.ids import generate_server_id

logger = logging.getLogger(__name__)

# Fields a configuration update may change
UPDATABLE_FIELDS = ("name", "version", "memory", "network", "port", "image")


def format_bytes(size: int) -> str:
    """Human-readable size, e.g. 2147483648 -> '2 GB'."""
    if not size:
        return "0 Bytes"
    value = float(size)
    for unit in ("Bytes", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{round(value, 2):g} {unit}"
        value /= 1024
    return f"{size} Bytes"


def parse_properties(text: str) -> Dict[str, str]:
    """Parse server.properties style 'key=value' lines, skipping comments."""
    properties = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", "!")):
            continue
        key, sep, value = line.partition("=")
        if sep:
            properties[key.strip()] = value.strip()
    return properties


class KeyedLocks:
    """One asyncio.Lock per key, dropped once no task holds or waits for it."""

    def __init__(self):
        self._entries: Dict[str, list] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str):
        # [lock, number of tasks holding or waiting]
        entry = self._entries.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._entries.pop(key, None)


class LifecycleManager:
    """Drives server containers from their metadata records."""

    def __init__(
        self,
        data_root: Optional[Path] = None,
        docker_client=None,
        store: Optional[MetadataStore] = None,
        builder: Optional[ContainerSpecBuilder] = None,
        cache: Optional[Cache] = None,
        hub: Optional[BroadcastHub] = None,
        host_data_root: Optional[str] = None,
        app_data_path: Optional[str] = None,
        api_timeout: Optional[float] = None,
        pull_timeout: Optional[float] = None,
        default_memory: Optional[int] = None
    ):
        """
        Initialize lifecycle manager.

        Args:
            data_root: Server directories as seen by this process (defaults to Config.DATA_DIR)
            docker_client: Shared DockerClient (created from Config if omitted)
            store: Metadata store (defaults to one over data_root)
            builder: Container spec builder
            cache: Read cache for inspection data
            hub: Broadcast hub for change events
            host_data_root: Host-side data root override (defaults to Config.HOST_DATA_ROOT)
            app_data_path: Mount destination used to discover the host data root
            api_timeout: Seconds allowed per Docker call
            pull_timeout: Seconds allowed per image pull
            default_memory: Memory limit for new servers
        """
        self.data_root = Path(data_root or Config.DATA_DIR)
        self.docker = docker_client or DockerClient()
        self.store = store or MetadataStore(self.data_root, Config.SERVER_DIR_PREFIX)
        self.builder = builder or ContainerSpecBuilder()
        self.cache = cache or Cache({INSPECT: Config.INSPECT_CACHE_TTL, FILES: Config.FILE_CACHE_TTL})
        self.hub = hub or BroadcastHub(Config.BROADCAST_COALESCE_WINDOW, Config.BROADCAST_QUEUE_SIZE)
        self.host_data_root = host_data_root if host_data_root is not None else Config.HOST_DATA_ROOT
        self.app_data_path = app_data_path or Config.APP_DATA_PATH
        self.api_timeout = api_timeout or Config.DOCKER_API_TIMEOUT
        self.pull_timeout = pull_timeout or Config.DOCKER_PULL_TIMEOUT
        self.default_memory = default_memory or Config.DEFAULT_MEMORY

        self._locks = KeyedLocks()
        self._pull_locks = KeyedLocks()
        # image -> pull still running in a worker thread
        self._pulls: Dict[str, asyncio.Future] = {}

    # Write path

    async def create(
        self,
        name: Optional[str] = None,
        version: Optional[str] = None,
        memory: Optional[int] = None,
        network: Optional[str] = None,
        port: Optional[int] = None,
        image: Optional[str] = None,
        server_id: Optional[str] = None,
        strict: bool = False,
        start: bool = True
    ) -> LifecycleResult:
        """
        Create a new server and its container.

        Calling create again for an existing server ID is not an error: the
        stored record is kept and the result reports status "exists". If the
        container cannot be created or started, a record written by this
        call is removed again.

        Args:
            name: Display name
            version: Bedrock version selector
            memory: Memory limit in bytes
            network: Docker network to join
            port: Host port override
            image: Image reference override
            server_id: Explicit ID (generated if omitted)
            strict: Raise ConflictError instead of reporting "exists"
            start: Start the container after creating it

        Returns:
            LifecycleResult

        Raises:
            ValidationError: If the metadata is out of bounds
            ConflictError: In strict mode, if the server already exists
            OrchestrationError: If Docker rejects the request
        """
        server_id = server_id or generate_server_id(self.store.prefix)
        metadata = self._new_metadata(
            server_id, name=name, version=version, memory=memory,
            network=network, port=port, image=image,
        )

        async with self._transition(server_id):
            stored = self.store.find(server_id)
            dir_existed = self.store.server_dir(server_id).exists()
            if stored is not None:
                if strict:
                    raise ConflictError("Server already exists", operation="create", server_id=server_id)
                metadata = stored
            else:
                self.store.write(metadata, create_dir=True)
                logger.info(
                    "Created metadata for %s (%s, %s)", server_id, metadata.name, format_bytes(metadata.memory)
                )

            try:
                result = await self._ensure_container(metadata, action="create", strict=strict, start=start)
            except ManagerError:
                if stored is None:
                    logger.error("Create failed for %s, removing its new record", server_id)
                    if dir_existed:
                        self.store.remove_record(server_id)
                    else:
                        self.store.delete(server_id)
                raise

        self._publish(result)
        return result

    async def ensure_container(self, server_id: str, strict: bool = False) -> LifecycleResult:
        """
        Make sure a server with a metadata record has a container.

        Args:
            server_id: Server to reconcile
            strict: Raise ConflictError if the container already exists

        Returns:
            LifecycleResult with status "created" or "exists"
        """
        async with self._transition(server_id):
            metadata = self.store.read(server_id)
            result = await self._ensure_container(metadata, action="ensure", strict=strict)
        self._publish(result)
        return result

    async def start(self, server_id: str) -> LifecycleResult:
        """
        Start a server's container.

        Raises:
            NotFoundError: If the server has no metadata or no container
        """
        async with self._transition(server_id):
            self.store.read(server_id)
            container = await self._require_container(server_id, "start")
            if ServerStatus.from_docker(container["status"]) == ServerStatus.RUNNING:
                result = self._result(server_id, "start", "already-running", container["id"])
            else:
                await self._call("start", server_id, self.docker.start, container["id"])
                logger.info("Started %s", server_id)
                result = self._result(server_id, "start", "started", container["id"])
        self._publish(result)
        return result

    async def stop(self, server_id: str) -> LifecycleResult:
        """
        Stop a server's container.

        Raises:
            NotFoundError: If the server has no metadata or no container
        """
        async with self._transition(server_id):
            self.store.read(server_id)
            container = await self._require_container(server_id, "stop")
            if ServerStatus.from_docker(container["status"]) in (ServerStatus.STOPPED, ServerStatus.CREATED):
                result = self._result(server_id, "stop", "already-stopped", container["id"])
            else:
                await self._call("stop", server_id, self.docker.stop, container["id"])
                logger.info("Stopped %s", server_id)
                result = self._result(server_id, "stop", "stopped", container["id"])
        self._publish(result)
        return result

    async def restart(self, server_id: str) -> LifecycleResult:
        """
        Restart a server's container.

        Raises:
            NotFoundError: If the server has no metadata or no container
        """
        async with self._transition(server_id):
            self.store.read(server_id)
            container = await self._require_container(server_id, "restart")
            await self._call("restart", server_id, self.docker.restart, container["id"])
            logger.info("Restarted %s", server_id)
            result = self._result(server_id, "restart", "restarted", container["id"])
        self._publish(result)
        return result

    async def delete(self, server_id: str, remove_data: bool = True) -> LifecycleResult:
        """
        Delete a server's container and, by default, its data directory.

        Args:
            server_id: Server to delete
            remove_data: Also remove the data directory and metadata record

        Raises:
            NotFoundError: If neither a container nor a data directory exists
        """
        async with self._transition(server_id):
            server_dir = self.store.server_dir(server_id)
            container = await self._call("delete", server_id, self.docker.find_server_container, server_id)
            if container is None and not server_dir.exists():
                raise NotFoundError("Server not found", operation="delete", server_id=server_id)

            if container is not None:
                await self._call("delete", server_id, self.docker.remove, container["id"])
                logger.info("Removed container for %s", server_id)
            if remove_data:
                self.store.delete(server_id)
            result = self._result(server_id, "delete", "deleted")
        self._publish(result)
        return result

    async def import_existing(
        self,
        server_id: str,
        name: Optional[str] = None,
        version: Optional[str] = None,
        memory: Optional[int] = None,
        network: Optional[str] = None,
        port: Optional[int] = None,
        strict: bool = False
    ) -> LifecycleResult:
        """
        Adopt a server directory already present on disk.

        Writes a metadata record when the directory has none, then ensures a
        container exists for it.

        Args:
            server_id: Directory name under the data root
            name, version, memory, network, port: Values for a new record

        Raises:
            NotFoundError: If the directory does not exist
        """
        async with self._transition(server_id):
            if not self.store.server_dir(server_id).exists():
                raise NotFoundError("Server directory not found", operation="import", server_id=server_id)

            metadata = self.store.find(server_id)
            if metadata is None:
                metadata = self._new_metadata(
                    server_id, name=name, version=version, memory=memory, network=network, port=port,
                )
                self.store.write(metadata)
                logger.info("Wrote metadata for imported server %s", server_id)
            result = await self._ensure_container(metadata, action="import", strict=strict)
        self._publish(result)
        return result

    async def update_config(self, server_id: str, **changes) -> LifecycleResult:
        """
        Change a server's configuration and rebuild its container to match.

        The container keeps its running state across the rebuild. If the
        rebuild fails, the previous record and container are put back.

        Args:
            server_id: Server to update
            **changes: New values for name, version, memory, network, port or image

        Raises:
            ValidationError: On unknown fields or out-of-bounds values
        """
        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Cannot update field(s): {', '.join(unknown)}", operation="update", server_id=server_id
            )

        async with self._transition(server_id):
            current = self.store.read(server_id)
            data = current.model_dump()
            data.update(changes)
            try:
                metadata = ServerMetadata(**data)
            except PydanticValidationError as e:
                raise ValidationError(describe_validation_error(e), operation="update", server_id=server_id, cause=e)

            self.store.write(metadata)
            try:
                container = await self._call("update", server_id, self.docker.find_server_container, server_id)
                if container is None:
                    result = self._result(server_id, "update", "updated")
                else:
                    running = ServerStatus.from_docker(container["status"]) == ServerStatus.RUNNING
                    result = await self._rebuild(metadata, container, action="update", start=running)
            except ManagerError:
                logger.error("Update failed for %s, restoring previous record", server_id)
                self.store.write(current)
                raise
        self._publish(result)
        return result

    async def recreate(self, server_id: str) -> LifecycleResult:
        """
        Remove and rebuild a server's container from its metadata record.

        Raises:
            NotFoundError: If the server has no metadata
        """
        async with self._transition(server_id):
            metadata = self.store.read(server_id)
            container = await self._call("recreate", server_id, self.docker.find_server_container, server_id)
            result = await self._rebuild(metadata, container, action="recreate", start=True)
        self._publish(result)
        return result

    async def recreate_all(self) -> ReconcileReport:
        """
        Ensure every server directory with a metadata record has a container.

        Servers are processed one at a time. A failure on one server is
        logged and counted and never stops the rest of the batch.

        Returns:
            ReconcileReport

        Raises:
            NotFoundError: If the data directory itself is missing
        """
        if not self.data_root.exists():
            raise NotFoundError("Data directory not found", operation="recreate-all")

        host_root = await self.resolve_host_data_root()
        report = ReconcileReport(host_data_root=host_root)
        server_dirs = self.store.list_server_dirs()
        logger.info("Reconciling %d server directory(ies)", len(server_dirs))

        for server_id in server_dirs:
            try:
                async with self._transition(server_id):
                    if not self.store.exists(server_id):
                        logger.warning("Skipping %s - no metadata.json found", server_id)
                        report.skipped.append(server_id)
                        continue
                    metadata = self.store.read(server_id)
                    logger.info(
                        "Processing %s: name=%s version=%s network=%s memory=%s",
                        server_id, metadata.name, metadata.version,
                        metadata.network or "bridge (default)", format_bytes(metadata.memory),
                    )
                    result = await self._ensure_container(metadata, action="recreate", host_root=host_root)
            except ManagerError as e:
                logger.error("Failed to reconcile %s: %s", server_id, e)
                report.failed[server_id] = e.message
                continue
            except Exception as e:
                logger.exception("Unexpected error reconciling %s", server_id)
                report.failed[server_id] = f"{e.__class__.__name__}: {e}"
                continue

            if result.status == "exists":
                report.existing.append(server_id)
            else:
                report.created.append(server_id)
            self._publish(result)

        logger.info(
            "Reconciliation finished: %d created, %d existing, %d failed, %d skipped",
            len(report.created), len(report.existing), report.failure_count, len(report.skipped),
        )
        self.hub.publish("reconcile", {
            "created": report.created,
            "existing": report.existing,
            "failed": sorted(report.failed),
            "skipped": report.skipped,
        })
        return report

    async def resolve_host_data_root(self) -> str:
        """
        Find the data root as the Docker host sees it.

        The manager may itself run in a container with the data volume
        mounted at app_data_path; bind mounts for new servers must use the
        host side of that mount.

        Returns:
            Configured override, else the discovered mount source, else data_root
        """
        if self.host_data_root:
            return str(self.host_data_root)

        try:
            containers = await self._call("discover", None, self.docker.list_containers)
        except ManagerError as e:
            logger.warning("Failed to get host data path, using %s: %s", self.data_root, e)
            return str(self.data_root)

        for container in containers:
            for mount in container.get("mounts") or []:
                if mount.get("destination") == self.app_data_path and mount.get("source"):
                    logger.info("Using mount source %s as host data root", mount["source"])
                    return mount["source"]

        logger.info("No existing mount found, using %s", self.data_root)
        return str(self.data_root)

    # Read path

    async def get_server(self, server_id: str) -> ServerView:
        """
        Metadata plus container state, served from the inspect cache.

        Raises:
            NotFoundError: If the server has no metadata record
        """
        return await self.cache.aget(INSPECT, server_id, lambda: self._inspect_server(server_id))

    async def list_servers(self) -> List[ServerView]:
        """
        All servers with readable metadata.

        Records that fail validation are logged and left out; servers whose
        container cannot be inspected are reported with status "unknown".
        """
        views = []
        for server_id in self.store.list_server_dirs():
            try:
                metadata = self.store.find(server_id)
            except ValidationError as e:
                logger.warning("Ignoring %s: %s", server_id, e)
                continue
            if metadata is None:
                continue
            try:
                views.append(await self.get_server(server_id))
            except NotFoundError:
                # Deleted since the directory scan
                continue
            except OrchestrationError as e:
                logger.warning("Cannot inspect %s: %s", server_id, e)
                views.append(ServerView(metadata=metadata, status=ServerStatus.UNKNOWN))
        return views

    def read_server_file(self, server_id: str, relative_path: str) -> str:
        """
        Text of a file in a server's data directory, served from the files cache.

        Args:
            server_id: Server whose directory is read
            relative_path: Path below the server directory, e.g. "server.properties"

        Returns:
            File contents

        Raises:
            ValidationError: If the path leaves the server directory or is not a text file
            NotFoundError: If the file does not exist
        """
        server_dir = self.store.server_dir(server_id)
        normalized = posixpath.normpath(relative_path.replace("\\", "/")) if relative_path else ""
        if normalized in ("", ".", "..") or normalized.startswith(("/", "../")):
            raise ValidationError(f"Invalid file path '{relative_path}'", operation="read-file", server_id=server_id)

        def recompute():
            path = server_dir / normalized
            if not path.is_file():
                raise NotFoundError(f"File not found: {normalized}", operation="read-file", server_id=server_id)
            try:
                return path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ValidationError(
                    f"Cannot read {normalized}: {e.__class__.__name__}",
                    operation="read-file", server_id=server_id, cause=e,
                )

        return self.cache.get(FILES, (server_id, normalized), recompute)

    def server_properties(self, server_id: str) -> Dict[str, str]:
        """Settings from the server's server.properties."""
        return parse_properties(self.read_server_file(server_id, "server.properties"))

    async def close(self):
        self.hub.close()
        self.cache.clear()

    # Internals

    async def _inspect_server(self, server_id: str) -> ServerView:
        metadata = self.store.read(server_id)
        container = await self._call("inspect", server_id, self.docker.find_server_container, server_id)
        if container is None:
            return ServerView(metadata=metadata, status=ServerStatus.ABSENT)
        details = await self._call("inspect", server_id, self.docker.inspect, container["id"])
        return ServerView(
            metadata=metadata,
            status=ServerStatus.from_docker(details.get("status")),
            container_id=details.get("id"),
            ip_address=details.get("ip_address"),
        )

    async def _ensure_container(
        self,
        metadata: ServerMetadata,
        action: str,
        strict: bool = False,
        start: bool = True,
        host_root: Optional[str] = None
    ) -> LifecycleResult:
        """Create and start a container unless one is already labelled with the server ID."""
        server_id = metadata.server_id
        existing = await self._call(action, server_id, self.docker.find_server_container, server_id)
        if existing is not None:
            if strict:
                raise ConflictError("Container already exists", operation=action, server_id=server_id)
            logger.info("Container already exists for %s (%s)", server_id, existing["id"][:12])
            return self._result(server_id, action, "exists", existing["id"], "Container already exists")

        container_id = await self._create_container(metadata, action, start, host_root)
        return self._result(server_id, action, "created", container_id)

    async def _rebuild(self, metadata: ServerMetadata, container: Optional[dict], action: str, start: bool):
        """
        Replace a server's container with one built from metadata.

        The old container is stopped and renamed aside, and only removed once
        its replacement exists (and runs, when start is set). On failure it
        gets its name and running state back.
        """
        server_id = metadata.server_id
        if container is None:
            container_id = await self._create_container(metadata, action, start, None)
            return self._result(server_id, action, "recreated", container_id)

        old_id = container["id"]
        was_running = ServerStatus.from_docker(container["status"]) == ServerStatus.RUNNING
        if was_running:
            await self._call(action, server_id, self.docker.stop, old_id)
        # Dots never occur in server IDs, so the parked name cannot clash
        await self._call(action, server_id, self.docker.rename, old_id, f"{server_id}.replaced")

        try:
            container_id = await self._create_container(metadata, action, start, None)
        except ManagerError:
            logger.error("Rebuild failed for %s, restoring previous container", server_id)
            await self._restore_container(server_id, old_id, was_running)
            raise

        await self._call(action, server_id, self.docker.remove, old_id)
        logger.info("Replaced container for %s", server_id)
        return self._result(server_id, action, "recreated", container_id)

    async def _restore_container(self, server_id: str, container_id: str, start: bool):
        try:
            await self._call("rollback", server_id, self.docker.rename, container_id, server_id)
            if start:
                await self._call("rollback", server_id, self.docker.start, container_id)
        except ManagerError as e:
            logger.error("Could not restore previous container for %s: %s", server_id, e)

    async def _create_container(self, metadata: ServerMetadata, action: str, start: bool,
                                host_root: Optional[str]) -> str:
        server_id = metadata.server_id
        host_root = host_root or await self.resolve_host_data_root()
        spec = self.builder.build(metadata, host_root)
        await self._ensure_image(spec.image, server_id)

        container_id = await self._call(action, server_id, self.docker.create, spec)
        logger.info(
            "Container created for %s: %s (network %s, port %s)", server_id, container_id[:12],
            spec.network_mode, ", ".join(str(p) for p in spec.port_bindings.values()) or "no mapping",
        )
        if not start:
            return container_id

        try:
            await self._call("start", server_id, self.docker.start, container_id)
        except ManagerError:
            # Leave the server absent rather than half-created
            logger.error("Start failed for %s, removing new container", server_id)
            try:
                await self._call("cleanup", server_id, self.docker.remove, container_id)
            except ManagerError as cleanup_error:
                logger.error("Cleanup of %s failed: %s", server_id, cleanup_error)
            raise
        return container_id

    async def _ensure_image(self, image: str, server_id: Optional[str] = None):
        """
        Pull an image if it is not present locally.

        A pull that outlives its timeout keeps running in its worker thread;
        later callers wait on that pull instead of starting another one.
        """
        async with self._pull_locks.hold(image):
            pull = self._pulls.get(image)
            if pull is None or pull.done():
                if await self._call("image", server_id, self.docker.image_exists, image):
                    return
                logger.info("Pulling Docker image %s...", image)
                pull = asyncio.ensure_future(asyncio.to_thread(self.docker.pull, image))
                self._pulls[image] = pull
                pull.add_done_callback(lambda task: self._pull_finished(image, task))
            else:
                logger.info("Waiting for running pull of %s", image)
            await self._await("pull", server_id, asyncio.shield(pull), self.pull_timeout)

    def _pull_finished(self, image: str, task: asyncio.Future):
        if self._pulls.get(image) is task:
            del self._pulls[image]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Pull of %s finished with %s", image, task.exception())

    async def _require_container(self, server_id: str, operation: str) -> dict:
        container = await self._call(operation, server_id, self.docker.find_server_container, server_id)
        if container is None:
            raise NotFoundError("Server has no container", operation=operation, server_id=server_id)
        return container

    async def _call(self, operation: str, server_id: Optional[str], func, *args, timeout: Optional[float] = None):
        """Run a blocking Docker call in a worker thread with a timeout."""
        return await self._await(operation, server_id, asyncio.to_thread(func, *args), timeout)

    async def _await(self, operation: str, server_id: Optional[str], awaitable, timeout: Optional[float] = None):
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout or self.api_timeout)
        except asyncio.TimeoutError as e:
            raise OrchestrationError("Docker did not answer in time", operation=operation, server_id=server_id, cause=e)
        except ManagerError as e:
            e.operation = e.operation or operation
            e.server_id = e.server_id or server_id
            raise

    @asynccontextmanager
    async def _transition(self, server_id: str):
        """Serialize operations per server and invalidate its cached state on the way out."""
        async with self._locks.hold(server_id):
            try:
                yield
            finally:
                self.cache.invalidate(INSPECT, server_id)
                self.cache.invalidate_matching(FILES, lambda key: key[0] == server_id)

    def _new_metadata(self, server_id: str, **values) -> ServerMetadata:
        values = {key: value for key, value in values.items() if value is not None}
        values.setdefault("name", DEFAULT_SERVER_NAME)
        values.setdefault("version", DEFAULT_VERSION)
        values.setdefault("memory", self.default_memory)
        try:
            return ServerMetadata(server_id=server_id, **values)
        except PydanticValidationError as e:
            raise ValidationError(describe_validation_error(e), operation="create", server_id=server_id, cause=e)

    @staticmethod
    def _result(server_id: str, action: str, status: str, container_id: Optional[str] = None,
                message: Optional[str] = None) -> LifecycleResult:
        return LifecycleResult(
            server_id=server_id, action=action, status=status, container_id=container_id, message=message,
        )

    def _publish(self, result: LifecycleResult):
        self.hub.publish(f"server/{result.server_id}", result.model_dump())
