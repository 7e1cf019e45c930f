"""Docker Engine access for server containers using the Docker Python SDK."""

import functools
import logging
from typing import Dict, List, Optional, Tuple

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from .server import LABEL_SERVER_ID, ContainerSpec
from ..config import Config
from ..errors import NotFoundError, OrchestrationError

logger = logging.getLogger(__name__)


def _translate_errors(operation: str):
    """Re-raise Docker SDK errors as NotFoundError / OrchestrationError."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except NotFound as e:
                raise NotFoundError(f"Docker object not found: {_explain(e)}", operation=operation, cause=e)
            except DockerException as e:
                raise OrchestrationError(f"Docker request failed: {_explain(e)}", operation=operation, cause=e)
        return wrapper
    return decorator


def _explain(error: DockerException) -> str:
    if isinstance(error, APIError) and error.explanation:
        return str(error.explanation)
    return str(error) or error.__class__.__name__


class DockerClient:
    """
    Thin, long-lived wrapper over the Docker SDK.

    All methods are blocking; callers in async code run them in a worker
    thread. Containers are described by plain dicts so callers never hold
    SDK objects.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        """
        Create the Docker client.

        Args:
            base_url: Engine endpoint (defaults to Config.docker_base_url())
            timeout: Socket timeout in seconds (defaults to Config.DOCKER_API_TIMEOUT)

        Raises:
            OrchestrationError: If the client cannot be configured
        """
        self.base_url = base_url or Config.docker_base_url()
        try:
            self.client = docker.DockerClient(
                base_url=self.base_url,
                timeout=int(timeout or Config.DOCKER_API_TIMEOUT),
            )
        except DockerException as e:
            raise OrchestrationError(f"Docker daemon not available: {_explain(e)}", operation="connect", cause=e)

    @_translate_errors("ping")
    def ping(self) -> bool:
        return self.client.ping()

    @_translate_errors("list")
    def list_containers(self, labels: Optional[Dict[str, str]] = None) -> List[dict]:
        """
        List containers, stopped ones included.

        Args:
            labels: Only containers carrying all of these labels (value may be None)

        Returns:
            Container summaries
        """
        filters = {}
        if labels:
            filters["label"] = [key if value is None else f"{key}={value}" for key, value in labels.items()]
        summaries = self.client.api.containers(all=True, filters=filters or None)
        return [self._summarize(item) for item in summaries]

    def find_server_container(self, server_id: str) -> Optional[dict]:
        """
        Find the container labelled with a server ID.

        Args:
            server_id: Server ID label value

        Returns:
            Container summary or None
        """
        matches = self.list_containers({LABEL_SERVER_ID: server_id})
        return matches[0] if matches else None

    @_translate_errors("inspect")
    def inspect(self, container_id: str) -> dict:
        """
        Inspect a container.

        Args:
            container_id: Container ID or name

        Returns:
            Dict with id, name, status, labels, mounts and ip_address
        """
        attrs = self.client.api.inspect_container(container_id)
        networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
        ip_address = next((net.get("IPAddress") for net in networks.values() if net.get("IPAddress")), None)
        return {
            "id": attrs.get("Id"),
            "name": (attrs.get("Name") or "").lstrip("/"),
            "status": (attrs.get("State") or {}).get("Status"),
            "labels": (attrs.get("Config") or {}).get("Labels") or {},
            "mounts": [
                {"source": m.get("Source"), "destination": m.get("Destination")}
                for m in attrs.get("Mounts") or []
            ],
            "ip_address": ip_address,
        }

    @_translate_errors("image")
    def image_exists(self, image: str) -> bool:
        try:
            self.client.images.get(image)
            return True
        except ImageNotFound:
            return False

    @_translate_errors("pull")
    def pull(self, image: str):
        """
        Pull an image.

        Args:
            image: Image reference, optionally with a tag
        """
        logger.info("Pulling Docker image %s", image)
        self.client.images.pull(image)

    @_translate_errors("create")
    def create(self, spec: ContainerSpec) -> str:
        """
        Create (but do not start) a container from a spec.

        Args:
            spec: Container spec

        Returns:
            New container ID
        """
        api = self.client.api
        host_config = api.create_host_config(
            binds=list(spec.binds),
            port_bindings=dict(spec.port_bindings) or None,
            mem_limit=spec.memory,
            restart_policy={"Name": spec.restart_policy},
            network_mode=spec.network_mode,
        )
        ports = [_split_port(key) for key in [*spec.port_bindings, *spec.exposed_ports]]
        response = api.create_container(
            image=spec.image,
            name=spec.name,
            labels=dict(spec.labels),
            environment=list(spec.environment),
            ports=ports or None,
            host_config=host_config,
        )
        return response["Id"]

    @_translate_errors("start")
    def start(self, container_id: str):
        self.client.api.start(container_id)

    @_translate_errors("stop")
    def stop(self, container_id: str, timeout: int = 30):
        self.client.api.stop(container_id, timeout=timeout)

    @_translate_errors("restart")
    def restart(self, container_id: str, timeout: int = 30):
        self.client.api.restart(container_id, timeout=timeout)

    @_translate_errors("rename")
    def rename(self, container_id: str, name: str):
        self.client.api.rename(container_id, name)

    @_translate_errors("remove")
    def remove(self, container_id: str):
        self.client.api.remove_container(container_id, force=True)

    @_translate_errors("exec")
    def exec(self, container_id: str, argv: List[str]) -> Tuple[int, str]:
        """
        Run a command inside a container.

        Args:
            container_id: Container ID or name
            argv: Argument vector, passed to the runtime as a list

        Returns:
            (exit code, combined output)
        """
        container = self.client.containers.get(container_id)
        exit_code, output = container.exec_run(list(argv), stdout=True, stderr=True)
        return exit_code, (output or b"").decode("utf-8", errors="replace")

    def close(self):
        self.client.close()

    @staticmethod
    def _summarize(item: dict) -> dict:
        names = item.get("Names") or []
        return {
            "id": item.get("Id"),
            "name": names[0].lstrip("/") if names else None,
            "status": item.get("State"),
            "labels": item.get("Labels") or {},
            "mounts": [
                {"source": m.get("Source"), "destination": m.get("Destination")}
                for m in item.get("Mounts") or []
            ],
        }


def _split_port(key: str) -> Tuple[int, str]:
    port, _, protocol = key.partition("/")
    return int(port), protocol or "tcp"
