from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from bedrock_manager.core.broadcast import BroadcastHub
from bedrock_manager.core.cache import INSPECT, Cache
from bedrock_manager.core.lifecycle import LifecycleManager
from bedrock_manager.core.server import LABEL_SERVER_ID, ContainerSpec
from bedrock_manager.core.spec_builder import ContainerSpecBuilder
from bedrock_manager.errors import NotFoundError, OrchestrationError

IMAGE = "itzg/minecraft-bedrock-server"
APP_DATA_PATH = "/app/minecraft-data"


class FakeDocker:
    """In-memory stand-in for DockerClient with the same method surface."""

    def __init__(self, images=(IMAGE,)):
        self.containers: Dict[str, dict] = {}
        self.images = set(images)
        self.pulled: List[str] = []
        self.created: List[ContainerSpec] = []
        self.exec_calls: List[tuple] = []
        self.exec_result = (0, "")
        self.fail_create: set = set()
        self.fail_start = False
        self._lock = threading.Lock()
        self._counter = 0

    def add_container(self, name: str, status: str = "running", labels: Optional[dict] = None,
                      mounts: Optional[list] = None) -> str:
        with self._lock:
            self._counter += 1
            container_id = f"{self._counter:064x}"
            self.containers[container_id] = {
                "id": container_id,
                "name": name,
                "status": status,
                "labels": dict(labels or {}),
                "mounts": list(mounts or []),
            }
        return container_id

    def ping(self):
        return True

    def list_containers(self, labels=None):
        with self._lock:
            items = [dict(c) for c in self.containers.values()]
        if labels:
            items = [
                c for c in items
                if all(c["labels"].get(k) == v if v is not None else k in c["labels"] for k, v in labels.items())
            ]
        return items

    def find_server_container(self, server_id):
        matches = self.list_containers({LABEL_SERVER_ID: server_id})
        return matches[0] if matches else None

    def inspect(self, container_id):
        container = self._get(container_id)
        return {**container, "ip_address": None}

    def image_exists(self, image):
        return image in self.images

    def pull(self, image):
        self.pulled.append(image)
        self.images.add(image)

    def create(self, spec: ContainerSpec):
        if spec.name in self.fail_create:
            raise OrchestrationError("create rejected")
        with self._lock:
            if any(c["name"] == spec.name for c in self.containers.values()):
                raise OrchestrationError("Conflict. The container name is already in use")
        self.created.append(spec)
        mounts = []
        for bind in spec.binds:
            source, destination = bind.rsplit(":", 1)
            mounts.append({"source": source, "destination": destination})
        return self.add_container(spec.name, status="created", labels=spec.labels, mounts=mounts)

    def start(self, container_id):
        if self.fail_start:
            raise OrchestrationError("start rejected")
        self._get(container_id)["status"] = "running"

    def stop(self, container_id, timeout=30):
        self._get(container_id)["status"] = "exited"

    def restart(self, container_id, timeout=30):
        self._get(container_id)["status"] = "running"

    def rename(self, container_id, name):
        self._get(container_id)["name"] = name

    def remove(self, container_id):
        with self._lock:
            if container_id not in self.containers:
                raise NotFoundError("No such container")
            del self.containers[container_id]

    def exec(self, container_id, argv):
        self._get(container_id)
        self.exec_calls.append((container_id, argv))
        return self.exec_result

    def close(self):
        pass

    def _get(self, container_id):
        with self._lock:
            try:
                return self.containers[container_id]
            except KeyError:
                raise NotFoundError("No such container")


def write_metadata(data_root: Path, server_id: str, **fields) -> Path:
    server_dir = data_root / server_id
    server_dir.mkdir(parents=True, exist_ok=True)
    record = {"name": "Survival", "version": "LATEST", "memory": 2147483648}
    record.update(fields)
    path = server_dir / "metadata.json"
    path.write_text(json.dumps(record))
    return path


@pytest.fixture
def data_root(tmp_path) -> Path:
    root = tmp_path / "servers"
    root.mkdir()
    return root


@pytest.fixture
def docker():
    return FakeDocker()


@pytest.fixture
def builder():
    return ContainerSpecBuilder(image=IMAGE, default_network="", enable_ssh=False)


@pytest.fixture
def manager(data_root, docker, builder):
    return LifecycleManager(
        data_root=data_root,
        docker_client=docker,
        builder=builder,
        cache=Cache({INSPECT: 30}),
        hub=BroadcastHub(coalesce_window=0),
        host_data_root="",
        app_data_path=APP_DATA_PATH,
        api_timeout=5,
        pull_timeout=5,
        default_memory=2147483648,
    )
