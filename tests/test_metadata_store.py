import json

import pytest

from bedrock_manager.core.metadata_store import MetadataStore
from bedrock_manager.core.server import ServerMetadata
from bedrock_manager.errors import NotFoundError, ValidationError


@pytest.fixture
def store(data_root):
    return MetadataStore(data_root, "bedrock-")


def test_write_then_read_keeps_extension_fields(store, data_root):
    metadata = ServerMetadata(server_id="bedrock-0001", name="Survival", addons=["behavior-pack"])

    store.write(metadata, create_dir=True)
    loaded = store.read("bedrock-0001")

    assert loaded.name == "Survival"
    assert loaded.extra_fields == {"addons": ["behavior-pack"]}
    on_disk = json.loads((data_root / "bedrock-0001" / "metadata.json").read_text())
    assert on_disk["addons"] == ["behavior-pack"]


def test_write_leaves_no_temp_files(store, data_root):
    store.write(ServerMetadata(server_id="bedrock-0001"), create_dir=True)

    assert sorted(p.name for p in (data_root / "bedrock-0001").iterdir()) == ["metadata.json"]


def test_write_requires_directory_unless_asked(store):
    with pytest.raises(NotFoundError):
        store.write(ServerMetadata(server_id="bedrock-0001"))


def test_record_without_id_takes_directory_name(store, data_root):
    server_dir = data_root / "bedrock-legacy"
    server_dir.mkdir()
    (server_dir / "metadata.json").write_text(json.dumps({"name": "Old World", "memory": 1073741824}))

    metadata = store.read("bedrock-legacy")

    assert metadata.server_id == "bedrock-legacy"
    assert metadata.memory == 1073741824


def test_missing_record(store, data_root):
    (data_root / "bedrock-empty").mkdir()

    with pytest.raises(NotFoundError):
        store.read("bedrock-empty")
    assert store.find("bedrock-empty") is None
    assert store.exists("bedrock-empty") is False


def test_corrupt_record_is_validation_error(store, data_root):
    server_dir = data_root / "bedrock-broken"
    server_dir.mkdir()
    (server_dir / "metadata.json").write_text("{not json")

    with pytest.raises(ValidationError) as exc_info:
        store.read("bedrock-broken")
    assert exc_info.value.server_id == "bedrock-broken"


@pytest.mark.parametrize("record", [
    ["not", "an", "object"],
    {"server_id": "bedrock-other"},
    {"memory": 1024},
    {"name": "<script>"},
    {"network": "bad network!"},
])
def test_invalid_records_are_rejected(store, data_root, record):
    server_dir = data_root / "bedrock-0001"
    server_dir.mkdir()
    (server_dir / "metadata.json").write_text(json.dumps(record))

    with pytest.raises(ValidationError):
        store.read("bedrock-0001")


def test_list_server_dirs_filters_by_prefix(store, data_root):
    (data_root / "bedrock-b").mkdir()
    (data_root / "bedrock-a").mkdir()
    (data_root / "java-server").mkdir()
    (data_root / "bedrock-notes.txt").write_text("x")

    assert store.list_server_dirs() == ["bedrock-a", "bedrock-b"]


def test_list_server_dirs_without_root(tmp_path):
    assert MetadataStore(tmp_path / "missing").list_server_dirs() == []


def test_unsafe_ids_are_rejected(store):
    for server_id in ("../etc", "Bedrock-UPPER", "", "-leading"):
        with pytest.raises(ValidationError):
            store.server_dir(server_id)


def test_delete_removes_directory(store, data_root):
    store.write(ServerMetadata(server_id="bedrock-0001"), create_dir=True)
    (data_root / "bedrock-0001" / "worlds").mkdir()

    store.delete("bedrock-0001")

    assert not (data_root / "bedrock-0001").exists()
