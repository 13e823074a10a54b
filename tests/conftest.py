from unittest.mock import MagicMock

import pytest

from goprobe.core.abstract.render_tool import RenderTool
from goprobe.core.exceptions import ClusterNotFound
from goprobe.core.integrations.kubernetes import ClusterRegistry
from goprobe.core.models.config import Config
from goprobe.core.orchestrator import ProfileOrchestrator
from goprobe.core.storage.filesystem import FilesystemArtifactStore

RAW_CPU_PROFILE = b"""PeriodType: cpu nanoseconds
Period: 10000000
Time: 2024-01-01 00:00:00 +0000 UTC
Duration: 30s
Samples:
samples/count cpu/nanoseconds
          2   20000000: 1 2 3 
          1   10000000: 4 3 
                bytes:[64]
          0          0: 1 3 
Locations
     1: 0x4a5b3c M=1 main.leaf /src/main.go:12 s=0
     2: 0x4a5c00 M=1 main.helper /src/main.go:30 s=0
             main.inlined /src/main.go:35 s=0
     3: 0x4a5d00 M=1 main.main /src/main.go:50 s=0
     4: 0x4a5e00 M=1 runtime.mallocgc /usr/lib/go/src/runtime/malloc.go:900 s=0
Mappings
     1: 0x400000/0x6d4000/0x0 /app/server  
"""

EMPTY_PROFILE = b"""PeriodType: contentions count
Period: 1
Samples:
contentions/count delay/nanoseconds
Locations
Mappings
"""


class FakeRenderTool(RenderTool):
    """Stands in for go tool pprof and flamegraph.pl."""

    def __init__(self, decoded: bytes = RAW_CPU_PROFILE) -> None:
        self.decoded = decoded
        self.flame_inputs: list[bytes] = []
        self.decoded_paths: list[str] = []

    def check_environment(self) -> None:
        pass

    def decode_raw(self, raw_path: str) -> bytes:
        self.decoded_paths.append(raw_path)
        return self.decoded

    def render_flame(self, flame_input: bytes) -> bytes:
        self.flame_inputs.append(flame_input)
        return b"<svg>flame</svg>"

    def render_callgraph(self, raw_path: str, output_path: str) -> bytes:
        return b"<svg>callgraph</svg>"


@pytest.fixture
def render_tool():
    return FakeRenderTool()


@pytest.fixture
def config(tmp_path):
    return Config(storage_path=str(tmp_path / "storage"), root_url="http://probe.local/", token="secret")


@pytest.fixture
def store(config):
    return FilesystemArtifactStore(config.storage_path)


@pytest.fixture
def cluster_manager():
    manager = MagicMock()
    manager.name = "prod"
    manager.proxy_get.return_value = b"raw-profile"
    return manager


@pytest.fixture
def registry(cluster_manager):
    registry = MagicMock(spec=ClusterRegistry)

    def get(name):
        if name != "prod":
            raise ClusterNotFound(f"Cluster {name} not found")
        return cluster_manager

    registry.get.side_effect = get
    registry.names.return_value = ["prod"]
    return registry


@pytest.fixture
def session():
    session = MagicMock()
    session.get.return_value = MagicMock(status_code=200, content=b"raw-profile")
    return session


@pytest.fixture
def orchestrator(config, registry, store, render_tool, session):
    orchestrator = ProfileOrchestrator(config, registry, store, tool=render_tool, session=session)
    yield orchestrator
    orchestrator.close()
