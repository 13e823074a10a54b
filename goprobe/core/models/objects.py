from __future__ import annotations

import enum
import time
from typing import Literal, Optional

import pydantic as pd

ModeLiteral = Literal["pod", "ip"]

# NOTE: Captures by address are stored under this namespace segment
CUSTOM_NAMESPACE = "custom"


class SampleKind(str, enum.Enum):
    """The runtime sample kinds exposed by net/http/pprof (and fgprof)."""

    Block = "block"
    Goroutine = "goroutine"
    Heap = "heap"
    Profile = "profile"
    FGProf = "fgprof"

    @property
    def debug_path(self) -> str:
        # fgprof registers itself next to pprof, not under it
        if self == SampleKind.FGProf:
            return f"debug/{self.value}"
        return f"debug/pprof/{self.value}"

    @property
    def takes_duration(self) -> bool:
        return self in (SampleKind.Profile, SampleKind.FGProf)


DEFAULT_SAMPLE_KINDS = [SampleKind.Block, SampleKind.Goroutine, SampleKind.Heap, SampleKind.Profile]


class RenderKind(str, enum.Enum):
    # NOTE: The value is what ends up in storage keys and graph URLs
    Flame = "flame"
    CallGraph = "profile"

    @classmethod
    def parse(cls, value: str) -> RenderKind:
        for member in cls:
            if value in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown svg type: {value}")


class ClusterDescriptor(pd.BaseModel):
    model_config = pd.ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    api_server: str = pd.Field("", alias="apiServer")
    kube_config: str = pd.Field("", alias="kubeConfig")
    proxy: Optional[str] = None

    def __str__(self) -> str:
        return self.name


class CaptureRequest(pd.BaseModel):
    model_config = pd.ConfigDict(populate_by_name=True)

    mode: ModeLiteral
    cluster_name: str = pd.Field("", alias="clusterName")
    namespace: str = ""
    pod_name: str = pd.Field("", alias="podName")
    port: int = 0
    address: str = pd.Field("", alias="addr")
    seconds: int = 0
    token: Optional[str] = None

    @pd.field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if isinstance(v, str) and v.lower() in ("address", "addr"):
            return "ip"
        return v.lower() if isinstance(v, str) else v

    @property
    def target_address(self) -> str:
        """The address without any URL scheme, as it appears in request keys."""
        address = self.address
        for scheme in ("http://", "https://"):
            address = address.removeprefix(scheme)
        return address.rstrip("/")

    def __str__(self) -> str:
        if self.mode == "pod":
            return f"pod {self.cluster_name}/{self.namespace}/{self.pod_name}:{self.port}"
        return f"address {self.address}"


def build_request_key(request: CaptureRequest, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000

    if request.mode == "pod":
        return f"{request.cluster_name}/{request.namespace}/{request.pod_name}_{now_ms}"

    address = request.target_address
    return f"{request.cluster_name or address}/{CUSTOM_NAMESPACE}/{address}_{now_ms}"


class ArtifactDescriptor(pd.BaseModel):
    type: SampleKind
    render_kind: RenderKind
    url: str


class StoredArtifactEntry(pd.BaseModel):
    url: str
    pod_name: str
    ctime: int

    @classmethod
    def from_child_name(cls, prefix: str, name: str) -> StoredArtifactEntry:
        """Parse `<subject>_<millis>`, splitting on the last underscore."""

        subject, sep, millis = name.rpartition("_")
        if not sep or not subject or not millis.isdigit():
            raise ValueError(f"'{name}' is not of the form <name>_<timestampMillis>")

        return cls(url=f"{prefix}/{name}", pod_name=subject, ctime=int(millis) // 1000)
