import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional
from urllib.parse import urlencode

import requests

from goprobe.core.abstract.render_tool import RenderTool
from goprobe.core.abstract.storage import ArtifactStore
from goprobe.core.exceptions import ClusterNotFound, ProbeException, ValidationError
from goprobe.core.integrations.kubernetes import ClusterRegistry
from goprobe.core.integrations.pprof.tool import GoPprofTool
from goprobe.core.integrations.transport import ClusterProxyTransport, DirectHTTPTransport, ProfileTransport
from goprobe.core.models.config import Config
from goprobe.core.models.objects import (
    ArtifactDescriptor,
    CaptureRequest,
    RenderKind,
    SampleKind,
    StoredArtifactEntry,
    build_request_key,
)
from goprobe.core.renderer import Renderer, graph_key
from goprobe.metrics import capture_duration, captures, sample_fetch_failures
from goprobe.utils.error_group import ErrorGroup

logger = logging.getLogger("goprobe")


class ProfileOrchestrator:
    """
    Runs captures: one concurrent fetch-and-render per sample kind,
    results stored through the artifact store.
    """

    def __init__(
        self,
        config: Config,
        registry: ClusterRegistry,
        store: ArtifactStore,
        *,
        tool: Optional[RenderTool] = None,
        renderer: Optional[Renderer] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.store = store
        self.renderer = renderer or Renderer(store, tool or GoPprofTool(), sample_index=config.sample_index)
        self.session = session or requests.Session()

    @staticmethod
    def validate(request: CaptureRequest) -> None:
        if request.mode == "pod":
            if request.pod_name == "" or request.cluster_name == "":
                raise ValidationError("pod_name or cluster_name cannot be empty")
            if request.port == 0:
                raise ValidationError("Governance port is not set, please set the governance port")
        elif request.mode == "ip":
            if request.address == "":
                raise ValidationError("addr cannot be empty")
        else:
            raise ValidationError(f"Capture mode ({request.mode}) isn't supported currently")

    def build_transport(self, request: CaptureRequest) -> ProfileTransport:
        if request.mode == "ip":
            return DirectHTTPTransport(request.address, session=self.session)

        try:
            manager = self.registry.get(request.cluster_name)
        except ClusterNotFound as e:
            logger.error(f"Could not get cluster manager while capturing {request}: {e}")
            raise ClusterNotFound("target cluster may not exist, please retry") from None

        return ClusterProxyTransport(manager, request.namespace, request.pod_name, request.port)

    @staticmethod
    def sample_params(kind: SampleKind, request: CaptureRequest) -> dict[str, str]:
        if kind.takes_duration:
            return {"seconds": str(request.seconds)}
        return {}

    def graph_url(self, kind: SampleKind, request_key: str, render_kind: RenderKind) -> str:
        query = urlencode({"goType": kind.value, "url": request_key, "svgType": render_kind.value})
        return f"{self.config.root_url}/graph?{query}"

    def _capture_kind(
        self, transport: ProfileTransport, kind: SampleKind, params: dict[str, str], request_key: str
    ) -> list[ArtifactDescriptor]:
        raw = transport.fetch(kind, params)
        self.renderer.render(raw, request_key, kind)

        return [
            ArtifactDescriptor(type=kind, render_kind=render_kind, url=self.graph_url(kind, request_key, render_kind))
            for render_kind in (RenderKind.Flame, RenderKind.CallGraph)
        ]

    async def generate_capture(self, request: CaptureRequest) -> list[ArtifactDescriptor]:
        """
        Capture every configured sample kind of the target.

        All kinds run to completion even if one of them fails, in that case the
        first failure is raised and the artifacts of the successful kinds stay stored.
        """

        start_time = time.time()
        try:
            artifacts = await self._generate_capture(request)
        except ProbeException as e:
            captures.labels(mode=request.mode, outcome=e.__class__.__name__).inc()
            raise
        else:
            captures.labels(mode=request.mode, outcome="success").inc()
            return artifacts
        finally:
            capture_duration.labels(mode=request.mode).observe(time.time() - start_time)

    async def _generate_capture(self, request: CaptureRequest) -> list[ArtifactDescriptor]:
        self.validate(request)
        request_key = build_request_key(request)
        transport = self.build_transport(request)

        logger.info(f"Capturing {request} as {request_key}")

        loop = asyncio.get_running_loop()
        artifacts: list[ArtifactDescriptor] = []
        artifacts_lock = asyncio.Lock()

        async def capture(kind: SampleKind, executor: ThreadPoolExecutor) -> None:
            params = self.sample_params(kind, request)
            try:
                result = await loop.run_in_executor(
                    executor, self._capture_kind, transport, kind, params, request_key
                )
            except Exception as e:
                sample_fetch_failures.labels(kind=kind.value).inc()
                logger.error(f"Could not capture {kind.value} profile for {request_key}: {e}")
                raise

            async with artifacts_lock:
                artifacts.extend(result)

        # NOTE: One worker per sample kind, captures never queue behind each other
        with ThreadPoolExecutor(max_workers=len(self.config.sample_kinds)) as executor:
            group = ErrorGroup()
            for kind in self.config.sample_kinds:
                group.go(capture(kind, executor))

            error = await group.wait()

        if error is not None:
            raise error

        logger.info(f"Captured {len(artifacts)} artifacts for {request_key}")
        return artifacts

    def find_graph(self, kind: str, request_key: str, svg_type: str) -> bytes:
        try:
            render_kind = RenderKind.parse(svg_type)
            sample_kind = SampleKind(kind)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        return self.store.get_bytes(graph_key(request_key, sample_kind, render_kind))

    def list_captures(self, cluster_name: str, namespace: str) -> list[StoredArtifactEntry]:
        prefix = f"{cluster_name}/{namespace}"

        entries = []
        for name in self.store.list(prefix):
            try:
                entries.append(StoredArtifactEntry.from_child_name(prefix, name))
            except ValueError as e:
                logger.warning(f"Skipping unexpected entry under {prefix}: {e}")
        return entries

    def close(self) -> None:
        self.session.close()
