import logging
from typing import Any, Optional

import pydantic as pd
from fastapi import FastAPI, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from goprobe.core.exceptions import ProbeException
from goprobe.core.models.config import Config
from goprobe.core.models.objects import CaptureRequest
from goprobe.core.orchestrator import ProfileOrchestrator

logger = logging.getLogger("goprobe")


class Res(pd.BaseModel):
    """
    The envelope of every JSON response: code 0 means success,
    anything else is a business error described by msg.
    """

    code: int
    msg: str
    data: Any = None


def json_ok(data: Any) -> Res:
    return Res(code=0, msg="success", data=data)


def json_error(code: int, msg: str, request: Optional[Request] = None) -> Res:
    logger.warning(f"biz warning: {msg} ({request.url.path if request is not None else '-'})")
    return Res(code=code, msg=msg, data=None)


def create_app(config: Config, orchestrator: ProfileOrchestrator) -> FastAPI:
    app = FastAPI(
        title="goprobe",
        description="Captures pprof profiles from pods and addresses and renders them as flame and call graphs",
    )
    app.state.config = config
    app.state.orchestrator = orchestrator

    @app.get("/api/pprof/run", response_model=Res)
    async def run_profile(
        request: Request,
        mode: str = Query(...),
        cluster_name: str = Query("", alias="clusterName"),
        pod_name: str = Query("", alias="podName"),
        port: int = Query(0),
        namespace: str = Query(""),
        addr: str = Query(""),
        seconds: int = Query(0),
        token: str = Query(""),
    ):
        """Capture every sample kind of a pod or an address and return the graph urls."""

        if not config.check_token(token):
            return json_error(1, "invalid token", request)

        try:
            capture_request = CaptureRequest(
                mode=mode,
                cluster_name=cluster_name,
                pod_name=pod_name,
                port=port,
                namespace=namespace,
                address=addr,
                seconds=seconds,
                token=token,
            )
        except pd.ValidationError as e:
            return json_error(1, f"invalid parameters: {e}", request)

        try:
            artifacts = await orchestrator.generate_capture(capture_request)
        except ProbeException as e:
            return json_error(1, f"generate pprof: {e}", request)

        return json_ok([{"type": artifact.type.value, "url": artifact.url} for artifact in artifacts])

    @app.get("/graph")
    async def graph(
        request: Request,
        go_type: str = Query(..., alias="goType"),
        url: str = Query(...),
        svg_type: str = Query(..., alias="svgType"),
    ):
        try:
            data = orchestrator.find_graph(go_type, url, svg_type)
        except ProbeException as e:
            return json_error(1, f"find graph data: {e}", request)

        return Response(content=data, media_type="image/svg+xml")

    @app.get("/pprof-list", response_model=Res)
    async def pprof_list(
        request: Request,
        cluster_name: str = Query("", alias="clusterName"),
        namespace: str = Query(""),
    ):
        try:
            entries = orchestrator.list_captures(cluster_name, namespace)
        except ProbeException as e:
            return json_error(1, f"get pprof list: {e}", request)

        return json_ok([{"url": entry.url, "podName": entry.pod_name, "ctime": entry.ctime} for entry in entries])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "clusters": orchestrator.registry.names()}

    @app.get("/metrics")
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
