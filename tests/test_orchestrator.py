import asyncio
import re
import threading
from unittest.mock import patch

import pytest

from goprobe.core.exceptions import ClusterNotFound, StorageError, TransportError, ValidationError
from goprobe.core.integrations.transport import ClusterProxyTransport, DirectHTTPTransport
from goprobe.core.models.objects import CaptureRequest, RenderKind, SampleKind, build_request_key
from goprobe.core.orchestrator import ProfileOrchestrator


def pod_request(**kwargs) -> CaptureRequest:
    values = dict(mode="pod", cluster_name="prod", namespace="default", pod_name="api-0", port=6060, seconds=30)
    values.update(kwargs)
    return CaptureRequest(**values)


def test_request_key_pod():
    assert build_request_key(pod_request(), now_ms=1700000000000) == "prod/default/api-0_1700000000000"


@pytest.mark.parametrize(
    "request_values,expected",
    [
        ({"address": "10.0.0.5:9000"}, "10.0.0.5:9000/custom/10.0.0.5:9000_1700000000000"),
        ({"address": "http://10.0.0.5:9000/"}, "10.0.0.5:9000/custom/10.0.0.5:9000_1700000000000"),
        ({"address": "10.0.0.5:9000", "cluster_name": "prod"}, "prod/custom/10.0.0.5:9000_1700000000000"),
    ],
)
def test_request_key_address(request_values: dict, expected: str):
    request = CaptureRequest(mode="ip", **request_values)

    assert build_request_key(request, now_ms=1700000000000) == expected


@pytest.mark.parametrize(
    "request_values",
    [
        {"pod_name": ""},
        {"cluster_name": ""},
        {"port": 0},
    ],
)
@pytest.mark.asyncio
async def test_pod_validation_makes_no_network_calls(orchestrator, cluster_manager, registry, request_values: dict):
    with patch.object(ClusterProxyTransport, "fetch") as fetch:
        with pytest.raises(ValidationError):
            await orchestrator.generate_capture(pod_request(**request_values))

    fetch.assert_not_called()
    cluster_manager.proxy_get.assert_not_called()
    registry.get.assert_not_called()


@pytest.mark.asyncio
async def test_address_validation_makes_no_network_calls(orchestrator, session):
    with pytest.raises(ValidationError):
        await orchestrator.generate_capture(CaptureRequest(mode="ip", address=""))

    session.get.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_cluster(orchestrator, cluster_manager, store):
    with pytest.raises(ClusterNotFound) as exc_info:
        await orchestrator.generate_capture(pod_request(cluster_name="missing"))

    assert str(exc_info.value) == "target cluster may not exist, please retry"
    cluster_manager.proxy_get.assert_not_called()
    assert store.list("missing") == []


@pytest.mark.asyncio
async def test_pod_capture(orchestrator, cluster_manager, store):
    artifacts = await orchestrator.generate_capture(pod_request())

    assert len(artifacts) == 2 * 4
    assert sorted((artifact.type, artifact.render_kind) for artifact in artifacts) == sorted(
        (kind, render_kind)
        for kind in [SampleKind.Block, SampleKind.Goroutine, SampleKind.Heap, SampleKind.Profile]
        for render_kind in RenderKind
    )

    calls = {call.args[2]: call.args for call in cluster_manager.proxy_get.call_args_list}
    assert calls == {
        "debug/pprof/block": ("default", "api-0:6060", "debug/pprof/block", {}),
        "debug/pprof/goroutine": ("default", "api-0:6060", "debug/pprof/goroutine", {}),
        "debug/pprof/heap": ("default", "api-0:6060", "debug/pprof/heap", {}),
        "debug/pprof/profile": ("default", "api-0:6060", "debug/pprof/profile", {"seconds": "30"}),
    }

    [request_key] = {re.search(r"url=([^&]+)", artifact.url).group(1) for artifact in artifacts}
    request_key = request_key.replace("%2F", "/")
    assert re.fullmatch(r"prod/default/api-0_\d{13}", request_key)
    assert store.list(request_key) == sorted(
        f"{kind}{suffix}"
        for kind in ["block", "goroutine", "heap", "profile"]
        for suffix in [".bin", "_flame.svg", "_profile.svg"]
    )


@pytest.mark.asyncio
async def test_address_capture(orchestrator, session):
    artifacts = await orchestrator.generate_capture(CaptureRequest(mode="ip", address="10.0.0.5:9000", seconds=30))

    assert session.get.call_count == 4
    calls = {call.args[0]: call.kwargs for call in session.get.call_args_list}
    assert calls == {
        "http://10.0.0.5:9000/debug/pprof/block": {"params": {}, "timeout": 5},
        "http://10.0.0.5:9000/debug/pprof/goroutine": {"params": {}, "timeout": 5},
        "http://10.0.0.5:9000/debug/pprof/heap": {"params": {}, "timeout": 5},
        "http://10.0.0.5:9000/debug/pprof/profile": {"params": {"seconds": "30"}, "timeout": 35},
    }

    assert len(artifacts) == 8
    for artifact in artifacts:
        assert re.search(r"url=10.0.0.5%3A9000%2Fcustom%2F10.0.0.5%3A9000_\d{13}&", artifact.url)


@pytest.mark.asyncio
async def test_failing_kind_does_not_stop_siblings(orchestrator, session, store):
    ok = session.get.return_value

    def get(url, params, timeout):
        if url.endswith("/heap"):
            return type(ok)(status_code=500, content=b"")
        return ok

    session.get.side_effect = get

    with pytest.raises(TransportError) as exc_info:
        await orchestrator.generate_capture(CaptureRequest(mode="ip", address="10.0.0.5:9000"))

    assert exc_info.value.kind == "heap"
    assert session.get.call_count == 4

    [request_key] = store.list("10.0.0.5:9000/custom")
    stored = store.list(f"10.0.0.5:9000/custom/{request_key}")
    assert "heap.bin" not in stored
    assert {"block.bin", "goroutine.bin", "profile.bin"} <= set(stored)


@pytest.mark.asyncio
async def test_configured_sample_kinds(config, registry, store, render_tool, session):
    config.sample_kinds = [SampleKind.FGProf]
    orchestrator = ProfileOrchestrator(config, registry, store, tool=render_tool, session=session)
    try:
        artifacts = await orchestrator.generate_capture(CaptureRequest(mode="ip", address="10.0.0.5:9000", seconds=10))
    finally:
        orchestrator.close()

    assert [artifact.type for artifact in artifacts] == [SampleKind.FGProf, SampleKind.FGProf]
    session.get.assert_called_once_with(
        "http://10.0.0.5:9000/debug/fgprof", params={"seconds": "10"}, timeout=15
    )


def test_graph_url(orchestrator):
    url = orchestrator.graph_url(SampleKind.Heap, "prod/default/api-0_1700000000000", RenderKind.Flame)

    assert url == "http://probe.local/graph?goType=heap&url=prod%2Fdefault%2Fapi-0_1700000000000&svgType=flame"


def test_find_graph(orchestrator, store):
    store.put_bytes("prod/default/api-0_1700000000000/heap_profile.svg", b"<svg/>")

    assert orchestrator.find_graph("heap", "prod/default/api-0_1700000000000", "profile") == b"<svg/>"
    assert orchestrator.find_graph("heap", "prod/default/api-0_1700000000000", "callgraph") == b"<svg/>"


@pytest.mark.parametrize("kind,svg_type", [("heap", "png"), ("threadcreate", "flame")])
def test_find_graph_invalid_parameters(orchestrator, kind: str, svg_type: str):
    with pytest.raises(ValidationError):
        orchestrator.find_graph(kind, "prod/default/api-0_1700000000000", svg_type)


def test_find_graph_missing(orchestrator):
    with pytest.raises(StorageError):
        orchestrator.find_graph("heap", "prod/default/api-0_1700000000000", "flame")


def test_list_captures(orchestrator, store):
    assert orchestrator.list_captures("prod", "ns") == []

    store.put_bytes("prod/ns/pod_1700000000000/heap.bin", b"")
    store.put_bytes("prod/ns/pod_with_underscores_1700000005000/heap.bin", b"")
    store.put_bytes("prod/ns/not-a-capture/heap.bin", b"")

    entries = orchestrator.list_captures("prod", "ns")
    assert [(entry.url, entry.pod_name, entry.ctime) for entry in entries] == [
        ("prod/ns/pod_1700000000000", "pod", 1700000000),
        ("prod/ns/pod_with_underscores_1700000005000", "pod_with_underscores", 1700000005),
    ]


@pytest.mark.asyncio
async def test_concurrent_captures_do_not_queue(orchestrator, session):
    # Every fetch of both captures has to be in flight at once for the barrier to open
    barrier = threading.Barrier(8, timeout=5)
    ok = session.get.return_value

    def get(url, params, timeout):
        barrier.wait()
        return ok

    session.get.side_effect = get

    first, second = await asyncio.gather(
        orchestrator.generate_capture(CaptureRequest(mode="ip", address="10.0.0.5:9000")),
        orchestrator.generate_capture(CaptureRequest(mode="ip", address="10.0.0.6:9000")),
    )

    assert len(first) == len(second) == 8
    assert session.get.call_count == 8
