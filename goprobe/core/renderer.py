import logging
import os
import tempfile

from goprobe.core.abstract.render_tool import RenderTool
from goprobe.core.abstract.storage import ArtifactStore
from goprobe.core.exceptions import RenderError
from goprobe.core.integrations.pprof.flame import to_flame_input
from goprobe.core.integrations.pprof.raw import parse_raw, select_sample
from goprobe.core.models.objects import RenderKind, SampleKind

logger = logging.getLogger("goprobe")


def raw_key(request_key: str, kind: SampleKind) -> str:
    return f"{request_key}/{kind.value}.bin"


def graph_key(request_key: str, kind: SampleKind, render_kind: RenderKind) -> str:
    return f"{request_key}/{kind.value}_{render_kind.value}.svg"


class Renderer:
    """
    Turns a raw pprof dump into a flame graph and a call graph,
    and stores all three under the request key.
    """

    def __init__(self, store: ArtifactStore, tool: RenderTool, sample_index: str = "") -> None:
        self.store = store
        self.tool = tool
        self.sample_index = sample_index

    def flame_input(self, raw_path: str) -> bytes:
        decoded = self.tool.decode_raw(raw_path)
        try:
            profile = parse_raw(decoded)
            sample_index = select_sample(self.sample_index, profile.sample_names)
            return to_flame_input(profile, sample_index)
        except ValueError as e:
            raise RenderError("parse", f"Could not convert stacks to flame graph input: {e}") from e

    def render(self, raw: bytes, request_key: str, kind: SampleKind) -> None:
        try:
            scratch = tempfile.TemporaryDirectory(prefix="goprobe-")
        except OSError as e:
            raise RenderError("scratch", f"Could not create a scratch directory: {e}") from e

        with scratch as scratch_dir:
            raw_path = os.path.join(scratch_dir, f"{kind.value}.bin")
            try:
                with open(raw_path, "wb") as file:
                    file.write(raw)
            except OSError as e:
                raise RenderError("scratch", f"Could not write {raw_path}: {e}") from e
            self.store.put_bytes(raw_key(request_key, kind), raw)

            flame_input = self.flame_input(raw_path)
            if flame_input:
                flame_svg = self.tool.render_flame(flame_input)
            else:
                logger.warning(f"No stacks in {kind.value} profile of {request_key}, storing an empty flame graph")
                flame_svg = b""
            self.store.put_bytes(graph_key(request_key, kind, RenderKind.Flame), flame_svg)

            callgraph_svg = self.tool.render_callgraph(raw_path, os.path.join(scratch_dir, f"{kind.value}_profile.svg"))
            self.store.put_bytes(graph_key(request_key, kind, RenderKind.CallGraph), callgraph_svg)

        logger.debug(f"Rendered {kind.value} profile of {request_key}")
