from __future__ import annotations

import abc


class RenderTool(abc.ABC):
    """
    The external tooling the renderer shells out to.
    Every method raises `RenderError` when the tool fails.
    """

    @abc.abstractmethod
    def check_environment(self) -> None:
        """Raise `ToolingNotFound` if the tooling is not installed."""

        pass

    @abc.abstractmethod
    def decode_raw(self, raw_path: str) -> bytes:
        """Turn a binary profile into the textual `pprof -raw` listing."""

        pass

    @abc.abstractmethod
    def render_flame(self, flame_input: bytes) -> bytes:
        """Turn folded stacks into a flame graph SVG."""

        pass

    @abc.abstractmethod
    def render_callgraph(self, raw_path: str, output_path: str) -> bytes:
        """Turn a binary profile into a call graph SVG."""

        pass
