import logging
import shutil
import subprocess
from typing import Optional

from goprobe.core.abstract.render_tool import RenderTool
from goprobe.core.exceptions import RenderError, ToolingNotFound

logger = logging.getLogger("goprobe")

FLAME_GRAPH_SCRIPTS = ["flamegraph", "flamegraph.pl", "./flamegraph.pl", "./FlameGraph/flamegraph.pl", "flame-graph-gen"]


class GoPprofTool(RenderTool):
    """Renders profiles with `go tool pprof`, graphviz and Brendan Gregg's flamegraph.pl."""

    def __init__(self, go_binary: str = "go") -> None:
        self.go_binary = go_binary
        self._flame_graph_script: Optional[str] = None

    @property
    def flame_graph_script(self) -> str:
        if self._flame_graph_script is None:
            self._flame_graph_script = self.find_flame_graph_script()
        return self._flame_graph_script

    @staticmethod
    def find_flame_graph_script() -> str:
        for candidate in FLAME_GRAPH_SCRIPTS:
            path = shutil.which(candidate)
            if path is not None:
                return path
        raise ToolingNotFound(f"Flame graph script not found, tried: {', '.join(FLAME_GRAPH_SCRIPTS)}")

    @staticmethod
    def _run(command: list[str], stage: str, input: Optional[bytes] = None) -> bytes:
        logger.debug(f"Running {' '.join(command)}")
        try:
            result = subprocess.run(command, input=input, capture_output=True, check=True)
        except FileNotFoundError as e:
            raise RenderError(stage, f"{command[0]} is not installed") from e
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
            raise RenderError(stage, f"'{' '.join(command)}' exited with {e.returncode}: {stderr}") from e

        return result.stdout

    def check_environment(self) -> None:
        checks = [
            ([self.go_binary, "version"], "go"),
            # NOTE: `dot -v` waits for a graph on stdin, -V only prints the version
            (["dot", "-V"], "dot (graphviz)"),
        ]
        for command, name in checks:
            try:
                subprocess.run(command, capture_output=True, check=True)
            except (OSError, subprocess.CalledProcessError) as e:
                raise ToolingNotFound(f"There was an error running '{' '.join(command)}', is {name} installed? {e}") from e

        logger.info(f"Using flame graph script {self.flame_graph_script}")

    def decode_raw(self, raw_path: str) -> bytes:
        return self._run([self.go_binary, "tool", "pprof", "-raw", raw_path], "decode")

    def render_flame(self, flame_input: bytes) -> bytes:
        try:
            script = self.flame_graph_script
        except ToolingNotFound as e:
            raise RenderError("flame", str(e)) from e

        return self._run([script], "flame", input=flame_input)

    def render_callgraph(self, raw_path: str, output_path: str) -> bytes:
        self._run([self.go_binary, "tool", "pprof", "-svg", "-output", output_path, raw_path], "callgraph")
        try:
            with open(output_path, "rb") as file:
                return file.read()
        except OSError as e:
            raise RenderError("callgraph", f"Could not read {output_path}: {e}") from e
