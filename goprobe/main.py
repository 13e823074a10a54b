from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import requests
import typer
import urllib3
from pydantic import ValidationError

from goprobe.common.ssl_utils import write_ca_bundle
from goprobe.core.exceptions import ProbeException, ToolingNotFound
from goprobe.core.integrations.kubernetes import ClusterRegistry
from goprobe.core.integrations.pprof.tool import GoPprofTool
from goprobe.core.models.config import Config
from goprobe.core.models.objects import CaptureRequest
from goprobe.core.orchestrator import ProfileOrchestrator
from goprobe.core.storage.filesystem import FilesystemArtifactStore
from goprobe.utils.version import get_version

app = typer.Typer(
    pretty_exceptions_show_locals=False,
    pretty_exceptions_short=True,
    no_args_is_help=True,
    help="Capture pprof profiles from Kubernetes pods or addresses and render them as graphs.",
)

# NOTE: Disable insecure request warnings, as it might be expected to use self-signed certificates on governance ports
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger("goprobe")

CONFIG_OPTION = typer.Option(
    None, "--config", "-c", help="Path to the YAML config file.", rich_help_panel="Settings"
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable verbose mode", rich_help_panel="Logging Settings")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Enable quiet mode", rich_help_panel="Logging Settings")
LOG_TO_STDERR_OPTION = typer.Option(
    False, "--logtostderr", help="Pass logs to stderr", rich_help_panel="Logging Settings"
)


def load_config(config_file: Optional[str], **overrides) -> Config:
    try:
        config = Config.from_file(config_file, **overrides)
    except (ValidationError, ValueError, OSError):
        logger.exception("Error occured while loading the configuration")
        raise typer.Exit(code=1)

    Config.set_config(config)
    return config


def build_orchestrator(config: Config, *, check_environment: bool = True) -> ProfileOrchestrator:
    """Check the tooling, connect to the clusters and wire the capture service."""

    tool = GoPprofTool()
    if check_environment:
        try:
            tool.check_environment()
        except ToolingNotFound as e:
            logger.critical(f"Init pprof check env failed: {e}")
            raise typer.Exit(code=1)

    try:
        ca_bundle = write_ca_bundle(config.certificate)
    except (ValueError, OSError) as e:
        logger.critical(f"Could not install the custom certificate: {e}")
        raise typer.Exit(code=1)

    store = FilesystemArtifactStore(config.storage_path)
    registry = ClusterRegistry()
    registry.load(config.clusters, ca_bundle=ca_bundle)

    session = requests.Session()
    if ca_bundle is not None:
        session.verify = ca_bundle

    return ProfileOrchestrator(config, registry, store, tool=tool, session=session)


@app.command(rich_help_panel="Utils")
def version() -> None:
    typer.echo(get_version())


@app.command(rich_help_panel="Server")
def serve(
    config_file: Optional[str] = CONFIG_OPTION,
    host: Optional[str] = typer.Option(None, "--host", help="Address to listen on.", rich_help_panel="Server Settings"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on.", rich_help_panel="Server Settings"),
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
    log_to_stderr: bool = LOG_TO_STDERR_OPTION,
) -> None:
    """Serve the capture API over HTTP."""

    import uvicorn

    from goprobe.server import create_app

    config = load_config(
        config_file, host=host, port=port, verbose=verbose or None, quiet=quiet or None, log_to_stderr=log_to_stderr or None
    )
    if not config.has_token:
        logger.critical("No token is configured, set `token` in the config file or GOPROBE_TOKEN to serve the API")
        raise typer.Exit(code=1)

    orchestrator = build_orchestrator(config)

    logger.info(f"Starting goprobe {get_version()} on {config.host}:{config.port}...")
    try:
        uvicorn.run(create_app(config, orchestrator), host=config.host, port=config.port, log_level="warning")
    finally:
        orchestrator.close()


@app.command(rich_help_panel="Captures")
def capture(
    mode: str = typer.Option("pod", "--mode", "-m", help="pod or ip", rich_help_panel="Target"),
    cluster_name: str = typer.Option("", "--cluster", help="Cluster of the pod.", rich_help_panel="Target"),
    namespace: str = typer.Option("", "--namespace", "-n", help="Namespace of the pod.", rich_help_panel="Target"),
    pod_name: str = typer.Option("", "--pod", help="Name of the pod.", rich_help_panel="Target"),
    port: int = typer.Option(0, "--port", help="Governance port of the pod.", rich_help_panel="Target"),
    address: str = typer.Option("", "--addr", help="host:port to capture from in ip mode.", rich_help_panel="Target"),
    seconds: int = typer.Option(30, "--seconds", "-s", help="Duration of the CPU profile.", rich_help_panel="Target"),
    config_file: Optional[str] = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Run one capture and print the produced graph urls as JSON."""

    # NOTE: stdout is reserved for the JSON result
    config = load_config(config_file, verbose=verbose or None, quiet=quiet or None, log_to_stderr=True)

    try:
        request = CaptureRequest(
            mode=mode,
            cluster_name=cluster_name,
            namespace=namespace,
            pod_name=pod_name,
            port=port,
            address=address,
            seconds=seconds,
        )
    except ValidationError as e:
        logger.error(f"Invalid capture parameters: {e}")
        raise typer.Exit(code=2)

    orchestrator = build_orchestrator(config)
    try:
        artifacts = asyncio.run(orchestrator.generate_capture(request))
    except ProbeException as e:
        logger.error(f"Capture failed: {e}")
        raise typer.Exit(code=1)
    finally:
        orchestrator.close()

    typer.echo(json.dumps([artifact.model_dump(mode="json") for artifact in artifacts], indent=2))


@app.command("list", rich_help_panel="Captures")
def list_captures(
    cluster_name: str = typer.Option(..., "--cluster", help="Cluster, or address for ip captures."),
    namespace: str = typer.Option(..., "--namespace", "-n", help="Namespace, `custom` for ip captures."),
    config_file: Optional[str] = CONFIG_OPTION,
) -> None:
    """List the stored captures of a cluster namespace."""

    config = load_config(config_file, log_to_stderr=True)
    orchestrator = build_orchestrator(config, check_environment=False)
    try:
        entries = orchestrator.list_captures(cluster_name, namespace)
    except ProbeException as e:
        logger.error(f"Could not list captures: {e}")
        raise typer.Exit(code=1)
    finally:
        orchestrator.close()

    typer.echo(json.dumps([entry.model_dump() for entry in entries], indent=2))


def run() -> None:
    app()


if __name__ == "__main__":
    run()
