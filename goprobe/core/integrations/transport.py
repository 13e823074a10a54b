from __future__ import annotations

import abc
import logging
from typing import Optional

import requests
from kubernetes.client import ApiException

from goprobe.core.exceptions import TransportError
from goprobe.core.integrations.kubernetes import ClusterManager
from goprobe.core.models.objects import SampleKind

logger = logging.getLogger("goprobe")

DEFAULT_TIMEOUT_SECONDS = 5


class ProfileTransport(abc.ABC):
    """Fetches a raw profile of one sample kind from a target."""

    @abc.abstractmethod
    def fetch(self, kind: SampleKind, params: dict[str, str]) -> bytes:
        pass


def fetch_timeout(params: dict[str, str]) -> float:
    """5 seconds, or the capture duration plus 5 seconds when one is requested."""

    try:
        seconds = int(params.get("seconds", 0))
    except ValueError:
        seconds = 0

    if seconds > 0:
        return seconds + DEFAULT_TIMEOUT_SECONDS
    return DEFAULT_TIMEOUT_SECONDS


class ClusterProxyTransport(ProfileTransport):
    """Fetches profiles through the API server proxy of a pod's governance port."""

    def __init__(self, manager: ClusterManager, namespace: str, pod_name: str, port: int) -> None:
        self.manager = manager
        self.namespace = namespace
        self.resource_name = f"{pod_name}:{port}"

    def fetch(self, kind: SampleKind, params: dict[str, str]) -> bytes:
        logger.info(f"Fetching {kind.value} profile of {self.namespace}/{self.resource_name} in {self.manager.name}")
        try:
            return self.manager.proxy_get(self.namespace, self.resource_name, kind.debug_path, params)
        except ApiException as e:
            raise TransportError(
                f"Request to the governance port for {kind.value} profile data failed: {e.status} {e.reason}",
                url=f"{self.manager.name}/{self.namespace}/{self.resource_name}/{kind.debug_path}",
                kind=kind.value,
                status_code=e.status,
            ) from e
        except Exception as e:
            raise TransportError(
                f"Request to the governance port for {kind.value} profile data failed: {e}",
                url=f"{self.manager.name}/{self.namespace}/{self.resource_name}/{kind.debug_path}",
                kind=kind.value,
            ) from e


class DirectHTTPTransport(ProfileTransport):
    """Fetches profiles straight from `http://<address>/debug/...`."""

    def __init__(self, address: str, session: Optional[requests.Session] = None) -> None:
        if not address.startswith("http://") and not address.startswith("https://"):
            address = f"http://{address}"
        self.base_url = address.rstrip("/")
        self.session = session or requests.Session()

    def url_for(self, kind: SampleKind) -> str:
        return f"{self.base_url}/{kind.debug_path}"

    def fetch(self, kind: SampleKind, params: dict[str, str]) -> bytes:
        url = self.url_for(kind)
        timeout = fetch_timeout(params)
        logger.info(f"Fetching {kind.value} profile from {url} (timeout {timeout}s)")

        try:
            response = self.session.get(url, params=params, timeout=timeout)
        except requests.RequestException as e:
            raise TransportError(
                f"Request to {url} for {kind.value} profile data failed: {e}", url=url, kind=kind.value
            ) from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Request to {url} for {kind.value} profile data failed: status code is {response.status_code}",
                url=url,
                kind=kind.value,
                status_code=response.status_code,
            )

        return response.content
