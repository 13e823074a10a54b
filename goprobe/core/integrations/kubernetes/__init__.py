import logging
import os
import threading
from typing import Any, Iterable, Optional

import yaml
from kubernetes import client  # type: ignore
from kubernetes.config import kube_config
from kubernetes.config.config_exception import ConfigException

from goprobe.core.exceptions import ClusterNotFound
from goprobe.core.models.objects import ClusterDescriptor

logger = logging.getLogger("goprobe")

# NOTE: The python client has no QPS/burst limiter, the connection pool is the only ceiling.
#       High enough to fit all expected use cases.
CONNECTION_POOL_MAXSIZE = 1000


def load_kube_config_bundle(bundle: str) -> dict[str, Any]:
    """Read a kubeconfig given either inline (YAML or JSON) or as a path to a file."""

    if os.path.isfile(bundle):
        with open(bundle, "r") as file:
            bundle = file.read()

    try:
        data = yaml.safe_load(bundle)
    except yaml.YAMLError as e:
        raise ConfigException(f"Invalid kubeconfig: {e}") from e

    if not isinstance(data, dict):
        raise ConfigException("Invalid kubeconfig: expected a mapping")
    return data


def current_cluster_entry(bundle: dict[str, Any]) -> dict[str, Any]:
    """Return the `cluster` mapping the current context of a kubeconfig points to."""

    context_name = bundle.get("current-context")
    contexts = {context.get("name"): context.get("context") or {} for context in bundle.get("contexts") or []}
    cluster_name = contexts.get(context_name, {}).get("cluster")

    for cluster in bundle.get("clusters") or []:
        if cluster.get("name") == cluster_name:
            cluster["cluster"] = cluster.get("cluster") or {}
            return cluster["cluster"]
    raise ConfigException(f"Invalid kubeconfig: no cluster found for context {context_name}")


class ClusterManager:
    """An authenticated API client for one cluster."""

    def __init__(self, cluster: ClusterDescriptor, ca_bundle: Optional[str] = None) -> None:
        self.cluster = cluster
        self.config = self._build_configuration(cluster, ca_bundle)
        self.api_client = client.ApiClient(configuration=self.config)

    @staticmethod
    def _build_configuration(cluster: ClusterDescriptor, ca_bundle: Optional[str] = None) -> client.Configuration:
        bundle = load_kube_config_bundle(cluster.kube_config)

        # NOTE: The loader copies the kubeconfig's cluster settings into the configuration again
        #       before every request of a token user, so overrides have to be written into the kubeconfig
        entry = current_cluster_entry(bundle)
        entry["server"] = cluster.api_server.rstrip("/")
        if cluster.proxy:
            entry["proxy-url"] = cluster.proxy
        trusts_own_ca = entry.get("certificate-authority") or entry.get("certificate-authority-data")
        if ca_bundle and not trusts_own_ca and not entry.get("insecure-skip-tls-verify"):
            entry["certificate-authority"] = ca_bundle

        configuration = client.Configuration()
        loader = kube_config.KubeConfigLoader(config_dict=bundle)
        loader.load_and_set(configuration)

        configuration.connection_pool_maxsize = CONNECTION_POOL_MAXSIZE
        if entry.get("proxy-url"):
            configuration.proxy = entry["proxy-url"]

        return configuration

    @property
    def name(self) -> str:
        return self.cluster.name

    def proxy_get(self, namespace: str, resource_name: str, path: str, params: Optional[dict[str, str]] = None) -> bytes:
        """
        GET `path` on a pod through the API server pod proxy, i.e.
        /api/v1/namespaces/<namespace>/pods/<resource_name>/proxy/<path>.
        Raises kubernetes.client.ApiException on a non 2xx response.
        """

        response = self.api_client.call_api(
            f"/api/v1/namespaces/{{namespace}}/pods/{{name}}/proxy/{path.lstrip('/')}",
            "GET",
            path_params={"namespace": namespace, "name": resource_name},
            query_params=list((params or {}).items()),
            header_params={"Accept": "*/*"},
            auth_settings=["BearerToken"],
            _return_http_data_only=True,
            _preload_content=False,
        )
        return response.data

    def close(self) -> None:
        self.api_client.close()


class ClusterRegistry:
    """Holds one ClusterManager per configured cluster, looked up by name."""

    def __init__(self) -> None:
        self._managers: dict[str, ClusterManager] = {}
        self._lock = threading.Lock()

    def _try_create_cluster_manager(
        self, cluster: ClusterDescriptor, ca_bundle: Optional[str] = None
    ) -> Optional[ClusterManager]:
        if not cluster.api_server:
            logger.warning(f"Cluster {cluster.name} has no api server address and will be skipped")
            return None

        try:
            return ClusterManager(cluster, ca_bundle)
        except Exception as e:
            logger.warning(f"Could not build a client for cluster {cluster.name} and will skip it: {e}")
            return None

    def load(self, clusters: Iterable[ClusterDescriptor], ca_bundle: Optional[str] = None) -> None:
        """
        Build a manager for every cluster. Managers become visible one by one.
        `ca_bundle` is trusted for clusters whose kubeconfig brings no certificate authority.
        """

        for cluster in clusters:
            manager = self._try_create_cluster_manager(cluster, ca_bundle)
            if manager is None:
                continue

            with self._lock:
                previous = self._managers.get(cluster.name)
                self._managers[cluster.name] = manager
            if previous is not None:
                previous.close()

            logger.debug(f"Loaded cluster {cluster.name} ({cluster.api_server})")

        logger.info(f"Clusters loaded: {', '.join(self.names()) or 'none'}")

    def get(self, name: str) -> ClusterManager:
        try:
            return self._managers[name]
        except KeyError:
            raise ClusterNotFound(f"Cluster {name} not found") from None

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._managers)

    def __contains__(self, name: str) -> bool:
        return name in self._managers

    def __len__(self) -> int:
        return len(self._managers)
