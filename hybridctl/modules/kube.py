"""Kubernetes status queries used by phases and validation checks."""
import base64
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from kubernetes import client, config
from kubernetes.client.rest import ApiException

logger = logging.getLogger("hybridctl.kube")


@dataclass
class NodeSummary:
    total: int = 0
    ready: int = 0
    not_ready: List[str] = field(default_factory=list)

    @property
    def all_ready(self) -> bool:
        return self.total > 0 and self.ready == self.total


@dataclass
class ReplicaStatus:
    desired: int
    ready: int
    available: int

    @property
    def converged(self) -> bool:
        return self.desired > 0 and self.ready == self.desired


def resolve_kubeconfig(path: Optional[Union[str, Path]] = None) -> Optional[str]:
    """
    Pick the kubeconfig file to use: explicit path, then KUBECONFIG_CONTENT
    (CI secret), then $KUBECONFIG, then ~/.kube/config. Returns None when
    nothing is available.
    """
    if path:
        resolved = Path(os.path.expanduser(str(path))).resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"❌ Kubeconfig not found: {resolved}")
        return str(resolved)

    # CI/CD secret-based loading
    if "KUBECONFIG_CONTENT" in os.environ:
        temp_path = Path("/tmp/ci-kubeconfig.yaml")
        temp_path.write_text(os.environ["KUBECONFIG_CONTENT"])
        return str(temp_path)

    if os.environ.get("KUBECONFIG"):
        return os.environ["KUBECONFIG"].split(os.pathsep)[0]

    default = Path("~/.kube/config").expanduser()
    return str(default) if default.exists() else None


class ClusterClient:
    """Thin read-only wrapper over the Kubernetes API."""

    def __init__(self, kubeconfig: Optional[Union[str, Path]] = None):
        self.kubeconfig = resolve_kubeconfig(kubeconfig)
        if self.kubeconfig is None:
            raise FileNotFoundError("No kubeconfig found (~/.kube/config, $KUBECONFIG or KUBECONFIG_CONTENT)")
        api_client = config.new_client_from_config(config_file=self.kubeconfig)
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)

    def nodes(self) -> NodeSummary:
        summary = NodeSummary()
        for node in self.core.list_node(_request_timeout=10).items:
            summary.total += 1
            ready = any(
                c.type == "Ready" and c.status == "True"
                for c in (node.status.conditions or [])
            )
            if ready:
                summary.ready += 1
            else:
                summary.not_ready.append(node.metadata.name)
        return summary

    def namespace_exists(self, name: str) -> bool:
        try:
            self.core.read_namespace(name)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    def pods(self, namespace: str, selector: Optional[str] = None) -> List[client.V1Pod]:
        kwargs = {"label_selector": selector} if selector else {}
        return self.core.list_namespaced_pod(namespace, **kwargs).items

    def pods_not_running(self, namespace: str, selector: Optional[str] = None) -> List[str]:
        """Names of pods that are neither Running nor Succeeded."""
        return [
            f"{p.metadata.name} ({p.status.phase})"
            for p in self.pods(namespace, selector)
            if p.status.phase not in ("Running", "Succeeded")
        ]

    def running_pods(self, namespace: str, selector: Optional[str] = None) -> List[str]:
        return [p.metadata.name for p in self.pods(namespace, selector) if p.status.phase == "Running"]

    def deployment_replicas(self, namespace: str, name: str) -> Optional[ReplicaStatus]:
        try:
            dep = self.apps.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return ReplicaStatus(
            desired=dep.spec.replicas or 0,
            ready=dep.status.ready_replicas or 0,
            available=dep.status.available_replicas or 0,
        )

    def pod_logs(self, namespace: str, pod: str, tail_lines: int = 100) -> str:
        return self.core.read_namespaced_pod_log(pod, namespace, tail_lines=tail_lines)

    def secret_data(self, namespace: str, name: str) -> Optional[Dict[str, str]]:
        """Decoded secret data, or None when the secret does not exist."""
        try:
            secret = self.core.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return {
            k: base64.b64decode(v).decode("utf-8", errors="replace")
            for k, v in (secret.data or {}).items()
        }
