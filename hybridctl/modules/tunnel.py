"""Cloudflared tunnel status.

Connection detection scrapes the pod log tail. That heuristic is kept
behind TunnelMonitor.status() so it can be replaced by a structured status
query without touching callers.
"""
import json
import logging
import re
from enum import Enum
from typing import Optional, Tuple

from hybridctl.modules.kube import ClusterClient
from hybridctl.modules.runner import command_exists, run_command

logger = logging.getLogger("hybridctl.tunnel")

CONNECTED_RE = re.compile(
    r"registered tunnel connection|connection.*registered|connection.*established|connected to",
    re.IGNORECASE,
)
LOG_ERROR_RE = re.compile(r"\b(error|failed|fatal)\b", re.IGNORECASE)
TUNNEL_CNAME_SUFFIX = "cfargotunnel.com"
DNS_RESOLVER = "1.1.1.1"


class TunnelStatus(str, Enum):
    CONNECTION_ESTABLISHED = "connection_established"
    NOT_YET_CONNECTED = "not_yet_connected"
    ERROR = "error"


class TunnelMonitor:
    """Reports whether cloudflared has registered a tunnel connection."""

    def __init__(self, cluster: ClusterClient, namespace: str, selector: str, tail_lines: int = 100):
        self.cluster = cluster
        self.namespace = namespace
        self.selector = selector
        self.tail_lines = tail_lines

    def first_running_pod(self) -> Optional[str]:
        pods = self.cluster.running_pods(self.namespace, self.selector)
        return pods[0] if pods else None

    def logs(self) -> str:
        pod = self.first_running_pod()
        if not pod:
            return ""
        return self.cluster.pod_logs(self.namespace, pod, tail_lines=self.tail_lines)

    def status(self) -> Tuple[TunnelStatus, str]:
        try:
            pod = self.first_running_pod()
            if not pod:
                return TunnelStatus.NOT_YET_CONNECTED, "no running cloudflared pod"
            logs = self.cluster.pod_logs(self.namespace, pod, tail_lines=self.tail_lines)
        except Exception as e:
            return TunnelStatus.ERROR, str(e)

        if CONNECTED_RE.search(logs):
            return TunnelStatus.CONNECTION_ESTABLISHED, f"{pod}: tunnel connection registered"
        last_lines = "\n".join(logs.strip().splitlines()[-20:])
        return TunnelStatus.NOT_YET_CONNECTED, last_lines or f"{pod}: no log output yet"


def count_log_errors(logs: str) -> int:
    return sum(1 for line in logs.splitlines() if LOG_ERROR_RE.search(line))


def parse_credentials(raw: str) -> Tuple[Optional[str], Optional[str]]:
    """(TunnelName, TunnelID) from a credentials.json; raises ValueError if invalid."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"credentials.json is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValueError("credentials.json is not a JSON object")
    return data.get("TunnelName"), data.get("TunnelID")


def cname_target(domain: str, resolver: str = DNS_RESOLVER) -> Optional[str]:
    """CNAME of ``domain`` as seen by ``resolver``, or None."""
    if not command_exists("dig"):
        raise FileNotFoundError("dig is not installed (apt-get install dnsutils / brew install bind)")
    result = run_command(["dig", "+short", domain, f"@{resolver}", "CNAME"], check=False, timeout=10)
    target = result.stdout.strip().splitlines()
    return target[0].rstrip(".") if result.ok and target else None


def points_to_tunnel(target: Optional[str]) -> bool:
    return bool(target) and target.rstrip(".").endswith(TUNNEL_CNAME_SUFFIX)
