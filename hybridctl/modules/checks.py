"""Validation batteries: prerequisites, deployment health and tunnel health.

Each battery is a list of independent ValidationCheck objects for the
ValidationAggregator. Cluster state is always queried live; nothing here
reads what the pipeline believes it has done.
"""
import functools
import importlib.util
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests

from hybridctl.config import PipelineConfig
from hybridctl.modules.kube import ClusterClient
from hybridctl.modules.kubeconfig import cluster_kubeconfig
from hybridctl.modules.mesh import local_status
from hybridctl.modules.prober import Readiness, poll
from hybridctl.modules.runner import command_exists, run_command, tail
from hybridctl.modules.secrets import extract_public_key, has_age_private_key, is_vault_encrypted
from hybridctl.modules.tunnel import (
    TunnelMonitor,
    TunnelStatus,
    cname_target,
    count_log_errors,
    parse_credentials,
    points_to_tunnel,
)
from hybridctl.modules.validation import (
    ValidationAggregator,
    ValidationCheck,
    ValidationReport,
    Severity,
)

logger = logging.getLogger("hybridctl.checks")

BATTERIES = ("prereqs", "deployment", "tunnel")

# (tool, required)
TOOLS: List[Tuple[str, bool]] = [
    ("git", True),
    ("python3", True),
    ("pip3", False),
    ("ansible", True),
    ("ansible-playbook", True),
    ("ansible-vault", True),
    ("kubectl", True),
    ("helm", True),
    ("helmfile", True),
    ("age", True),
    ("age-keygen", True),
    ("sops", True),
    ("cloudflared", False),
    ("tailscale", False),
    ("curl", True),
]

PYTHON_MODULES = (("jmespath", "pip3 install jmespath"), ("yaml", "pip3 install pyyaml"))

INTERNET_URL = "https://www.google.com"
# name -> url, probed only once the internet probe passed
SERVICE_URLS: Dict[str, str] = {
    "Cloudflare API": "https://api.cloudflare.com/client/v4/user/tokens/verify",
    "Docker Hub": "https://registry.hub.docker.com",
    "GitHub Container Registry": "https://ghcr.io",
    "Quay.io": "https://quay.io",
}

DNS_TEST_IMAGE = "busybox:1.28"

ClusterFactory = Callable[[], ClusterClient]
CheckOutcome = Tuple[bool, str]


def default_cluster_factory(config: PipelineConfig) -> ClusterFactory:
    """Lazily build one ClusterClient for a battery.

    A failure to build it is a failure of whichever check asked first, and
    is retried by the next check.
    """
    @functools.lru_cache(maxsize=None)
    def factory() -> ClusterClient:
        return ClusterClient(cluster_kubeconfig(config))
    return factory


def _kubectl(cluster: ClusterClient) -> List[str]:
    argv = ["kubectl"]
    if getattr(cluster, "kubeconfig", None):
        argv += ["--kubeconfig", str(cluster.kubeconfig)]
    return argv


# ---------------------------------------------------------------------------
# Prerequisites
# ---------------------------------------------------------------------------

def _tool_check(tool: str, required: bool) -> ValidationCheck:
    def check() -> CheckOutcome:
        if command_exists(tool):
            return True, "installed"
        return False, "not installed" if required else "not installed (optional)"

    return ValidationCheck(
        name=f"{tool} installed",
        check=check,
        severity=Severity.ERROR if required else Severity.WARNING,
        remediation=f"Install {tool}",
        category="tools",
    )


def _helm_diff_plugin() -> CheckOutcome:
    if not command_exists("helm"):
        return False, "helm not installed"
    result = run_command(["helm", "plugin", "list"], check=False, timeout=15)
    return "diff" in result.stdout, "helm-diff plugin"


def _python_module(module: str) -> Callable[[], CheckOutcome]:
    def check() -> CheckOutcome:
        return importlib.util.find_spec(module) is not None, f"python module {module}"
    return check


def _exists(path: Path) -> Callable[[], CheckOutcome]:
    def check() -> CheckOutcome:
        return path.exists(), str(path)
    return check


def _vault_encrypted(path: Path) -> CheckOutcome:
    if not path.exists():
        return False, f"{path} not found"
    if is_vault_encrypted(path):
        return True, f"{path} encrypted"
    return False, f"{path} is plaintext"


def _age_private_key(path: Path) -> CheckOutcome:
    # A missing key file is reported by the warning-level presence check
    if not path.exists():
        return True, f"{path} not created yet"
    if not has_age_private_key(path):
        return False, f"{path} exists but holds no private key"
    public_key = extract_public_key(path)
    return True, f"public key: {public_key}" if public_key else "private key found"


def _cloudflare_token() -> CheckOutcome:
    for var in ("CLOUDFLARE_API_TOKEN", "CF_API_TOKEN"):
        if os.getenv(var):
            return True, f"{var} is set"
    return False, "Cloudflare API token not found in environment"


def _cloudflared_credentials() -> CheckOutcome:
    creds = sorted(Path("~/.cloudflared").expanduser().glob("*.json"))
    if creds:
        return True, f"{len(creds)} tunnel credential file(s)"
    return False, "no tunnel credentials in ~/.cloudflared/"


def _tailscale_authenticated() -> CheckOutcome:
    if not command_exists("tailscale"):
        return False, "tailscale not installed"
    status = local_status()
    if not status.authenticated:
        return False, "tailscale is not authenticated"
    return True, f"{status.hostname or 'this machine'} ({status.online_peers} peer(s) online)"


def _tailscale_ip() -> CheckOutcome:
    if not command_exists("tailscale"):
        return False, "tailscale not installed"
    status = local_status()
    ipv4 = [a for a in status.addresses if "." in a]
    if not ipv4:
        return False, "no Tailscale IP assigned"
    return True, ipv4[0]


class _Connectivity:
    """HTTP reachability probes sharing one internet check.

    Probes after a failed internet check report "skipped" instead of each
    waiting out its own timeout.
    """

    def __init__(self, timeout: float, http_get: Callable = requests.get):
        self.timeout = timeout
        self.http_get = http_get
        self.online: Optional[bool] = None

    def _reachable(self, url: str) -> CheckOutcome:
        try:
            response = self.http_get(url, timeout=self.timeout)
        except requests.RequestException as e:
            return False, f"{url} unreachable: {type(e).__name__}"
        return True, f"{url} ({response.status_code})"

    def internet(self) -> CheckOutcome:
        ok, detail = self._reachable(INTERNET_URL)
        self.online = ok
        return ok, detail

    def service(self, url: str) -> Callable[[], CheckOutcome]:
        def check() -> CheckOutcome:
            if self.online is False:
                return False, "skipped: no internet connectivity"
            return self._reachable(url)
        return check


def _kubernetes_reachable(cluster: ClusterFactory) -> Callable[[], CheckOutcome]:
    def check() -> CheckOutcome:
        nodes = cluster().nodes()
        return True, f"{nodes.total} node(s)"
    return check


def prerequisite_checks(
    config: PipelineConfig,
    cluster: Optional[ClusterFactory] = None,
    http_get: Callable = requests.get,
) -> List[ValidationCheck]:
    cluster = cluster or default_cluster_factory(config)
    vault_pass = config.path(config.vault_password_file)
    vault_file = config.path(config.vault_file)
    inventory = config.path(config.inventory_file)
    age_key = config.path(config.age_key_file)
    sops_config = config.path(config.sops_config)

    checks = [_tool_check(tool, required) for tool, required in TOOLS]
    checks.append(ValidationCheck(
        "helm diff plugin", _helm_diff_plugin, Severity.WARNING,
        "helm plugin install https://github.com/databus23/helm-diff", "tools",
    ))
    for module, install in PYTHON_MODULES:
        checks.append(ValidationCheck(
            f"python module {module}", _python_module(module), Severity.WARNING, install, "tools",
        ))

    W = Severity.WARNING
    checks += [
        ValidationCheck("vault password file", _exists(vault_pass), W,
                        f"cp {config.template_for(vault_pass)} {vault_pass}", "credentials"),
        ValidationCheck("vault file encrypted", lambda: _vault_encrypted(vault_file), W,
                        f"ansible-vault encrypt {vault_file}", "credentials"),
        ValidationCheck("host registry", _exists(inventory), W,
                        f"cp {config.template_for(inventory)} {inventory}", "credentials"),
        ValidationCheck("age key file", _exists(age_key), W,
                        f"mkdir -p {age_key.parent} && age-keygen -o {age_key}", "credentials"),
        ValidationCheck("age private key", lambda: _age_private_key(age_key), Severity.ERROR,
                        f"Regenerate {age_key} with age-keygen (back up the old file first)", "credentials"),
        ValidationCheck("sops configuration", _exists(sops_config), W,
                        f"Create {sops_config} with your age public key", "credentials"),
        ValidationCheck("cloudflare API token", _cloudflare_token, W,
                        "Set CLOUDFLARE_API_TOKEN or CF_API_TOKEN, or run: cloudflared tunnel login",
                        "credentials"),
        ValidationCheck("cloudflared tunnel credentials", _cloudflared_credentials, W,
                        "cloudflared tunnel create <name>", "credentials"),
        ValidationCheck("tailscale authenticated", _tailscale_authenticated, W,
                        "tailscale up", "credentials"),
    ]

    net = _Connectivity(config.http_timeout, http_get)
    checks.append(ValidationCheck("internet connectivity", net.internet, W,
                                  "Check your network connection", "connectivity"))
    for name, url in SERVICE_URLS.items():
        checks.append(ValidationCheck(f"{name} reachable", net.service(url), W,
                                      f"curl -v {url}", "connectivity"))
    checks += [
        ValidationCheck("kubernetes cluster reachable", _kubernetes_reachable(cluster), W,
                        "Configure kubeconfig or ensure the cluster is running", "connectivity"),
        ValidationCheck("tailscale IP assigned", _tailscale_ip, W, "tailscale up", "connectivity"),
    ]
    return checks


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------

def _nodes_queryable(cluster: ClusterFactory) -> CheckOutcome:
    nodes = cluster().nodes()
    return nodes.total > 0, f"{nodes.total} node(s)"


def _nodes_ready(cluster: ClusterFactory, config: PipelineConfig, sleep) -> CheckOutcome:
    def predicate() -> Readiness:
        nodes = cluster().nodes()
        detail = f"{nodes.ready}/{nodes.total} Ready"
        if nodes.not_ready:
            detail += f", not ready: {', '.join(nodes.not_ready)}"
        return Readiness(nodes.all_ready, detail)

    result = poll(predicate, config.probe_attempts, config.probe_interval, "cluster nodes", sleep=sleep)
    return result.ok, result.detail


def _api_readyz(cluster: ClusterFactory, run) -> CheckOutcome:
    result = run(_kubectl(cluster()) + ["get", "--raw=/readyz"], check=False, timeout=30)
    return result.ok, result.stdout.strip() or tail(result.output, 3)


def _coredns(cluster: ClusterFactory, config: PipelineConfig, sleep) -> CheckOutcome:
    def predicate() -> Readiness:
        status = cluster().deployment_replicas("kube-system", "coredns")
        if status is None:
            raise LookupError("CoreDNS deployment not found")
        return Readiness(status.converged, f"{status.ready}/{status.desired} replicas ready")

    result = poll(predicate, config.probe_attempts, config.probe_interval, "CoreDNS", sleep=sleep)
    return result.ok, result.detail


def _pods_running(cluster: ClusterFactory, namespace: str) -> CheckOutcome:
    pending = cluster().pods_not_running(namespace)
    if pending:
        return False, f"{len(pending)} pod(s) not running: {', '.join(pending)}"
    return True, f"all {namespace} pods running"


def _dns_resolution(cluster: ClusterFactory, run) -> CheckOutcome:
    pod = f"dns-test-{uuid.uuid4().hex[:8]}"
    result = run(
        _kubectl(cluster()) + [
            "run", pod, f"--image={DNS_TEST_IMAGE}", "--rm", "-i", "--restart=Never",
            "--command", "--", "nslookup", "kubernetes.default",
        ],
        check=False,
        timeout=120,
    )
    # kubectl can exit non-zero on pod deletion even when the lookup worked
    resolved = result.ok or "Address" in result.stdout
    return resolved, "kubernetes.default resolved" if resolved else tail(result.output, 5)


def _monitoring(cluster: ClusterFactory, namespace: str) -> CheckOutcome:
    if not cluster().namespace_exists(namespace):
        return True, f"no {namespace} namespace, skipped"
    return _pods_running(cluster, namespace)


def deployment_checks(
    config: PipelineConfig,
    cluster: Optional[ClusterFactory] = None,
    run: Callable = run_command,
    sleep: Callable[[float], None] = time.sleep,
) -> List[ValidationCheck]:
    cluster = cluster or default_cluster_factory(config)
    W = Severity.WARNING
    return [
        ValidationCheck("nodes queryable", lambda: _nodes_queryable(cluster), Severity.ERROR,
                        "Ensure kubeconfig is properly configured and the cluster is running", "cluster"),
        ValidationCheck("all nodes Ready", lambda: _nodes_ready(cluster, config, sleep), Severity.ERROR,
                        "kubectl describe node <name>; check k3s logs with journalctl -u k3s", "cluster"),
        ValidationCheck("API server /readyz", lambda: _api_readyz(cluster, run), W,
                        "kubectl get --raw='/readyz?verbose'", "cluster"),
        ValidationCheck("CoreDNS replicas ready", lambda: _coredns(cluster, config, sleep), W,
                        "kubectl -n kube-system describe deployment coredns", "dns"),
        ValidationCheck("kube-system pods running", lambda: _pods_running(cluster, "kube-system"), W,
                        "kubectl get pods -n kube-system | grep -v Running", "cluster"),
        ValidationCheck("in-cluster DNS resolution", lambda: _dns_resolution(cluster, run), W,
                        "kubectl -n kube-system logs -l k8s-app=kube-dns", "dns"),
        ValidationCheck("monitoring stack running",
                        lambda: _monitoring(cluster, config.monitoring_namespace), W,
                        f"kubectl get pods -n {config.monitoring_namespace}", "services"),
    ]


# ---------------------------------------------------------------------------
# Tunnel
# ---------------------------------------------------------------------------

def _tunnel_namespace(cluster: ClusterFactory, namespace: str) -> CheckOutcome:
    return cluster().namespace_exists(namespace), f"namespace {namespace}"


def _tunnel_credentials(cluster: ClusterFactory, namespace: str, secret: str) -> CheckOutcome:
    data = cluster().secret_data(namespace, secret)
    if data is None:
        return False, f"secret {secret} not found"
    if "credentials.json" not in data:
        return False, f"secret {secret} has no credentials.json key"
    try:
        name, tunnel_id = parse_credentials(data["credentials.json"])
    except ValueError as e:
        return False, str(e)
    if not tunnel_id:
        return False, "credentials.json has no TunnelID"
    return True, f"tunnel {name or '(unnamed)'} ({tunnel_id})"


def _tunnel_replicas(cluster: ClusterFactory, namespace: str, deployment: str) -> CheckOutcome:
    status = cluster().deployment_replicas(namespace, deployment)
    if status is None:
        return False, f"deployment {deployment} not found"
    return status.converged, f"{status.ready}/{status.desired} replicas ready"


def _tunnel_pods(cluster: ClusterFactory, config: PipelineConfig, sleep) -> CheckOutcome:
    def predicate() -> Readiness:
        running = cluster().running_pods(config.tunnel_namespace, config.tunnel_selector)
        return Readiness(bool(running), f"{len(running)} running pod(s)")

    result = poll(predicate, config.probe_attempts, config.probe_interval, "cloudflared pods", sleep=sleep)
    return result.ok, result.detail


def _tunnel_connected(monitor_factory: Callable[[], TunnelMonitor], config: PipelineConfig, sleep) -> CheckOutcome:
    def predicate() -> Readiness:
        status, detail = monitor_factory().status()
        if status == TunnelStatus.ERROR:
            raise RuntimeError(detail)
        return Readiness(status == TunnelStatus.CONNECTION_ESTABLISHED, detail)

    result = poll(predicate, config.probe_attempts, config.probe_interval, "tunnel connection", sleep=sleep)
    return result.ok, result.detail


def _tunnel_log_errors(monitor_factory: Callable[[], TunnelMonitor]) -> CheckOutcome:
    logs = monitor_factory().logs()
    if not logs:
        return False, "no cloudflared logs available"
    errors = count_log_errors(logs)
    return errors == 0, f"{errors} error line(s) in recent logs"


def _dns_cname(domain: str) -> Callable[[], CheckOutcome]:
    def check() -> CheckOutcome:
        target = cname_target(domain)
        if not target:
            return False, f"{domain} has no CNAME record"
        return points_to_tunnel(target), f"{domain} -> {target}"
    return check


def tunnel_checks(
    config: PipelineConfig,
    cluster: Optional[ClusterFactory] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[ValidationCheck]:
    cluster = cluster or default_cluster_factory(config)
    ns = config.tunnel_namespace
    W = Severity.WARNING

    def monitor() -> TunnelMonitor:
        return TunnelMonitor(cluster(), ns, config.tunnel_selector)

    checks = [
        ValidationCheck("tunnel namespace exists", lambda: _tunnel_namespace(cluster, ns), Severity.ERROR,
                        f"kubectl create namespace {ns}", "tunnel"),
        ValidationCheck("tunnel credentials secret",
                        lambda: _tunnel_credentials(cluster, ns, config.tunnel_secret), Severity.ERROR,
                        "./scripts/import-cloudflared-credentials.sh", "tunnel"),
        ValidationCheck("cloudflared replicas ready",
                        lambda: _tunnel_replicas(cluster, ns, config.tunnel_deployment), W,
                        f"kubectl -n {ns} describe deployment {config.tunnel_deployment}", "tunnel"),
        ValidationCheck("cloudflared pods running", lambda: _tunnel_pods(cluster, config, sleep), Severity.ERROR,
                        f"kubectl get pods -n {ns} -l {config.tunnel_selector}", "tunnel"),
        ValidationCheck("tunnel connection established",
                        lambda: _tunnel_connected(monitor, config, sleep), W,
                        f"kubectl logs -n {ns} -l {config.tunnel_selector} --tail=50", "tunnel"),
        ValidationCheck("cloudflared recent log errors", lambda: _tunnel_log_errors(monitor), W,
                        f"kubectl logs -n {ns} -l {config.tunnel_selector} --tail=100", "tunnel"),
    ]
    for domain in config.domains:
        checks.append(ValidationCheck(
            f"DNS CNAME {domain}", _dns_cname(domain), W,
            f"./scripts/configure-tunnel-dns.sh {domain}", "dns",
        ))
    return checks


def run_battery(
    battery: str,
    config: PipelineConfig,
    cluster: Optional[ClusterFactory] = None,
) -> ValidationReport:
    """Build and run one named battery."""
    if battery in ("prereqs", "prerequisites"):
        checks = prerequisite_checks(config, cluster)
        battery = "prereqs"
    elif battery == "deployment":
        checks = deployment_checks(config, cluster)
    elif battery == "tunnel":
        checks = tunnel_checks(config, cluster)
    else:
        raise ValueError(f"Unknown validation battery '{battery}' (expected one of: {', '.join(BATTERIES)})")
    return ValidationAggregator().run(checks, battery=battery)
