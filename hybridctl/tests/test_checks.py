import json

import requests

from hybridctl.modules import checks
from hybridctl.modules.kube import NodeSummary, ReplicaStatus
from hybridctl.modules.runner import CommandResult
from hybridctl.modules.validation import Outcome, ValidationAggregator

CREDENTIALS = json.dumps({"TunnelName": "infra", "TunnelID": "1234-abcd"})


class FakeCluster:
    kubeconfig = "/tmp/k3s-cp"

    def __init__(self, ready_after=1, coredns=ReplicaStatus(2, 2, 2), pending=(), namespaces=("cloudflare",)):
        self.node_calls = 0
        self.ready_after = ready_after
        self.coredns = coredns
        self.pending = list(pending)
        self.namespaces = set(namespaces)

    def nodes(self):
        self.node_calls += 1
        ready = 2 if self.node_calls >= self.ready_after else 1
        return NodeSummary(total=2, ready=ready, not_ready=[] if ready == 2 else ["vps-1"])

    def deployment_replicas(self, namespace, name):
        if name == "coredns":
            return self.coredns
        return ReplicaStatus(1, 1, 1)

    def pods_not_running(self, namespace, selector=None):
        return self.pending

    def namespace_exists(self, name):
        return name in self.namespaces

    def running_pods(self, namespace, selector=None):
        return ["cloudflared-abc"]

    def pod_logs(self, namespace, pod, tail_lines=100):
        return "INF Registered tunnel connection connIndex=0\n"

    def secret_data(self, namespace, name):
        return {"credentials.json": CREDENTIALS}


def kubectl_ok(argv, **kwargs):
    if "--raw=/readyz" in argv:
        return CommandResult(argv, 0, "ok")
    return CommandResult(argv, 0, "Server: 10.43.0.10\nName: kubernetes.default\nAddress 1: 10.43.0.1\n")


def by_name(report):
    return {r.name: r for r in report.results}


def test_healthy_cluster_passes_deployment_battery(config):
    cluster = FakeCluster(ready_after=2)
    battery = checks.deployment_checks(config, cluster=lambda: cluster, run=kubectl_ok, sleep=lambda s: None)

    report = ValidationAggregator().run(battery, "deployment")

    assert report.exit_code == 0
    assert report.failed == 0
    results = by_name(report)
    assert results["all nodes Ready"].detail == "2/2 Ready"
    assert "skipped" in results["monitoring stack running"].detail


def test_nodes_not_ready_fails_deployment(config):
    cluster = FakeCluster(ready_after=99)
    battery = checks.deployment_checks(config, cluster=lambda: cluster, run=kubectl_ok, sleep=lambda s: None)

    report = ValidationAggregator().run(battery, "deployment")

    assert report.exit_code == 1
    assert [r.name for r in report.failures] == ["all nodes Ready"]
    assert "vps-1" in report.failures[0].detail


def test_degraded_addons_are_warnings_only(config):
    cluster = FakeCluster(coredns=ReplicaStatus(2, 1, 1), pending=["metrics-server-x (Pending)"])

    def readyz_down(argv, **kwargs):
        return CommandResult(argv, 1, "", "connection refused")

    battery = checks.deployment_checks(config, cluster=lambda: cluster, run=readyz_down, sleep=lambda s: None)
    report = ValidationAggregator().run(battery, "deployment")

    assert report.exit_code == 0
    assert report.warnings == 4


def test_unreachable_cluster_fails_without_crashing(config):
    def no_cluster():
        raise FileNotFoundError("No kubeconfig found")

    battery = checks.deployment_checks(config, cluster=no_cluster, run=kubectl_ok, sleep=lambda s: None)
    report = ValidationAggregator().run(battery, "deployment")

    assert report.exit_code == 1
    assert "No kubeconfig found" in by_name(report)["nodes queryable"].detail


def test_tunnel_battery_with_domains(config, monkeypatch):
    config.tunnel_domains = "grafana.example.com, argo.example.com"
    targets = {"grafana.example.com": "1234-abcd.cfargotunnel.com", "argo.example.com": None}
    monkeypatch.setattr(checks, "cname_target", lambda domain: targets[domain])

    battery = checks.tunnel_checks(config, cluster=lambda: FakeCluster(), sleep=lambda s: None)
    report = ValidationAggregator().run(battery, "tunnel")

    results = by_name(report)
    assert results["tunnel credentials secret"].outcome == Outcome.PASS
    assert "1234-abcd" in results["tunnel credentials secret"].detail
    assert results["tunnel connection established"].outcome == Outcome.PASS
    assert results["DNS CNAME grafana.example.com"].outcome == Outcome.PASS
    assert results["DNS CNAME argo.example.com"].outcome == Outcome.WARN
    assert report.exit_code == 0


def test_missing_tunnel_namespace_is_an_error(config):
    battery = checks.tunnel_checks(config, cluster=lambda: FakeCluster(namespaces=()), sleep=lambda s: None)
    report = ValidationAggregator().run(battery, "tunnel")
    assert "tunnel namespace exists" in [r.name for r in report.failures]


def test_network_probes_skip_after_internet_failure(config, monkeypatch):
    urls = []

    def offline(url, timeout):
        urls.append(url)
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr(checks, "command_exists", lambda name: True)
    monkeypatch.setattr(checks, "run_command", lambda argv, **kw: CommandResult(argv, 0, "diff\t3.9.0"))
    battery = checks.prerequisite_checks(config, cluster=lambda: FakeCluster(), http_get=offline)
    report = ValidationAggregator().run(battery, "prereqs")

    results = by_name(report)
    assert urls == [checks.INTERNET_URL]
    assert results["Docker Hub reachable"].detail == "skipped: no internet connectivity"
    assert results["Docker Hub reachable"].outcome == Outcome.WARN


def test_missing_required_tool_fails_prereqs(config, monkeypatch):
    monkeypatch.setattr(checks, "command_exists", lambda name: name not in ("helmfile", "cloudflared"))
    monkeypatch.setattr(checks, "run_command", lambda argv, **kw: CommandResult(argv, 0, "diff"))

    battery = [c for c in checks.prerequisite_checks(config, cluster=lambda: FakeCluster(),
                                                     http_get=lambda url, timeout: None)
               if c.category == "tools"]
    report = ValidationAggregator().run(battery, "prereqs")

    assert [r.name for r in report.failures] == ["helmfile installed"]
    assert by_name(report)["cloudflared installed"].outcome == Outcome.WARN


def test_age_file_without_private_key_is_an_error(config):
    key = config.path(config.age_key_file)
    key.parent.mkdir(parents=True)
    key.write_text("# public key: age1abc\n")

    battery = [c for c in checks.prerequisite_checks(config, cluster=lambda: FakeCluster())
               if c.name == "age private key"]
    report = ValidationAggregator().run(battery, "prereqs")

    assert report.exit_code == 1
