import json

import pytest

from hybridctl.modules import tunnel
from hybridctl.modules.tunnel import (
    TunnelMonitor,
    TunnelStatus,
    count_log_errors,
    parse_credentials,
    points_to_tunnel,
)
from hybridctl.modules.runner import CommandResult

CONNECTED_LOGS = """\
2024-05-01T10:00:00Z INF Starting tunnel tunnelID=abc
2024-05-01T10:00:01Z INF Registered tunnel connection connIndex=0 location=fra08
"""


class FakeCluster:
    def __init__(self, pods=("cloudflared-7d9c-abc",), logs=CONNECTED_LOGS, error=None):
        self.pods = list(pods)
        self.logs = logs
        self.error = error

    def running_pods(self, namespace, selector=None):
        if self.error:
            raise self.error
        return self.pods

    def pod_logs(self, namespace, pod, tail_lines=100):
        return self.logs


def monitor(cluster):
    return TunnelMonitor(cluster, "cloudflare", "app.kubernetes.io/name=cloudflared")


def test_registered_connection_is_established():
    status, detail = monitor(FakeCluster()).status()
    assert status == TunnelStatus.CONNECTION_ESTABLISHED
    assert "cloudflared-7d9c-abc" in detail


def test_no_registration_yet():
    logs = "INF Starting tunnel\nERR failed to dial edge, retrying\n"
    status, detail = monitor(FakeCluster(logs=logs)).status()
    assert status == TunnelStatus.NOT_YET_CONNECTED
    assert "retrying" in detail


def test_no_running_pod_is_not_yet_connected():
    status, _ = monitor(FakeCluster(pods=[])).status()
    assert status == TunnelStatus.NOT_YET_CONNECTED


def test_api_failure_is_error():
    status, detail = monitor(FakeCluster(error=ConnectionError("refused"))).status()
    assert status == TunnelStatus.ERROR
    assert "refused" in detail


def test_count_log_errors():
    logs = "INF ok\nERR error connecting\nfailed to serve\nINF Registered tunnel connection\n"
    assert count_log_errors(logs) == 2


def test_parse_credentials():
    raw = json.dumps({"AccountTag": "a", "TunnelName": "infra", "TunnelID": "1234", "TunnelSecret": "s"})
    assert parse_credentials(raw) == ("infra", "1234")


@pytest.mark.parametrize("raw", ["not json", "[1, 2]"])
def test_parse_credentials_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_credentials(raw)


@pytest.mark.parametrize("target,expected", [
    ("1234-abcd.cfargotunnel.com", True),
    ("1234-abcd.cfargotunnel.com.", True),
    ("example.herokudns.com", False),
    (None, False),
])
def test_points_to_tunnel(target, expected):
    assert points_to_tunnel(target) is expected


def test_cname_target_via_dig(monkeypatch):
    monkeypatch.setattr(tunnel, "command_exists", lambda name: True)
    monkeypatch.setattr(
        tunnel, "run_command",
        lambda argv, **kw: CommandResult(argv, 0, "1234.cfargotunnel.com.\n"),
    )
    assert tunnel.cname_target("grafana.example.com") == "1234.cfargotunnel.com"


def test_cname_target_needs_dig(monkeypatch):
    monkeypatch.setattr(tunnel, "command_exists", lambda name: False)
    with pytest.raises(FileNotFoundError):
        tunnel.cname_target("grafana.example.com")
