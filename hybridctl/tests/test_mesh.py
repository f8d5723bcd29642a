import json

from hybridctl.modules import mesh
from hybridctl.modules.inventory import HostRecord
from hybridctl.modules.runner import CommandResult


def host(name, address):
    return HostRecord(name=name, address=address, user="ubuntu", group="k3s_servers")


def test_mesh_membership():
    assert mesh.in_mesh("100.64.0.1", "100.64.0.0/10")
    assert mesh.in_mesh("100.127.255.254", "100.64.0.0/10")
    assert not mesh.in_mesh("192.168.1.10", "100.64.0.0/10")
    assert not mesh.in_mesh("home-cp.local", "100.64.0.0/10")


def test_hosts_outside_mesh():
    hosts = [host("cp", "100.100.1.1"), host("vps", "203.0.113.5")]
    assert [h.name for h in mesh.hosts_outside_mesh(hosts, "100.64.0.0/10")] == ["vps"]


def test_local_status_parses_tailscale_json(monkeypatch):
    status = {
        "BackendState": "Running",
        "Self": {"HostName": "laptop", "TailscaleIPs": ["100.101.1.2", "fd7a:115c::1"]},
        "Peer": {"a": {"Online": True}, "b": {"Online": False}},
    }
    monkeypatch.setattr(mesh, "command_exists", lambda name: True)
    monkeypatch.setattr(mesh, "run_command", lambda argv, **kw: CommandResult(argv, 0, json.dumps(status)))

    result = mesh.local_status()

    assert result.authenticated
    assert result.hostname == "laptop"
    assert result.addresses[0] == "100.101.1.2"
    assert result.online_peers == 1


def test_local_status_without_tailscale(monkeypatch):
    monkeypatch.setattr(mesh, "command_exists", lambda name: False)
    assert not mesh.local_status().authenticated
