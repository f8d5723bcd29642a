"""Tailscale mesh network status."""
import ipaddress
import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from hybridctl.modules.inventory import HostRecord
from hybridctl.modules.runner import command_exists, run_command

logger = logging.getLogger("hybridctl.mesh")


@dataclass
class MeshStatus:
    authenticated: bool = False
    hostname: Optional[str] = None
    addresses: List[str] = field(default_factory=list)
    online_peers: int = 0


def in_mesh(address: str, cidr: str) -> bool:
    """True when ``address`` is an IP inside the mesh CIDR."""
    try:
        return ipaddress.ip_address(address) in ipaddress.ip_network(cidr)
    except ValueError:
        return False


def hosts_outside_mesh(hosts: Iterable[HostRecord], cidr: str) -> List[HostRecord]:
    return [h for h in hosts if not in_mesh(h.address, cidr)]


def local_status() -> MeshStatus:
    """Status of the operator's own tailscale client."""
    if not command_exists("tailscale"):
        return MeshStatus()

    result = run_command(["tailscale", "status", "--json"], check=False, timeout=10)
    if not result.ok:
        return MeshStatus()

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        logger.debug("tailscale status --json returned invalid JSON")
        return MeshStatus(authenticated=True)

    me = data.get("Self") or {}
    peers = (data.get("Peer") or {}).values()
    return MeshStatus(
        authenticated=data.get("BackendState", "Running") == "Running",
        hostname=me.get("HostName"),
        addresses=list(me.get("TailscaleIPs") or []),
        online_peers=sum(1 for p in peers if p.get("Online")),
    )
