"""Retrieve the cluster kubeconfig from the control plane host."""
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Union

import paramiko

from hybridctl.config import PipelineConfig
from hybridctl.errors import ConfigurationError, ExternalToolError
from hybridctl.modules.inventory import HostRecord, HostRegistry

logger = logging.getLogger("hybridctl.kubeconfig")

LOOPBACK_ADDRESSES = ("127.0.0.1", "localhost")


def local_kubeconfig_path(kube_dir: Union[str, Path], host: HostRecord) -> Path:
    """~/.kube/k3s-<hostname>; the operator's ~/.kube/config is never touched."""
    return Path(os.path.expanduser(str(kube_dir))) / f"k3s-{host.name}"


def cluster_kubeconfig(config: PipelineConfig) -> Optional[Path]:
    """The kubeconfig saved for the first control plane host, if there is one.

    None lets the Kubernetes client fall back to $KUBECONFIG or ~/.kube/config.
    """
    registry = HostRegistry(config.path(config.inventory_file))
    try:
        server = registry.first(config.server_group)
    except ConfigurationError as e:
        logger.debug(f"No control plane host to derive a kubeconfig from: {e}")
        return None
    path = local_kubeconfig_path(config.kube_dir, server)
    return path if path.exists() else None


def rewrite_server(kubeconfig: str, address: str) -> str:
    """Point the server URL at the control plane instead of loopback."""
    for loopback in LOOPBACK_ADDRESSES:
        kubeconfig = kubeconfig.replace(f"https://{loopback}:", f"https://{address}:")
    return kubeconfig


def fetch_kubeconfig(
    host: HostRecord,
    remote_path: str,
    kube_dir: Union[str, Path],
    key_path: Optional[str] = None,
    port: int = 22,
    timeout: int = 10,
    client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
) -> Path:
    """Copy the kubeconfig from ``host`` and save it locally.

    Tries ``sudo cat`` first since k3s writes the file root-readable only,
    then plain ``cat``.

    Returns:
        Path of the saved kubeconfig

    Raises:
        ExternalToolError: SSH failed or no valid kubeconfig was found
    """
    target = f"{host.user}@{host.address}"
    manual = f"scp {target}:{remote_path} {local_kubeconfig_path(kube_dir, host)}"
    logger.info(f"Copying kubeconfig from {host.address} (ssh user: {host.user})...")

    ssh = client_factory()
    ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        ssh.connect(
            host.address,
            port=port,
            username=host.user,
            key_filename=os.path.expanduser(key_path) if key_path else None,
            timeout=timeout,
        )
        content = ""
        errors = []
        for command in (f"sudo -n cat {remote_path}", f"cat {remote_path}"):
            _, stdout, stderr = ssh.exec_command(command, timeout=timeout)
            output = stdout.read().decode("utf-8", errors="replace")
            if stdout.channel.recv_exit_status() == 0 and "apiVersion" in output:
                content = output
                break
            errors.append(stderr.read().decode("utf-8", errors="replace").strip())
    except (paramiko.SSHException, OSError) as e:
        raise ExternalToolError(["ssh", target], 255, str(e), remediation=f"Copy it manually: {manual}")
    finally:
        ssh.close()

    if not content:
        raise ExternalToolError(
            ["ssh", target, "cat", remote_path], 1, "\n".join(e for e in errors if e),
            remediation=f"Copy it manually: {manual}",
        )

    local_path = local_kubeconfig_path(kube_dir, host)
    local_path.parent.mkdir(parents=True, exist_ok=True)
    local_path.write_text(rewrite_server(content, host.address))
    local_path.chmod(0o600)
    logger.info(f"✅ Kubeconfig saved to {local_path}")
    logger.info(f"To use this kubeconfig, run: export KUBECONFIG={local_path}")
    return local_path
