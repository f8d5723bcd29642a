"""Configuration management for hybridctl.

Configuration is loaded from multiple sources with the following precedence:
1. Explicitly passed parameters
2. Environment variables (HYBRIDCTL_*, including those from a .env file)
3. Configuration file (hybridctl.yaml in the repo root, or ~/.config/hybridctl/config.yaml)
4. Default values
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("hybridctl.config")

# Load environment variables from .env file if it exists
load_dotenv()

ENV_PREFIX = "HYBRIDCTL_"

DEFAULT_CONFIG_PATHS = [
    Path("hybridctl.yaml"),
    Path("~/.config/hybridctl/config.yaml"),
]


class PipelineConfig(BaseSettings):
    """Paths, group names and polling limits for a pipeline run.

    Relative paths are resolved against ``root``; ``~`` is expanded.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    root: Path = Field(default=Path("."), description="Infrastructure repository root")

    # Ansible layout
    ansible_dir: str = "ansible"
    inventory_file: str = "ansible/inventory.ini"
    vault_password_file: str = "ansible/.vault_pass"
    vault_file: str = "ansible/group_vars/all/vault.yml"
    template_suffix: str = ".example"
    mesh_playbook: str = "playbooks/setup-tailscale.yaml"
    cluster_playbook: str = "playbooks/deploy-k3s.yaml"
    server_group: str = "k3s_servers"
    agent_group: str = "k3s_agents"

    # Secrets
    sops_config: str = ".sops.yaml"
    age_key_file: str = "~/.config/sops/age/keys.txt"
    sops_placeholder: str = "YOUR_PUBLIC_KEY_HERE"

    # Cluster access
    kube_dir: str = "~/.kube"
    remote_kubeconfig: str = "/etc/rancher/k3s/k3s.yaml"
    ssh_key_path: Optional[str] = None
    ssh_port: int = Field(default=22, ge=1, le=65535)
    ssh_timeout: int = Field(default=10, ge=1)

    # Services
    helmfile_dir: str = "helmfile"
    monitoring_namespace: str = "monitoring"

    # Mesh network
    mesh_cidr: str = "100.64.0.0/10"

    # Tunnel
    tunnel_namespace: str = "cloudflare"
    tunnel_selector: str = "app.kubernetes.io/name=cloudflared"
    tunnel_deployment: str = "cloudflared"
    tunnel_secret: str = "cloudflared-credentials"
    tunnel_domains: str = Field(default="", description="Comma-separated domains routed through the tunnel")

    # Readiness polling
    probe_attempts: int = Field(default=30, ge=1)
    probe_interval: float = Field(default=10.0, ge=0)
    http_timeout: float = Field(default=5.0, gt=0)

    # Concurrency guard
    lock_file: str = ".hybridctl.lock"

    # HTTP API
    api_key: str = "hybridctl-secret"

    @field_validator("root")
    @classmethod
    def expand_root(cls, v: Path) -> Path:
        """Expand the user home directory in the repository root."""
        return Path(os.path.expanduser(str(v)))

    def path(self, value: Union[str, Path]) -> Path:
        """Resolve a configured path against the repository root."""
        p = Path(os.path.expanduser(str(value)))
        if p.is_absolute():
            return p
        return self.root / p

    @property
    def domains(self) -> List[str]:
        return [d.strip() for d in self.tunnel_domains.split(",") if d.strip()]

    def template_for(self, target: Union[str, Path]) -> Path:
        """Return the ``.example`` template that seeds ``target``."""
        target = self.path(target)
        return target.with_name(target.name + self.template_suffix)

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        **overrides: Any,
    ) -> "PipelineConfig":
        """Load configuration from file, environment variables and overrides."""
        file_data: Dict[str, Any] = {}

        if config_path:
            path = Path(config_path).expanduser()
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {path}")
            file_data = cls._load_config_file(path)
        else:
            root = Path(os.path.expanduser(str(overrides.get("root") or os.getenv(f"{ENV_PREFIX}ROOT", "."))))
            for candidate in DEFAULT_CONFIG_PATHS:
                path = candidate.expanduser()
                if not path.is_absolute():
                    path = root / path
                if path.exists():
                    file_data = cls._load_config_file(path)
                    logger.debug(f"Loaded configuration from {path}")
                    break

        # Environment variables win over the file
        data = {
            k: v for k, v in file_data.items()
            if f"{ENV_PREFIX}{k.upper()}" not in os.environ
        }
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}
