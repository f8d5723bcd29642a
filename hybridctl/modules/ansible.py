"""Configuration management runs through ansible-runner."""
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Union

import ansible_runner

from hybridctl.errors import ConfigurationError, ExternalToolError
from hybridctl.modules.runner import tail

logger = logging.getLogger("hybridctl.ansible")


class AnsibleRunner:
    """Runs playbooks and ad-hoc modules against the host registry.

    Args:
        ansible_dir: Directory holding playbooks/, roles/ and ansible.cfg
        inventory: Inventory file path
        vault_password_file: Passed to every run when it exists
    """

    def __init__(
        self,
        ansible_dir: Union[str, Path],
        inventory: Union[str, Path],
        vault_password_file: Optional[Union[str, Path]] = None,
    ):
        self.ansible_dir = Path(ansible_dir)
        self.inventory = Path(inventory)
        self.vault_password_file = Path(vault_password_file) if vault_password_file else None

    def _common_kwargs(self) -> Dict[str, object]:
        env = os.environ.copy()
        env["ANSIBLE_ROLES_PATH"] = str(self.ansible_dir / "roles")
        kwargs: Dict[str, object] = {
            "private_data_dir": str(self.ansible_dir),
            "inventory": str(self.inventory),
            "envvars": env,
            "quiet": False,
        }
        if self.vault_password_file and self.vault_password_file.exists():
            kwargs["cmdline"] = f"--vault-password-file {self.vault_password_file}"
        return kwargs

    @staticmethod
    def _output(runner) -> str:
        try:
            return runner.stdout.read()
        except (AttributeError, OSError, ValueError):
            return ""

    def run_playbook(
        self,
        playbook: str,
        tags: Optional[List[str]] = None,
        extra_vars: Optional[Dict[str, object]] = None,
    ) -> str:
        """Run a playbook; returns the runner status.

        Raises:
            ConfigurationError: The playbook file does not exist
            ExternalToolError: The playbook run did not succeed
        """
        if not (self.ansible_dir / playbook).exists():
            raise ConfigurationError(
                f"Playbook not found: {self.ansible_dir / playbook}",
                remediation="Check ansible_dir and the playbook names in hybridctl.yaml",
            )

        logger.info(f"📦 Running playbook {playbook} against {self.inventory}")
        if tags:
            logger.info(f"Tags: {','.join(tags)}")

        runner = ansible_runner.run(
            playbook=playbook,
            extravars=extra_vars or {},
            tags=",".join(tags) if tags else None,
            **self._common_kwargs(),
        )
        if runner.rc != 0:
            raise ExternalToolError(
                ["ansible-playbook", "-i", str(self.inventory), playbook],
                runner.rc,
                tail(self._output(runner)),
                remediation=f"cd {self.ansible_dir} && ansible-playbook -i {self.inventory} {playbook} -vv",
            )
        logger.info(f"✅ Playbook {playbook} finished: {runner.status}")
        return runner.status

    def ping(self, pattern: str = "all") -> bool:
        """Ad-hoc ping of every host; True when all hosts answered."""
        runner = ansible_runner.run(host_pattern=pattern, module="ping", **self._common_kwargs())
        if runner.rc != 0:
            logger.debug(f"Ansible ping failed ({runner.status}): {tail(self._output(runner))}")
        return runner.rc == 0
