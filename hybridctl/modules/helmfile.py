"""Chart releases through the helmfile CLI."""
import logging
from pathlib import Path
from typing import Union

from hybridctl.errors import ConfigurationError, ExternalToolError
from hybridctl.modules.runner import CommandResult, run_command, tail

logger = logging.getLogger("hybridctl.helmfile")

# helmfile diff --detailed-exitcode: 0 no changes, 2 changes pending
DIFF_CLEAN = 0
DIFF_CHANGES = 2

# Checked in order of precedence
HELMFILE_CANDIDATES = ("helmfile.yaml.gotmpl", "helmfile.gotmpl", "helmfile.yaml")


def find_helmfile(helmfile_dir: Union[str, Path]) -> Path:
    """Return the helmfile configuration to use in ``helmfile_dir``."""
    helmfile_dir = Path(helmfile_dir)
    for candidate in HELMFILE_CANDIDATES:
        path = helmfile_dir / candidate
        if path.is_file():
            logger.info(f"Using Helmfile configuration: {path.name}")
            return path
    raise ConfigurationError(
        f"Helmfile configuration not found in {helmfile_dir}",
        remediation=f"Expected one of: {', '.join(HELMFILE_CANDIDATES)}",
    )


class Helmfile:
    def __init__(self, helmfile_dir: Union[str, Path]):
        self.helmfile_dir = Path(helmfile_dir)

    def diff(self) -> CommandResult:
        """Preview changes. A failing diff is expected on first deployment."""
        path = find_helmfile(self.helmfile_dir)
        result = run_command(
            ["helmfile", "-f", path.name, "diff", "--suppress-secrets"],
            cwd=self.helmfile_dir,
            check=False,
        )
        if result.ok:
            logger.info("Helmfile diff completed")
        else:
            logger.warning("⚠️  Helmfile diff failed or no changes detected (expected on first deployment)")
        return result

    def apply(self) -> CommandResult:
        path = find_helmfile(self.helmfile_dir)
        return run_command(
            ["helmfile", "-f", path.name, "apply"],
            cwd=self.helmfile_dir,
            remediation=f"cd {self.helmfile_dir} && helmfile -f {path.name} apply --debug",
        )

    def has_changes(self) -> bool:
        """Whether the releases differ from the cluster. Read-only."""
        path = find_helmfile(self.helmfile_dir)
        argv = ["helmfile", "-f", path.name, "diff", "--suppress-secrets", "--detailed-exitcode"]
        result = run_command(argv, cwd=self.helmfile_dir, check=False)
        if result.returncode == DIFF_CLEAN:
            return False
        if result.returncode == DIFF_CHANGES:
            return True
        raise ExternalToolError(
            argv, result.returncode, tail(result.output),
            remediation=f"cd {self.helmfile_dir} && helmfile -f {path.name} diff",
        )
