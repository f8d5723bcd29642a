"""Idempotent bootstrap of vault credentials, inventory and the SOPS age key.

Existing artifacts are never overwritten. Replacing one is an explicit
operator action outside this module. A vault file left in plaintext by an
interrupted run is encrypted in place once the operator confirms.
"""
import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from hybridctl.config import PipelineConfig
from hybridctl.errors import PreconditionError, TemplateMissing
from hybridctl.modules.confirm import ConfirmationGate
from hybridctl.modules.runner import run_command

logger = logging.getLogger("hybridctl.secrets")

VAULT_HEADER = "$ANSIBLE_VAULT"
AGE_SECRET_PREFIX = "AGE-SECRET-KEY-"
PUBLIC_KEY_MARKER = "# public key:"

VAULT_PASSWORD = "vault password file"
VAULT_VARIABLES = "vault variable file"
HOST_REGISTRY = "host registry file"
AGE_KEYPAIR = "encryption keypair"


class ArtifactStatus(str, Enum):
    CREATED = "created"
    ALREADY_PRESENT = "already_present"
    ENCRYPTED = "encrypted"


@dataclass
class ArtifactResult:
    name: str
    path: Path
    status: ArtifactStatus


def is_vault_encrypted(path: Path) -> bool:
    try:
        with open(path, "r") as f:
            return f.readline().startswith(VAULT_HEADER)
    except OSError:
        return False


def has_age_private_key(path: Path) -> bool:
    try:
        return AGE_SECRET_PREFIX in path.read_text()
    except OSError:
        return False


def extract_public_key(key_file: Path) -> Optional[str]:
    """Public half from the ``# public key: age1...`` line age-keygen writes."""
    try:
        for line in key_file.read_text().splitlines():
            if line.startswith(PUBLIC_KEY_MARKER):
                return line.split(":", 1)[1].strip() or None
    except OSError:
        return None
    return None


class SecretBootstrap:
    """Creates missing secret artifacts from templates, in a fixed order.

    Args:
        config: Pipeline configuration
        gate: Used to pause while the operator edits freshly copied templates
        run: Command runner, replaceable in tests
    """

    def __init__(
        self,
        config: PipelineConfig,
        gate: ConfirmationGate,
        run: Callable = run_command,
    ):
        self.config = config
        self.gate = gate
        self.run_command = run

    def paths(self) -> Dict[str, Path]:
        return {
            VAULT_PASSWORD: self.config.path(self.config.vault_password_file),
            VAULT_VARIABLES: self.config.path(self.config.vault_file),
            HOST_REGISTRY: self.config.path(self.config.inventory_file),
            AGE_KEYPAIR: self.config.path(self.config.age_key_file),
        }

    def status(self) -> Dict[str, bool]:
        return {name: path.exists() for name, path in self.paths().items()}

    def is_complete(self) -> bool:
        return all(self.status().values())

    def _check_templates(self) -> None:
        for name in (VAULT_PASSWORD, VAULT_VARIABLES, HOST_REGISTRY):
            target = self.paths()[name]
            template = self.config.template_for(target)
            if not target.exists() and not template.exists():
                raise TemplateMissing(str(target), str(template))

    def _copy_template(self, target: Path) -> None:
        template = self.config.template_for(target)
        logger.info(f"Creating {target} from {template.name}...")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(template, target)

    def _vault_password(self, path: Path) -> None:
        self._copy_template(path)
        path.chmod(0o600)
        self.gate.acknowledge(f"Please edit {path} with your vault password, then press Enter")

    def _vault_variables(self, path: Path) -> None:
        self._copy_template(path)
        logger.warning(f"⚠️  Please edit {path} with your secrets:")
        logger.info("  - vault_k3s_token: Generate with 'openssl rand -hex 32'")
        logger.info("  - vault_tailscale_key: Get from https://login.tailscale.com/admin/settings/keys")
        self.gate.acknowledge(f"Press Enter after updating {path.name}")
        self._encrypt(path)

    def _encrypt_command(self, path: Path) -> List[str]:
        return [
            "ansible-vault", "encrypt", str(path),
            "--vault-password-file", str(self.paths()[VAULT_PASSWORD]),
        ]

    def _encrypt(self, path: Path) -> None:
        logger.info(f"Encrypting {path.name}...")
        argv = self._encrypt_command(path)
        self.run_command(argv, remediation=" ".join(argv))
        logger.info(f"✅ {path.name} encrypted")

    def _recover_plaintext_vault(self, path: Path) -> None:
        """Encrypt a vault file left in plaintext by an interrupted run."""
        logger.warning(f"⚠️  {path} exists but is not encrypted")
        if not self.gate.confirm(f"Encrypt {path.name} now? Finish editing it first"):
            raise PreconditionError(
                f"{path} holds plaintext secrets",
                remediation=" ".join(self._encrypt_command(path)),
            )
        self._encrypt(path)

    def _host_registry(self, path: Path) -> None:
        self._copy_template(path)
        self.gate.acknowledge(f"Please edit {path} with your server details, then press Enter")

    def _age_keypair(self, path: Path) -> None:
        logger.info("Generating age key...")
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        self.run_command(["age-keygen", "-o", str(path)], remediation=f"age-keygen -o {path}")
        logger.info(f"✅ Age key generated at {path}")
        logger.warning("⚠️  IMPORTANT: Back up this key securely!")
        self.propagate_public_key(path)

    def propagate_public_key(self, key_file: Path) -> bool:
        """Replace the placeholder in .sops.yaml with the key's public half."""
        sops_config = self.config.path(self.config.sops_config)
        public_key = extract_public_key(key_file)
        if not public_key:
            logger.error("❌ Failed to extract public key from age key file")
            logger.warning(f"⚠️  Please manually update {sops_config} with your public key")
            return False

        logger.info(f"Your public key: {public_key}")
        if not sops_config.exists():
            logger.warning(f"⚠️  {sops_config} not found; add the public key to it when you create it")
            return False

        content = sops_config.read_text()
        placeholder = self.config.sops_placeholder
        if placeholder not in content:
            logger.info(f"{sops_config.name} has no {placeholder} placeholder; leaving it unchanged")
            return False

        sops_config.write_text(content.replace(placeholder, public_key))
        logger.info(f"✅ {sops_config.name} updated")
        return True

    def run(self) -> List[ArtifactResult]:
        """Create every missing artifact. A second call performs no writes."""
        self._check_templates()

        steps = {
            VAULT_PASSWORD: self._vault_password,
            VAULT_VARIABLES: self._vault_variables,
            HOST_REGISTRY: self._host_registry,
            AGE_KEYPAIR: self._age_keypair,
        }
        results = []
        for name, path in self.paths().items():
            if path.exists():
                logger.info(f"✅ {name} already present ({path})")
                results.append(ArtifactResult(name, path, ArtifactStatus.ALREADY_PRESENT))
                continue
            logger.warning(f"⚠️  {name} not found ({path})")
            steps[name](path)
            results.append(ArtifactResult(name, path, ArtifactStatus.CREATED))

        vault_file = self.paths()[VAULT_VARIABLES]
        if not is_vault_encrypted(vault_file):
            self._recover_plaintext_vault(vault_file)
            for result in results:
                if result.name == VAULT_VARIABLES:
                    result.status = ArtifactStatus.ENCRYPTED
        return results
