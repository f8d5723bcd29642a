import io
from pathlib import Path
from typing import List

import pytest
from rich.console import Console

from hybridctl.config import PipelineConfig
from hybridctl.modules.confirm import ConfirmationGate
from hybridctl.modules.runner import CommandResult

INVENTORY = """\
# Control plane lives at home behind CGNAT
[k3s_servers]
home-cp ansible_host=192.168.1.10 ansible_user=ubuntu

[k3s_agents]
vps-1 ansible_host=203.0.113.5 node_labels=role=edge
vps-2 ansible_host=203.0.113.6 ansible_user=root

[k3s_cluster:children]
k3s_servers
k3s_agents
"""

AGE_KEY = """\
# created: 2024-01-01T00:00:00Z
# public key: age1testpublickey0000000000000000000000000000000000000000000
AGE-SECRET-KEY-1TESTSECRET
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the operator's HYBRIDCTL_* settings out of the tests."""
    import os
    for key in list(os.environ):
        if key.startswith("HYBRIDCTL_") or key in ("KUBECONFIG", "KUBECONFIG_CONTENT"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def repo(tmp_path) -> Path:
    """A fresh infrastructure checkout: templates only, nothing bootstrapped."""
    ansible = tmp_path / "ansible"
    (ansible / "group_vars" / "all").mkdir(parents=True)
    (ansible / "playbooks").mkdir()
    (ansible / ".vault_pass.example").write_text("change-me\n")
    (ansible / "group_vars" / "all" / "vault.yml.example").write_text(
        "vault_k3s_token: CHANGEME\nvault_tailscale_key: CHANGEME\n"
    )
    (ansible / "inventory.ini.example").write_text(INVENTORY)
    (tmp_path / ".sops.yaml").write_text(
        "creation_rules:\n  - path_regex: .*\\.sops\\.yaml$\n    age: YOUR_PUBLIC_KEY_HERE\n"
    )
    return tmp_path


@pytest.fixture
def config(repo) -> PipelineConfig:
    return PipelineConfig(
        root=repo,
        age_key_file=str(repo / "home" / ".config" / "sops" / "age" / "keys.txt"),
        kube_dir=str(repo / "home" / ".kube"),
        probe_attempts=3,
        probe_interval=0,
    )


class FakeRunner:
    """Stands in for run_command; emulates the tools the bootstrap shells out to."""

    def __init__(self):
        self.calls: List[List[str]] = []

    def __call__(self, argv, **kwargs) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        if argv[0] == "age-keygen":
            Path(argv[argv.index("-o") + 1]).write_text(AGE_KEY)
        elif argv[:2] == ["ansible-vault", "encrypt"]:
            path = Path(argv[2])
            path.write_text("$ANSIBLE_VAULT;1.1;AES256\n6162636465\n")
        return CommandResult(argv, 0, "", "")


@pytest.fixture
def fake_run() -> FakeRunner:
    return FakeRunner()


def scripted(*answers: str):
    """Input function replaying ``answers``, then behaving like a closed stdin."""
    queue = list(answers)
    prompts: List[str] = []

    def read(prompt: str) -> str:
        prompts.append(prompt)
        if not queue:
            raise EOFError
        return queue.pop(0)

    read.prompts = prompts
    return read


@pytest.fixture
def scripted_input():
    return scripted


@pytest.fixture
def gate_factory():
    def make(*answers: str) -> ConfirmationGate:
        return ConfirmationGate(input_func=scripted(*answers))
    return make


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), width=200)
