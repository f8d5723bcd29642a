from hybridctl.modules.confirm import ConfirmationGate
from hybridctl.modules.pipeline import (
    EXIT_AWAITING_INPUT,
    EXIT_FAILURE,
    EXIT_OK,
    PHASE_NAMES,
    PipelineController,
)
from hybridctl.modules.secrets import SecretBootstrap, is_vault_encrypted
from hybridctl.modules.validation import Severity, ValidationAggregator, ValidationCheck


class FakeAnsible:
    def __init__(self, reachable=True):
        self.reachable = reachable
        self.playbooks = []

    def ping(self, pattern="all"):
        return self.reachable

    def run_playbook(self, playbook, tags=None, extra_vars=None):
        self.playbooks.append(playbook)
        return "successful"


class FakeHelmfile:
    def __init__(self):
        self.applied = 0

    def has_changes(self):
        return self.applied == 0

    def diff(self):
        return None

    def apply(self):
        self.applied += 1


class NoTunnelCluster:
    def namespace_exists(self, name):
        return False


class ConnectedTunnelCluster:
    def namespace_exists(self, name):
        return True

    def running_pods(self, namespace, selector):
        return ["cloudflared-7d9f-x2"]

    def pod_logs(self, namespace, pod, tail_lines=100):
        return "INF Registered tunnel connection connIndex=0\n"


def battery(failing=()):
    def run(name, config, cluster=None):
        checks = [ValidationCheck(f"{name} ok", lambda: (True, ""))]
        checks += [ValidationCheck(f, lambda: (False, "broken"), Severity.ERROR) for f in failing]
        return ValidationAggregator().run(checks, battery=name)
    return run


def controller(config, gate, fake_run, console, **kwargs):
    kwargs.setdefault("ansible", FakeAnsible())
    kwargs.setdefault("helmfile", FakeHelmfile())
    kwargs.setdefault("battery", battery())
    return PipelineController(
        config,
        gate,
        console=console,
        bootstrap=SecretBootstrap(config, gate, run=fake_run),
        sleep=lambda s: None,
        **kwargs,
    )


def test_phase_list_matches_cli_names(config, fake_run, console):
    ctl = controller(config, ConfirmationGate(), fake_run, console)
    assert tuple(p.name for p in ctl.phases()) == PHASE_NAMES


def test_fresh_environment_halts_at_mesh_awaiting_input(config, fake_run, console, scripted_input):
    # proceed, three template edits acknowledged, then stdin closes at the mesh prompt
    read = scripted_input("y", "", "", "")
    gate = ConfirmationGate(input_func=read)
    ansible = FakeAnsible()
    ctl = controller(config, gate, fake_run, console, ansible=ansible)

    code = ctl.execute()

    assert code == EXIT_AWAITING_INPUT
    assert ctl.bootstrap.is_complete()
    assert ansible.playbooks == []
    assert "Deploy Tailscale" in read.prompts[-1]
    output = console.file.getvalue()
    assert "awaiting input" in output
    assert "hybridctl run --from mesh" in output
    # the lock is released even when pausing
    assert not (config.path(config.inventory_file).parent / config.lock_file).exists()


def test_declining_mesh_pauses_instead_of_failing(config, fake_run, console, scripted_input):
    gate = ConfirmationGate(input_func=scripted_input("y", "", "", "", "n"))
    code = controller(config, gate, fake_run, console).execute()
    assert code == EXIT_AWAITING_INPUT


def test_missing_prerequisite_fails_before_any_side_effect(config, fake_run, console):
    ctl = controller(config, ConfirmationGate(assume_yes=True), fake_run, console,
                     battery=battery(failing=["helmfile installed"]))

    code = ctl.execute()

    assert code == EXIT_FAILURE
    assert fake_run.calls == []
    assert not config.path(config.vault_password_file).exists()
    assert "helmfile installed" in console.file.getvalue()


def test_unreachable_hosts_abort_when_operator_refuses(config, fake_run, console, scripted_input):
    gate = ConfirmationGate(input_func=scripted_input("y", "", "", "", "n"))
    ctl = controller(config, gate, fake_run, console, ansible=FakeAnsible(reachable=False))

    code = ctl.execute(only=["secrets"])

    assert code == EXIT_FAILURE
    assert "resume with: hybridctl run --from secrets" in console.file.getvalue()


def test_second_identical_run_repeats_no_action(config, fake_run, console, monkeypatch):
    gate = ConfirmationGate(assume_yes=True)
    SecretBootstrap(config, gate, run=fake_run).run()
    config.path(config.inventory_file).write_text(
        "[k3s_servers]\ncp ansible_host=100.64.0.1 ansible_user=ubuntu\n"
        "[k3s_agents]\nw1 ansible_host=100.64.0.2\n"
    )
    monkeypatch.setattr(PipelineController, "cluster_done", lambda self: True)
    tunnel_runs = []
    original_tunnel = PipelineController.tunnel
    monkeypatch.setattr(PipelineController, "tunnel", lambda self: tunnel_runs.append(1) or original_tunnel(self))
    helmfile, ansible = FakeHelmfile(), FakeAnsible()
    ctl = controller(config, gate, fake_run, console, ansible=ansible, helmfile=helmfile,
                     cluster=lambda: ConnectedTunnelCluster())
    calls_before = len(fake_run.calls)

    assert ctl.execute() == EXIT_OK
    assert helmfile.applied == 1

    assert ctl.execute() == EXIT_OK
    assert helmfile.applied == 1
    assert tunnel_runs == []
    assert len(fake_run.calls) == calls_before
    assert ansible.playbooks == []
    assert "Deployment complete" in console.file.getvalue()


def test_declining_to_proceed_changes_nothing(config, fake_run, console, scripted_input):
    read = scripted_input("n")
    ctl = controller(config, ConfirmationGate(input_func=read), fake_run, console)

    code = ctl.execute()

    assert code == EXIT_OK
    assert "Do you want to continue?" in read.prompts[0]
    assert len(read.prompts) == 1
    assert fake_run.calls == []
    assert not config.path(config.vault_password_file).exists()
    assert "nothing was changed" in console.file.getvalue()


def test_unknown_phase_is_rejected_before_asking_to_proceed(config, fake_run, console, scripted_input):
    read = scripted_input()
    ctl = controller(config, ConfirmationGate(input_func=read), fake_run, console)

    assert ctl.execute(only=["bogus"]) == EXIT_FAILURE
    assert read.prompts == []
    assert "Unknown phase 'bogus'" in console.file.getvalue()


def test_resumed_secrets_phase_encrypts_interrupted_vault(config, fake_run, console, scripted_input):
    # proceed, password acknowledged, then stdin closes at the vault edit
    first = controller(config, ConfirmationGate(input_func=scripted_input("y", "")), fake_run, console)
    assert first.execute(only=["secrets"]) == EXIT_AWAITING_INPUT
    vault = config.path(config.vault_file)
    assert not is_vault_encrypted(vault)

    resumed = controller(config, ConfirmationGate(assume_yes=True), fake_run, console)

    assert resumed.execute(only=["secrets"]) == EXIT_OK
    assert is_vault_encrypted(vault)
    assert resumed.secrets_done()


def test_cluster_phase_fetches_kubeconfig_and_waits_for_nodes(config, fake_run, console, monkeypatch, tmp_path):
    config.path(config.inventory_file).write_text(
        "[k3s_servers]\ncp ansible_host=100.64.0.1 ansible_user=ubuntu\n"
    )
    fetched = []

    def fetch(host, remote_path, kube_dir, **kwargs):
        fetched.append((host.name, host.address, remote_path))
        return tmp_path / "k3s-cp"

    ansible = FakeAnsible()
    ctl = controller(config, ConfirmationGate(assume_yes=True), fake_run, console,
                     ansible=ansible, fetch=fetch)
    observations = iter([False, True])
    monkeypatch.setattr(
        PipelineController, "_nodes_ready",
        lambda self, kubeconfig: next(observations),
    )

    code = ctl.execute(only=["cluster"])

    assert code == EXIT_OK
    assert ansible.playbooks == [config.cluster_playbook]
    assert fetched == [("cp", "100.64.0.1", "/etc/rancher/k3s/k3s.yaml")]


def test_nodes_never_ready_is_a_convergence_failure(config, fake_run, console, monkeypatch, tmp_path):
    config.path(config.inventory_file).write_text("[k3s_servers]\ncp ansible_host=100.64.0.1\n")
    ctl = controller(config, ConfirmationGate(assume_yes=True), fake_run, console,
                     fetch=lambda *a, **k: tmp_path / "k3s-cp")
    monkeypatch.setattr(PipelineController, "_nodes_ready", lambda self, kubeconfig: False)

    code = ctl.execute(only=["cluster"])

    assert code == EXIT_FAILURE
    assert "did not converge after 3 attempt(s)" in console.file.getvalue()
