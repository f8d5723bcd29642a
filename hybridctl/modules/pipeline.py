"""The provisioning pipeline: seven ordered phases from prerequisites to health validation.

This is the only place that decides abort versus continue and turns errors
into exit codes and operator remediation text.
"""
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hybridctl.config import PipelineConfig
from hybridctl.errors import (
    AwaitingInput,
    ConvergenceTimeout,
    GroupNotFound,
    HybridctlError,
    PhaseAborted,
    PreconditionError,
    ValidationFailed,
)
from hybridctl.modules.ansible import AnsibleRunner
from hybridctl.modules.checks import ClusterFactory, default_cluster_factory, run_battery
from hybridctl.modules.confirm import ConfirmationGate
from hybridctl.modules.executor import (
    ConfirmMode,
    Phase,
    PhaseExecutor,
    PhaseState,
    PipelineLock,
    PipelineRun,
    probe_done,
    select_phases,
)
from hybridctl.modules.helmfile import Helmfile
from hybridctl.modules.inventory import HostRegistry
from hybridctl.modules.kube import ClusterClient
from hybridctl.modules.kubeconfig import fetch_kubeconfig, local_kubeconfig_path
from hybridctl.modules.mesh import hosts_outside_mesh
from hybridctl.modules.prober import Readiness, poll
from hybridctl.modules.secrets import ArtifactStatus, SecretBootstrap, is_vault_encrypted
from hybridctl.modules.tunnel import TunnelMonitor, TunnelStatus
from hybridctl.modules.validation import ValidationReport

logger = logging.getLogger("hybridctl.pipeline")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AWAITING_INPUT = 3

PHASE_NAMES = ("prereqs", "secrets", "mesh", "cluster", "services", "tunnel", "validate")

PROCEED_PROMPT = "This will make changes to your infrastructure. Do you want to continue?"

STATE_MARKERS = {
    PhaseState.NOT_STARTED: "·  not started",
    PhaseState.RUNNING: "▶️  running",
    PhaseState.DONE: "✅ done",
    PhaseState.SKIPPED: "⏭️  skipped",
    PhaseState.DECLINED: "⚠️  declined",
    PhaseState.WARNED: "⚠️  warned",
    PhaseState.AWAITING_INPUT: "⏸️  awaiting input",
    PhaseState.ABORTED: "❌ aborted",
}


class PipelineController:
    """Composes host registry, secrets, ansible, helmfile and validation into phases.

    Every collaborator can be replaced, which is how the tests drive a full
    run without touching real hosts.
    """

    def __init__(
        self,
        config: PipelineConfig,
        gate: ConfirmationGate,
        console: Optional[Console] = None,
        ansible: Optional[AnsibleRunner] = None,
        helmfile: Optional[Helmfile] = None,
        cluster: Optional[ClusterFactory] = None,
        battery: Callable[..., ValidationReport] = run_battery,
        bootstrap: Optional[SecretBootstrap] = None,
        fetch: Callable = fetch_kubeconfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.gate = gate
        self.console = console or Console()
        self.ansible = ansible or AnsibleRunner(
            config.path(config.ansible_dir),
            config.path(config.inventory_file),
            config.path(config.vault_password_file),
        )
        self.helmfile = helmfile or Helmfile(config.path(config.helmfile_dir))
        self.cluster = cluster or default_cluster_factory(config)
        self.battery = battery
        self.bootstrap = bootstrap or SecretBootstrap(config, gate)
        self.fetch = fetch
        self.sleep = sleep

    def registry(self) -> HostRegistry:
        # A fresh reader per use; the operator edits the file between phases
        return HostRegistry(self.config.path(self.config.inventory_file))

    # Probes -----------------------------------------------------------------

    def secrets_done(self) -> bool:
        return self.bootstrap.is_complete() and is_vault_encrypted(self.config.path(self.config.vault_file))

    def mesh_done(self) -> bool:
        hosts = self.registry().all_hosts()
        return bool(hosts) and not hosts_outside_mesh(hosts, self.config.mesh_cidr)

    def cluster_done(self) -> bool:
        server = self.registry().first(self.config.server_group)
        kubeconfig = local_kubeconfig_path(self.config.kube_dir, server)
        if not kubeconfig.exists():
            return False
        return ClusterClient(kubeconfig).nodes().all_ready

    def services_done(self) -> bool:
        return not self.helmfile.has_changes()

    def tunnel_done(self) -> bool:
        cluster = self.cluster()
        if not cluster.namespace_exists(self.config.tunnel_namespace):
            return False
        monitor = TunnelMonitor(cluster, self.config.tunnel_namespace, self.config.tunnel_selector)
        status, _ = monitor.status()
        return status == TunnelStatus.CONNECTION_ESTABLISHED

    # Actions ----------------------------------------------------------------

    def _report(self, battery: str) -> ValidationReport:
        report = self.battery(battery, self.config, self.cluster)
        report.render(self.console)
        return report

    def prereqs(self) -> str:
        report = self._report("prereqs")
        if report.failed:
            raise PreconditionError(
                f"{report.failed} required prerequisite(s) missing: "
                f"{', '.join(r.name for r in report.failures)}",
                remediation="Install the missing tools, then re-run 'hybridctl validate prereqs'",
            )
        return f"{report.passed} passed, {report.warnings} warning(s)"

    def secrets(self) -> str:
        results = self.bootstrap.run()
        created = [r.name for r in results if r.status == ArtifactStatus.CREATED]

        logger.info("Testing Ansible connectivity...")
        if self.ansible.ping():
            logger.info("✅ Ansible connectivity test passed")
        else:
            logger.warning("⚠️  Ansible connectivity test failed")
            logger.info("Please verify your inventory.ini and SSH access")
            if not self.gate.confirm("Continue anyway?"):
                raise PreconditionError(
                    "Ansible cannot reach every host in the registry",
                    remediation=(
                        f"cd {self.config.path(self.config.ansible_dir)} && "
                        f"ansible all -i {self.config.path(self.config.inventory_file)} -m ping"
                    ),
                )
        return f"created: {', '.join(created)}" if created else "all artifacts already present"

    def mesh(self) -> str:
        hosts = self.registry().resolve(self.config.server_group)
        logger.info(f"Deploying Tailscale on all nodes ({len(hosts)} control plane host(s))...")
        self.ansible.run_playbook(self.config.mesh_playbook)
        logger.info("✅ Tailscale deployed successfully")

        logger.warning("⚠️  IMPORTANT: Update inventory.ini with Tailscale IPs")
        logger.info("SSH to each node and run 'tailscale ip -4' to get the Tailscale IP")
        logger.info("Then update the ansible_host in inventory.ini to use Tailscale IPs for control plane")
        self.gate.acknowledge("Press Enter after updating inventory.ini with Tailscale IPs")

        outside = hosts_outside_mesh(self.registry().all_hosts(), self.config.mesh_cidr)
        if outside:
            logger.warning(
                f"⚠️  Still outside {self.config.mesh_cidr}: "
                f"{', '.join(f'{h.name} ({h.address})' for h in outside)}"
            )
        return "tailscale deployed"

    def cluster_up(self) -> str:
        # The control plane must resolve before the playbook touches any host
        server = self.registry().first(self.config.server_group)
        try:
            agents = self.registry().resolve(self.config.agent_group)
        except GroupNotFound:
            logger.warning(f"⚠️  No hosts under [{self.config.agent_group}]; deploying a single-node cluster")
            agents = []
        logger.info(f"Deploying K3s: control plane {server.name}, {len(agents)} agent(s)")
        self.ansible.run_playbook(self.config.cluster_playbook)
        logger.info("✅ K3s cluster deployed successfully")

        # Re-read: the operator may have switched the address to the mesh IP
        server = self.registry().first(self.config.server_group)
        kubeconfig = self.fetch(
            server,
            self.config.remote_kubeconfig,
            self.config.kube_dir,
            key_path=self.config.ssh_key_path,
            port=self.config.ssh_port,
            timeout=self.config.ssh_timeout,
        )

        result = poll(
            lambda: self._nodes_ready(kubeconfig),
            self.config.probe_attempts,
            self.config.probe_interval,
            name="cluster nodes",
            sleep=self.sleep,
        )
        if not result.ok:
            raise ConvergenceTimeout(
                "cluster nodes", result.attempts, result.detail,
                remediation=f"KUBECONFIG={kubeconfig} kubectl get nodes -o wide",
            )
        return f"kubeconfig: {kubeconfig}"

    def _nodes_ready(self, kubeconfig) -> Readiness:
        nodes = ClusterClient(kubeconfig).nodes()
        return Readiness(nodes.all_ready, f"{nodes.ready}/{nodes.total} Ready")

    def services(self) -> str:
        self.helmfile.diff()
        if not self.gate.confirm("Deploy all enabled services?"):
            logger.warning("⚠️  Skipping Helmfile deployment")
            return "skipped by operator"
        self.helmfile.apply()
        logger.info("✅ Infrastructure services deployed successfully")
        return "helmfile applied"

    def tunnel(self) -> str:
        logger.info("Cloudflared tunnel setup requires manual configuration:")
        logger.info("  1. Run: cloudflared tunnel login")
        logger.info("  2. Run: cloudflared tunnel create infrastructure-tunnel")
        logger.info("  3. Create Kubernetes secret with tunnel credentials")
        logger.info("  4. Configure DNS routes")
        logger.info("  5. Enable cloudflared in helmfile/config/enabled.yaml and apply")
        self.gate.acknowledge("Press Enter after completing Cloudflared setup to validate the connection")

        if not self.cluster().namespace_exists(self.config.tunnel_namespace):
            logger.warning(f"⚠️  Namespace {self.config.tunnel_namespace} not found - skipping validation")
            return "tunnel namespace not deployed"

        report = self._report("tunnel")
        if report.failed:
            raise ValidationFailed(
                "tunnel", [r.name for r in report.failures],
                remediation="hybridctl validate tunnel",
            )
        return f"{report.passed} passed, {report.warnings} warning(s)"

    def validate(self) -> str:
        report = self._report("deployment")
        if report.failed:
            raise ValidationFailed(
                "deployment", [r.name for r in report.failures],
                remediation="hybridctl validate deployment",
            )
        return f"{report.passed} passed, {report.warnings} warning(s)"

    # Composition ------------------------------------------------------------

    def phases(self) -> List[Phase]:
        c = self.config
        return [
            Phase(
                "prereqs", self.prereqs,
                description="Validate prerequisites",
                remediation="hybridctl validate prereqs",
            ),
            Phase(
                "secrets", self.secrets, probe=self.secrets_done,
                description="Configure secrets",
                remediation="hybridctl secrets status",
            ),
            Phase(
                "mesh", self.mesh, probe=self.mesh_done,
                confirm=ConfirmMode.PRE_CONFIRM,
                description="Deploy Tailscale VPN",
                prompt="Deploy Tailscale on all nodes?",
                remediation=f"cd {c.path(c.ansible_dir)} && ansible-playbook -i {c.path(c.inventory_file)} {c.mesh_playbook}",
            ),
            Phase(
                "cluster", self.cluster_up, probe=self.cluster_done,
                confirm=ConfirmMode.PRE_CONFIRM,
                description="Deploy K3s cluster",
                prompt="Deploy K3s cluster?",
                remediation=f"cd {c.path(c.ansible_dir)} && ansible-playbook -i {c.path(c.inventory_file)} {c.cluster_playbook}",
            ),
            Phase(
                "services", self.services,
                probe=self.services_done,
                description="Deploy infrastructure services via Helmfile",
                remediation=f"cd {c.path(c.helmfile_dir)} && helmfile apply",
            ),
            Phase(
                "tunnel", self.tunnel,
                probe=self.tunnel_done,
                confirm=ConfirmMode.PRE_CONFIRM | ConfirmMode.WARN_ON_FAILURE,
                description="Cloudflared tunnel configuration (optional)",
                prompt="Do you want to configure Cloudflared tunnels now?",
                remediation="hybridctl validate tunnel",
                required=False,
            ),
            Phase(
                "validate", self.validate,
                description="Validate deployment",
                remediation="hybridctl validate deployment",
            ),
        ]

    def status(self) -> Dict[str, bool]:
        """Live probe result for every phase, without side effects."""
        return {p.name: probe_done(p) for p in self.phases()}

    def print_summary(self, run: PipelineRun) -> None:
        table = Table(title="Pipeline summary")
        table.add_column("Phase")
        table.add_column("State")
        table.add_column("Duration", justify="right")
        table.add_column("Detail", overflow="fold")
        for record in run.records:
            duration = f"{record.duration:.1f}s" if record.state != PhaseState.NOT_STARTED else ""
            table.add_row(record.name, STATE_MARKERS[record.state], duration, escape(record.detail))
        self.console.print(table)

    def _print_failure(self, error: HybridctlError, phase: Optional[str] = None) -> None:
        self.console.print(f"[red]❌ {escape(str(error))}[/red]")
        output = getattr(error, "output", "")
        if output:
            self.console.print("Last output:")
            self.console.print(output, markup=False, highlight=False)
        if error.remediation:
            self.console.print(f"→ {escape(error.remediation)}")
        if phase:
            self.console.print(f"→ After fixing, resume with: hybridctl run --from {phase}")

    def execute(
        self,
        start_at: Optional[str] = None,
        only: Optional[Iterable[str]] = None,
        force: Iterable[str] = (),
    ) -> int:
        """Run the pipeline and return the process exit code."""
        executor = PhaseExecutor(self.gate)
        lock = PipelineLock(self.config.path(self.config.inventory_file).parent / self.config.lock_file)
        only = list(only) if only else None
        try:
            phases = self.phases()
            select_phases(phases, start_at, only)
            if not self.gate.confirm(PROCEED_PROMPT):
                self.console.print("Deployment cancelled; nothing was changed")
                return EXIT_OK
            with lock:
                try:
                    run = executor.run(phases, start_at=start_at, only=only, force=force)
                finally:
                    if executor.current.records:
                        self.print_summary(executor.current)
        except AwaitingInput as e:
            paused = next(
                (r.name for r in executor.current.records if r.state == PhaseState.AWAITING_INPUT),
                None,
            )
            self.console.print(f"[yellow]⏸️  {escape(str(e))}[/yellow]")
            self._print_failure_hint(e, paused)
            return EXIT_AWAITING_INPUT
        except PhaseAborted as e:
            self._print_failure(e, e.phase)
            return EXIT_FAILURE
        except HybridctlError as e:
            self._print_failure(e)
            return EXIT_FAILURE

        if run.halted_at:
            self.console.print(
                f"[yellow]⏸️  Pipeline paused at phase '{run.halted_at}'. "
                f"When ready, resume with: hybridctl run --from {run.halted_at}[/yellow]"
            )
            return EXIT_AWAITING_INPUT

        self.console.print("[green]✅ Deployment complete[/green]")
        return EXIT_OK

    def _print_failure_hint(self, error: AwaitingInput, phase: Optional[str]) -> None:
        if error.remediation:
            self.console.print(f"→ {escape(error.remediation)}")
        if phase:
            self.console.print(f"→ Or resume later with: hybridctl run --from {phase}")
