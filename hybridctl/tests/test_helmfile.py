import pytest

from hybridctl.errors import ConfigurationError, ExternalToolError
from hybridctl.modules import helmfile
from hybridctl.modules.helmfile import Helmfile, find_helmfile
from hybridctl.modules.runner import CommandResult


def test_gotmpl_wins_over_plain_yaml(tmp_path):
    for name in ("helmfile.yaml", "helmfile.gotmpl", "helmfile.yaml.gotmpl"):
        (tmp_path / name).write_text("releases: []\n")
    assert find_helmfile(tmp_path).name == "helmfile.yaml.gotmpl"

    (tmp_path / "helmfile.yaml.gotmpl").unlink()
    assert find_helmfile(tmp_path).name == "helmfile.gotmpl"

    (tmp_path / "helmfile.gotmpl").unlink()
    assert find_helmfile(tmp_path).name == "helmfile.yaml"


def test_missing_helmfile_lists_candidates(tmp_path):
    with pytest.raises(ConfigurationError) as exc:
        find_helmfile(tmp_path)
    assert "helmfile.yaml.gotmpl" in exc.value.remediation


@pytest.fixture
def diff_exit(tmp_path, monkeypatch):
    (tmp_path / "helmfile.yaml").write_text("releases: []\n")
    calls = []

    def set_code(code):
        def fake(argv, **kwargs):
            calls.append(argv)
            return CommandResult(argv, code, "", "Error: release failed" if code == 1 else "")
        monkeypatch.setattr(helmfile, "run_command", fake)
        return calls

    return set_code


def test_clean_diff_means_no_changes(tmp_path, diff_exit):
    calls = diff_exit(0)
    assert Helmfile(tmp_path).has_changes() is False
    assert "--detailed-exitcode" in calls[0]


def test_pending_diff_means_changes(tmp_path, diff_exit):
    diff_exit(2)
    assert Helmfile(tmp_path).has_changes() is True


def test_broken_diff_is_a_tool_error(tmp_path, diff_exit):
    diff_exit(1)
    with pytest.raises(ExternalToolError) as exc:
        Helmfile(tmp_path).has_changes()
    assert "release failed" in exc.value.output
