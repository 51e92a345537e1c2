"""Tests for the deferload command line."""

import sys

import pytest
from typer.testing import CliRunner

from startup import __version__
from startup.cli import app

runner = CliRunner()

MANIFEST = """
plugins:
  - source: tpope/vim-sensible
    when: now
  - source: rafamadriz/friendly-snippets
    when: later
  - source: nvim-treesitter/nvim-treesitter
    when: now_if_args
"""


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    for var in ["DEFERLOAD_MANIFEST", "DEFERLOAD_PACKAGES_DIR", "DEFERLOAD_LOG_LEVEL", "LOG_LEVEL"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    for name in [m for m in sys.modules if m.startswith("deferload_config.")]:
        del sys.modules[name]


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "deferload.toml"
    path.write_text(f'[installer]\npackages_dir = "{tmp_path / "pack"}"\n')
    return path


@pytest.fixture
def manifest(tmp_path):
    path = tmp_path / "plugins.yaml"
    path.write_text(MANIFEST)
    return path


def invoke(config_file, *args):
    return runner.invoke(app, ["--config", str(config_file), *args])


def test_version(config_file):
    result = invoke(config_file, "version")
    assert result.exit_code == 0
    assert __version__ in result.output


def test_invalid_config(tmp_path):
    bad = tmp_path / "bad.toml"
    bad.write_text("[scheduler]\nworkers = 2\n")

    result = runner.invoke(app, ["--config", str(bad), "version"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_config_show(config_file):
    result = invoke(config_file, "config-show")
    assert result.exit_code == 0
    assert "Current Configuration" in result.output


class TestPlan:
    def test_without_file_argument(self, config_file, manifest):
        result = invoke(config_file, "plan", "-m", str(manifest))

        assert result.exit_code == 0
        assert "File argument: no" in result.output
        assert "now:1" in result.output
        assert "later:2" in result.output
        assert "now:2" not in result.output

    def test_with_file_argument(self, config_file, manifest):
        result = invoke(config_file, "plan", "main.py", "-m", str(manifest))

        assert result.exit_code == 0
        assert "File argument: yes" in result.output
        assert "now:2" in result.output
        assert "later:2" not in result.output

    def test_manifest_found_in_cwd(self, config_file, manifest):
        result = invoke(config_file, "plan")
        assert result.exit_code == 0
        assert "vim-sensible" in result.output

    def test_missing_manifest(self, config_file, tmp_path):
        result = invoke(config_file, "plan", "-m", str(tmp_path / "nope.yaml"))
        assert result.exit_code == 1

    def test_dependency_listed_later_in_manifest(self, config_file, tmp_path):
        path = tmp_path / "forward.yaml"
        path.write_text(
            """
plugins:
  - source: nvim-telescope/telescope.nvim
    when: later
    depends: [plenary.nvim]
  - source: nvim-lua/plenary.nvim
    when: now
"""
        )

        result = invoke(config_file, "plan", "-m", str(path))

        assert result.exit_code == 0, result.output
        assert "Not declared" not in result.output

    def test_cycle_reported(self, config_file, tmp_path):
        path = tmp_path / "cycle.yaml"
        path.write_text(
            """
plugins:
  - source: a/one
    depends: [two]
  - source: b/two
    depends: [one]
"""
        )

        result = invoke(config_file, "plan", "-m", str(path))

        assert result.exit_code == 1
        assert "Not declared" in result.output


class TestRun:
    def test_runs_both_tiers(self, config_file, manifest):
        result = invoke(config_file, "run", "--no-install", "-m", str(manifest))

        assert result.exit_code == 0, result.output
        assert "First paint after 1 now-tier task(s)" in result.output
        for name in ["vim-sensible", "friendly-snippets", "nvim-treesitter"]:
            assert name in result.output

    def test_failing_configure_exits_nonzero(self, config_file, tmp_path):
        (tmp_path / "cli_failing_setup.py").write_text("def setup():\n    raise RuntimeError('kaboom')\n")
        path = tmp_path / "plugins.yaml"
        path.write_text(
            """
plugins:
  - source: stevearc/conform.nvim
    when: now
    configure: cli_failing_setup:setup
  - source: netrw
    install: false
"""
        )

        result = invoke(config_file, "run", "--no-install", "-m", str(path))

        assert result.exit_code == 1
        assert "kaboom" in result.output


class TestPluginsCommands:
    def test_list(self, config_file, manifest):
        result = invoke(config_file, "plugins", "list", "-m", str(manifest))

        assert result.exit_code == 0
        assert "Declared Plugins" in result.output
        assert "Total: 3 plugins" in result.output

    def test_show(self, config_file, manifest):
        result = invoke(config_file, "plugins", "show", "nvim-treesitter", "-m", str(manifest))

        assert result.exit_code == 0
        assert "now_if_args" in result.output

    def test_show_unknown(self, config_file, manifest):
        result = invoke(config_file, "plugins", "show", "missing", "-m", str(manifest))
        assert result.exit_code == 1

    def test_clean_removes_undeclared_checkouts(self, config_file, manifest, tmp_path):
        pack = tmp_path / "pack"
        (pack / "vim-sensible" / ".git").mkdir(parents=True)
        (pack / "old-plugin" / ".git").mkdir(parents=True)

        result = invoke(config_file, "plugins", "clean", "--yes", "-m", str(manifest))

        assert result.exit_code == 0
        assert not (pack / "old-plugin").exists()
        assert (pack / "vim-sensible").exists()

    def test_clean_keeps_disabled_checkouts(self, manifest, tmp_path):
        pack = tmp_path / "pack"
        (pack / "friendly-snippets" / ".git").mkdir(parents=True)
        config_file = tmp_path / "disabled.toml"
        config_file.write_text(
            f'[startup]\ndisabled_plugins = ["friendly-snippets"]\n\n[installer]\npackages_dir = "{pack}"\n'
        )

        result = invoke(config_file, "plugins", "clean", "--yes", "-m", str(manifest))

        assert result.exit_code == 0
        assert (pack / "friendly-snippets").exists()
