"""Tests for plugins.yaml parsing and declaration building."""

import logging
import subprocess
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

from plugins.declaration import HookEvent
from plugins.loader import CommandAction, CommandError, PluginLoader, PluginLoadError
from plugins.manifest import ActionSpec, PluginSpec, Schedule


@pytest.fixture(autouse=True)
def forget_config_modules():
    yield
    for name in [m for m in sys.modules if m.startswith("deferload_config.")]:
        del sys.modules[name]


@pytest.fixture
def write_manifest(tmp_path):
    def _write(content: str) -> Path:
        path = tmp_path / "plugins.yaml"
        path.write_text(content)
        return path

    return _write


class TestManifestSchema:
    def test_defaults(self):
        spec = PluginSpec(source="stevearc/conform.nvim")
        assert spec.resolved_name == "conform.nvim"
        assert spec.when == Schedule.LATER
        assert spec.install is True
        assert spec.depends == []

    def test_explicit_name(self):
        assert PluginSpec(source="user/repo", name="alias").resolved_name == "alias"

    def test_invalid_name(self):
        with pytest.raises(ValidationError):
            PluginSpec(source="user/repo", name="bad name")

    def test_empty_source(self):
        with pytest.raises(ValidationError):
            PluginSpec(source="  ")

    def test_run_string_is_split(self):
        assert ActionSpec(run="make -j 4").run == ["make", "-j", "4"]

    def test_action_needs_exactly_one_kind(self):
        with pytest.raises(ValidationError):
            ActionSpec()
        with pytest.raises(ValidationError):
            ActionSpec(call="mod:fn", run=["make"])

    def test_call_format(self):
        with pytest.raises(ValidationError):
            ActionSpec(call="nodots")

    def test_configure_shorthand(self):
        spec = PluginSpec(source="a/b", configure="cfg:setup")
        assert spec.configure.call == "cfg:setup"

    def test_unknown_hook_event(self):
        with pytest.raises(ValidationError):
            PluginSpec(source="a/b", hooks={"pre_install": {"run": "make"}})


class TestLoadManifest:
    def test_missing_file(self, tmp_path):
        with pytest.raises(PluginLoadError, match="not found"):
            PluginLoader().load_manifest(tmp_path / "plugins.yaml")

    def test_invalid_yaml(self, write_manifest):
        with pytest.raises(PluginLoadError, match="Invalid YAML"):
            PluginLoader().load_manifest(write_manifest("plugins: [unclosed"))

    def test_invalid_entry(self, write_manifest):
        with pytest.raises(PluginLoadError, match="Invalid manifest"):
            PluginLoader().load_manifest(write_manifest("plugins:\n  - when: soon\n"))

    def test_empty_file(self, write_manifest):
        assert PluginLoader().load_manifest(write_manifest("")).plugins == []

    def test_top_level_list(self, write_manifest):
        manifest = PluginLoader().load_manifest(write_manifest("- source: a/one\n- source: b/two\n"))
        assert [p.resolved_name for p in manifest.plugins] == ["one", "two"]


class TestBuild:
    def test_entries_in_file_order(self, write_manifest):
        path = write_manifest(
            """
plugins:
  - source: nvim-treesitter/nvim-treesitter
    when: now_if_args
    checkout: v0.9.2
  - source: rafamadriz/friendly-snippets
  - source: netrw
    install: false
    when: now
"""
        )

        entries = PluginLoader().load(path)

        assert [e.declaration.name for e in entries] == ["nvim-treesitter", "friendly-snippets", "netrw"]
        assert [e.schedule for e in entries] == [Schedule.NOW_IF_ARGS, Schedule.LATER, Schedule.NOW]
        assert entries[0].declaration.checkout == "v0.9.2"
        assert not entries[2].declaration.is_installable

    def test_dependencies_linked_by_name_or_source(self, write_manifest):
        path = write_manifest(
            """
plugins:
  - source: nvim-telescope/telescope.nvim
    depends: [plenary.nvim, nvim-tree/nvim-web-devicons]
  - source: nvim-lua/plenary.nvim
  - source: nvim-tree/nvim-web-devicons
"""
        )

        entries = PluginLoader().load(path)
        telescope, plenary, devicons = (e.declaration for e in entries)

        assert telescope.dependencies == [plenary, devicons]

    def test_undeclared_dependency_created_from_source(self, write_manifest):
        path = write_manifest(
            """
plugins:
  - source: hrsh7th/nvim-cmp
    depends: [hrsh7th/cmp-buffer]
"""
        )

        (entry,) = PluginLoader().load(path)
        (dep,) = entry.declaration.dependencies

        assert dep.name == "cmp-buffer"
        assert dep.source == "hrsh7th/cmp-buffer"

    def test_disabled_plugins_skipped(self, write_manifest):
        path = write_manifest("plugins:\n  - source: a/one\n  - source: b/two\n")
        entries = PluginLoader(disabled_plugins=["one"]).load(path)
        assert [e.declaration.name for e in entries] == ["two"]

    def test_disabled_dependency_still_linked_and_logged(self, write_manifest, caplog):
        path = write_manifest(
            """
plugins:
  - source: nvim-telescope/telescope.nvim
    depends: [plenary.nvim]
  - source: nvim-lua/plenary.nvim
"""
        )

        with caplog.at_level(logging.INFO, logger="plugins.loader"):
            (entry,) = PluginLoader(disabled_plugins=["plenary.nvim"]).load(path)

        assert [d.name for d in entry.declaration.dependencies] == ["plenary.nvim"]
        assert "plenary.nvim is disabled but still loaded as a dependency of telescope.nvim" in caplog.text


class TestActions:
    def test_call_from_config_dir(self, tmp_path, write_manifest):
        (tmp_path / "editor_setup.py").write_text(
            "CALLS = []\n\ndef conform():\n    CALLS.append('conform')\n"
        )
        path = write_manifest(
            """
plugins:
  - source: stevearc/conform.nvim
    configure: editor_setup:conform
"""
        )

        (entry,) = PluginLoader(config_dir=tmp_path).load(path)
        entry.declaration.configure()

        assert sys.modules["deferload_config.editor_setup"].CALLS == ["conform"]

    def test_call_from_import_path(self):
        assert PluginLoader().resolve_callable("os.path:exists") is __import__("os").path.exists

    def test_dotted_call(self):
        assert PluginLoader().resolve_callable("os.getcwd") is __import__("os").getcwd

    def test_missing_module(self):
        with pytest.raises(PluginLoadError, match="Cannot import"):
            PluginLoader().resolve_callable("no_such_module_xyz:setup")

    def test_missing_attribute(self):
        with pytest.raises(PluginLoadError, match="not found"):
            PluginLoader().resolve_callable("os:no_such_function")

    def test_not_callable(self):
        with pytest.raises(PluginLoadError, match="not callable"):
            PluginLoader().resolve_callable("os:sep")

    def test_broken_config_module(self, tmp_path):
        (tmp_path / "broken.py").write_text("raise RuntimeError('oops')\n")
        with pytest.raises(PluginLoadError, match="Failed to load"):
            PluginLoader(config_dir=tmp_path).resolve_callable("broken:setup")
        assert "deferload_config.broken" not in sys.modules

    def test_run_hook_builds_command(self, tmp_path, write_manifest):
        path = write_manifest(
            """
plugins:
  - source: nvim-treesitter/nvim-treesitter
    hooks:
      post_checkout: {run: "make parsers"}
"""
        )

        (entry,) = PluginLoader(packages_dir=tmp_path / "pack", command_timeout=60).load(path)
        hook = entry.declaration.hook_for(HookEvent.POST_CHECKOUT)

        assert isinstance(hook, CommandAction)
        assert hook.argv == ["make", "parsers"]
        assert hook.cwd == tmp_path / "pack" / "nvim-treesitter"
        assert hook.timeout == 60
        assert entry.declaration.hook_for(HookEvent.POST_INSTALL) is None


class TestCommandAction:
    def test_runs_in_existing_checkout(self, tmp_path, monkeypatch):
        seen = {}

        def fake_run(argv, **kwargs):
            seen.update(kwargs, argv=argv)
            return subprocess.CompletedProcess(argv, 0, "", "")

        monkeypatch.setattr(subprocess, "run", fake_run)
        CommandAction(["make"], cwd=tmp_path)()

        assert seen["argv"] == ["make"]
        assert seen["cwd"] == tmp_path

    def test_missing_checkout_runs_in_current_dir(self, tmp_path, monkeypatch):
        seen = {}

        def fake_run(argv, **kwargs):
            seen.update(kwargs)
            return subprocess.CompletedProcess(argv, 0, "", "")

        monkeypatch.setattr(subprocess, "run", fake_run)
        CommandAction(["make"], cwd=tmp_path / "missing")()

        assert seen["cwd"] is None

    def test_nonzero_exit(self, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run", lambda argv, **kw: subprocess.CompletedProcess(argv, 2, "", "no rule")
        )
        with pytest.raises(CommandError, match="exited with 2: no rule"):
            CommandAction(["make"])()

    def test_missing_program(self, monkeypatch):
        def fake_run(argv, **kwargs):
            raise FileNotFoundError(argv[0])

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(CommandError):
            CommandAction(["nonexistent-tool"])()


def test_find_manifest_in_parent(tmp_path):
    (tmp_path / "plugins.yaml").write_text("plugins: []\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert PluginLoader.find_manifest(nested) == tmp_path / "plugins.yaml"
