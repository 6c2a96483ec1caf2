"""
Tests for configuration — manifest loading, flag resolution, run
settings and template rendering.
"""

from pathlib import Path

import pytest

from cortado.core.config.loader import (
    BUNDLED_MANIFEST,
    find_manifest_file,
    load_manifest,
    parse_manifest,
    resolve_manifest_path,
)
from cortado.core.config.settings import load_settings, parse_bool, resolve_flags
from cortado.core.config.templates import TEMPLATES_DIR, load_template, placeholders, render
from cortado.core.engine.planner import build_plan
from cortado.core.errors import ConfigError, ProbeError, TemplateError


# ── Loader ──────────────────────────────────────────────────────


class TestLoader:
    def test_minimal(self):
        manifest = parse_manifest("name: tiny\n")
        assert manifest.name == "tiny"
        assert manifest.packages == []

    def test_empty_document(self):
        assert parse_manifest("").name == "cortado"

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            parse_manifest("packages: [unclosed\n")

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError, match="mapping"):
            parse_manifest("- a\n- b\n")

    def test_unknown_flag(self):
        text = "packages:\n  - name: x\n    when: nope\n    packages: [a]\n"
        with pytest.raises(ConfigError, match="unknown flag"):
            parse_manifest(text)

    def test_command_needs_guard(self):
        text = "commands:\n  - name: x\n    argv: [echo, hi]\n"
        with pytest.raises(ConfigError, match="unless"):
            parse_manifest(text)

    def test_file_needs_content_or_source(self):
        text = "files:\n  - name: x\n    path: /tmp/x\n"
        with pytest.raises(ConfigError, match="content"):
            parse_manifest(text)

    def test_block_needs_marker(self):
        text = "files:\n  - name: x\n    path: ~/x\n    content: y\n    strategy: block\n"
        with pytest.raises(ConfigError, match="marker"):
            parse_manifest(text)

    def test_invalid_mode(self):
        text = "files:\n  - name: x\n    path: /etc/x\n    content: y\n    mode: rw-r--r--\n"
        with pytest.raises(ConfigError, match="mode"):
            parse_manifest(text)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_manifest(tmp_path / "cortado.yml")

    def test_find_walks_up(self, tmp_path: Path):
        (tmp_path / "cortado.yml").write_text("name: found\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_manifest_file(nested) == tmp_path / "cortado.yml"

    def test_explicit_path_wins(self, tmp_path: Path):
        path = tmp_path / "other.yml"
        assert resolve_manifest_path(path) == path


class TestBundledManifest:
    def test_loads(self):
        manifest = load_manifest(BUNDLED_MANIFEST)
        assert {f.name for f in manifest.flags} >= {"docker", "bluetooth", "devops", "nm_dns"}

    @pytest.mark.parametrize("enabled", [True, False])
    def test_builds_with_all_flags(self, runner, target, enabled):
        manifest = load_manifest(BUNDLED_MANIFEST)
        environ = {flag.env_var: "1" if enabled else "0" for flag in manifest.flags}
        config = load_settings(manifest, environ, runner, target=target)
        plan = build_plan(manifest, config, runner)
        assert plan.ids[:5] == [
            "network:NetworkManager",
            "network:systemd-resolved",
            "network:resolv-stub",
            "network:online",
            "pacman:sync",
        ]
        assert ("service:bluetooth" in plan.ids) is enabled
        assert ("service:docker" in plan.ids) is enabled
        assert runner.calls == []

    def test_every_template_renders(self, runner, target):
        manifest = load_manifest(BUNDLED_MANIFEST)
        environ = {flag.env_var: "1" for flag in manifest.flags}
        plan = build_plan(manifest, load_settings(manifest, environ, runner, target=target), runner)
        for step in plan:
            if step.action.adapter == "file":
                assert not placeholders(step.action.params["content"]), step.id


# ── Flags and settings ──────────────────────────────────────────


MANIFEST = "flags:\n  - name: docker\n    default: true\n  - name: devops\n"


class TestFlags:
    @pytest.mark.parametrize("raw,expected", [
        ("1", True), ("true", True), ("YES", True), ("on", True),
        ("0", False), ("false", False), ("no", False), ("", False),
    ])
    def test_parse_bool(self, raw, expected):
        assert parse_bool(raw, "ENABLE_X") is expected

    def test_parse_bool_rejects_garbage(self):
        with pytest.raises(ConfigError, match="ENABLE_DOCKER"):
            parse_bool("maybe", "ENABLE_DOCKER")

    def test_defaults(self):
        assert resolve_flags(parse_manifest(MANIFEST), {}) == {"docker": True, "devops": False}

    def test_env_overrides(self):
        flags = resolve_flags(parse_manifest(MANIFEST), {"ENABLE_DOCKER": "0", "ENABLE_DEVOPS": "1"})
        assert flags == {"docker": False, "devops": True}

    def test_env_var_name(self):
        manifest = parse_manifest("flags:\n  - name: nm-dns\n")
        assert manifest.get_flag("nm-dns").env_var == "ENABLE_NM_DNS"

    def test_gated_by(self):
        text = MANIFEST + "packages:\n  - name: docker\n    when: docker\n    packages: [docker]\n"
        assert parse_manifest(text).gated_by("docker") == ["packages:docker"]


class TestSettings:
    def test_resolves_target(self, runner, home):
        runner.script(["getent", "passwd", "alice"], stdout=f"alice:x:1000:1000::{home}:/bin/bash\n")
        config = load_settings(parse_manifest(MANIFEST), {"SUDO_USER": "alice"}, runner)
        assert config.target.name == "alice"
        assert config.flags["docker"] is True

    def test_unknown_target(self, runner):
        runner.script(["getent", "passwd"], returncode=2)
        with pytest.raises(ProbeError):
            load_settings(parse_manifest(MANIFEST), {"USER": "ghost"}, runner)

    def test_bad_flag_value(self, runner, target):
        with pytest.raises(ConfigError):
            load_settings(parse_manifest(MANIFEST), {"ENABLE_DOCKER": "sure"}, runner, target=target)

    def test_jobs_validated(self, runner, target):
        with pytest.raises(ConfigError):
            load_settings(parse_manifest(MANIFEST), {}, runner, target=target, jobs=0)

    def test_enabled(self, make_config):
        config = make_config(docker=True)
        assert config.enabled(None)
        assert config.enabled("docker")
        with pytest.raises(ConfigError):
            config.enabled("nope")


# ── Templates ───────────────────────────────────────────────────


class TestTemplates:
    def test_render(self):
        assert render("hi {{ user }} {{home}}", {"user": "alice", "home": "/h"}) == "hi alice /h"

    def test_shell_variables_untouched(self):
        assert render("bind = $mod, Q, exec {{ terminal }}", {"terminal": "alacritty"}) == (
            "bind = $mod, Q, exec alacritty"
        )

    def test_missing(self):
        with pytest.raises(TemplateError, match="browser"):
            render("{{ browser }}", {}, name="hyprland")

    def test_bundled_template(self):
        assert "terminal" in placeholders(load_template("fuzzel.ini"))

    def test_escape_rejected(self):
        with pytest.raises(TemplateError, match="escapes"):
            load_template("../manifest.yml")

    def test_missing_template(self, tmp_path: Path):
        with pytest.raises(TemplateError):
            load_template("nope.conf", templates_dir=tmp_path)

    def test_templates_dir_exists(self):
        assert TEMPLATES_DIR.is_dir()
