"""Tests for manifest loading and the bundled manifests."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from types import MappingProxyType

import pytest

from provctl import manifest as manifest_module
from provctl.config import AppConfig
from provctl.converge import ResourceKind
from provctl.errors import ValidationError
from provctl.manifest import (
    Manifest,
    ManifestError,
    OctalInt,
    host_facts,
    list_bundled,
    load_manifest,
    normalize_key,
    parse_manifest,
    parse_mode,
    read_bundled,
)
from provctl.templates import TemplateEngine

FACTS = {"arch": "amd64", "hostname": "logs01"}


def _parse(text: str, config: AppConfig) -> Manifest:
    return parse_manifest(
        text,
        source="inline",
        config=config,
        templates=TemplateEngine.with_overrides(None),
        facts=FACTS,
    )


def test_bundled_manifests_are_listed() -> None:
    """The three bundled manifests ship with the package."""
    assert list_bundled() == ["login-banner", "logstack", "reposhare"]
    assert "kind: dconf" in read_bundled("login-banner")


def test_unknown_bundled_manifest() -> None:
    """Asking for a missing bundled manifest names the available ones."""
    with pytest.raises(ManifestError, match="available: login-banner, logstack, reposhare"):
        read_bundled("webserver")


def test_reposhare_manifest(config: AppConfig) -> None:
    """Three repositories each get a directory, service, port and repo file."""
    manifest = load_manifest(bundled="reposhare", config=config, facts=FACTS)

    assert manifest.source == "bundled:reposhare"
    assert len(manifest.resources) == 21
    by_key = {resource.key: resource for resource in manifest.resources}

    service = by_key["service:reposhare-7.9.service"]
    assert service.attr("path") == str(config.paths.unit_dir / "reposhare-7.9.service")
    assert "ExecStart=/usr/bin/python3 -m http.server 6558 --directory /srv/repos/7.9" in service.attr(
        "content"
    )
    assert "NoNewPrivileges" not in service.attr("content")
    assert service.depends_on == ("package:python3", "repo_metadata:/srv/repos/7.9")

    repo = by_key["repo:local-8.10"]
    assert repo.attr("path") == str(config.paths.repos_dir / "local-8.10.repo")
    assert repo.attr("content") == (
        "[local-8.10]\n"
        "name=Local 8.10\n"
        "baseurl=http://localhost:6559/\n"
        "enabled=1\n"
        "gpgcheck=0\n"
    )

    readme = by_key["file:/srv/repos/9.6/readme.txt"]
    assert readme.attr("mode") == 0o644
    assert readme.attr("content") == "Dummy package\n"
    assert by_key["firewall_port:6560/tcp"].attr("port") == 6560


def test_logstack_manifest_defaults(config: AppConfig) -> None:
    """Release URLs use the host architecture and optional ports are included."""
    manifest = load_manifest(bundled="logstack", config=config, facts=FACTS)
    by_key = {resource.key: resource for resource in manifest.resources}

    assert len(manifest.resources) == 28
    assert manifest.dropped == ()
    loki = by_key["binary:/usr/local/bin/loki"]
    assert loki.attr("url") == (
        "https://github.com/grafana/loki/releases/download/v2.9.7/loki-linux-amd64.zip"
    )
    assert loki.attr("member") == "loki-linux-amd64"
    assert loki.attr("mode") == 0o755

    assert by_key["firewall_port:3000/tcp"].attr("port") == 3000
    assert "firewall_port:3100/tcp" in by_key
    assert "service:loki.service" in by_key["service:promtail.service"].depends_on
    assert "retention_period: 14d" in by_key["file:/etc/loki/loki-config.yaml"].attr("content")
    grafana = by_key["service:grafana-server.service"]
    assert grafana.attr("content") is None
    assert grafana.attr("restart_on_change") is True
    assert by_key["repo:grafana"].attr("content").startswith("[grafana]\nname=Grafana OSS\n")


def test_logstack_config_vars_override(config: AppConfig) -> None:
    """Configured variables win and flow into derived variables and conditions."""
    overridden = replace(
        config,
        vars=MappingProxyType(
            {"loki_version": "3.0.0", "open_loki_port": "no", "retention_days": 30}
        ),
    )

    manifest = load_manifest(bundled="logstack", config=overridden, facts=FACTS)
    by_key = {resource.key: resource for resource in manifest.resources}

    assert manifest.variables["promtail_version"] == "3.0.0"
    assert "v3.0.0/promtail-linux-amd64.zip" in by_key["binary:/usr/local/bin/promtail"].attr("url")
    assert manifest.dropped == ("firewall_port:3100/tcp",)
    assert "firewall_port:3100/tcp" not in by_key
    assert "retention_period: 30d" in by_key["file:/etc/loki/loki-config.yaml"].attr("content")


def test_yaml_false_disables_optional_port(config: AppConfig) -> None:
    """An unquoted YAML 'no' (boolean false) also drops the conditional port."""
    overridden = replace(config, vars=MappingProxyType({"open_loki_port": False}))

    manifest = load_manifest(bundled="logstack", config=overridden, facts=FACTS)

    assert manifest.dropped == ("firewall_port:3100/tcp",)


def test_login_banner_manifest(config: AppConfig) -> None:
    """The banner keyfile, lock and dconf database live under the dconf dir."""
    manifest = load_manifest(bundled="login-banner", config=config, facts=FACTS)
    by_key = {resource.key: resource for resource in manifest.resources}
    keyfiles = config.paths.dconf_dir / "gdm.d"

    banner = by_key[f"file:{keyfiles / '00-login-banner'}"]
    assert "banner-message-enable=true" in banner.attr("content")
    assert "Authorised use only." in banner.attr("content")
    database = by_key["dconf:gdm"]
    assert database.attr("db_dir") == str(config.paths.dconf_dir)
    assert database.depends_on == (
        "package:dconf",
        f"file:{keyfiles / '00-login-banner'}",
        f"file:{keyfiles / 'locks' / '00-login-banner-lock'}",
    )


def test_manifest_file_is_read_from_config(tmp_path: Path, config: AppConfig) -> None:
    """Without arguments the configured manifest path is used."""
    config.manifest.write_text("resources:\n  - kind: package\n    name: curl\n")

    manifest = load_manifest(config=config, facts=FACTS)

    assert manifest.source == str(config.manifest)
    assert [resource.key for resource in manifest.resources] == ["package:curl"]


def test_missing_manifest_file(tmp_path: Path, config: AppConfig) -> None:
    """A missing file is a ManifestError."""
    with pytest.raises(ManifestError, match="not found"):
        load_manifest(tmp_path / "absent.yml", config=config)


def test_invalid_yaml_and_top_level(config: AppConfig) -> None:
    """Unparseable or non-mapping documents are rejected."""
    with pytest.raises(ManifestError, match="Invalid YAML"):
        _parse("resources: [", config)
    with pytest.raises(ManifestError, match="mapping at the top level"):
        _parse("- kind: package\n", config)


def test_all_problems_are_collected(config: AppConfig) -> None:
    """Loader and validation problems are reported together."""
    text = """
extra: 1
resources:
  - kind: cronjob
    name: nightly
  - kind: package
  - kind: directory
    path: /srv/data
    mode: rwx
  - kind: file
    path: /srv/data/a.txt
    content: x
    template: dconf/login-banner.j2
  - kind: file
    path: /srv/data/b.txt
    content: x
    when: undefined_flag == "yes"
  - kind: package
    name: jq
    depends_on: ["package:missing"]
"""

    with pytest.raises(ValidationError) as excinfo:
        _parse(text, config)

    problems = "\n".join(excinfo.value.problems)
    assert "unknown top-level keys: extra." in problems
    assert "resource #1: unknown resource kind 'cronjob'." in problems
    assert "resource #2 (package): missing 'name'." in problems
    assert "invalid mode 'rwx'" in problems
    assert "declare either 'content' or 'template', not both" in problems
    assert "resource #5 (file)" in problems
    assert "undeclared resource 'package:missing'" in problems


def test_dependencies_on_dropped_resources_are_removed(config: AppConfig) -> None:
    """Resources skipped by a condition do not leave dangling dependencies."""
    text = """
vars:
  open_port: false
resources:
  - kind: package
    name: firewalld
  - kind: firewall_port
    port: 3100
    when: open_port
  - kind: service
    name: loki
    depends_on: ["package:firewalld", "firewall_port:3100"]
"""

    manifest = _parse(text, config)

    assert manifest.dropped == ("firewall_port:3100/tcp",)
    service = manifest.resources[-1]
    assert service.kind is ResourceKind.SERVICE_UNIT
    assert service.depends_on == ("package:firewalld",)


def test_template_context_and_variable_chaining(config: AppConfig) -> None:
    """Variables can reference facts and earlier variables."""
    text = """
vars:
  base: /opt/{{ hostname }}
  bin: "{{ base }}/bin"
resources:
  - kind: file
    path: "{{ base }}/motd"
    content: "arch={{ arch }} bin={{ bin }}\\n"
    mode: 0640
"""

    manifest = _parse(text, config)

    resource = manifest.resources[0]
    assert resource.identity == "/opt/logs01/motd"
    assert resource.attr("content") == "arch=amd64 bin=/opt/logs01/bin\n"
    assert resource.attr("mode") == 0o640
    assert manifest.variables["unit_dir"] == str(config.paths.unit_dir)


def test_parse_mode() -> None:
    """Modes accept octal strings and integers written in YAML octal."""
    assert parse_mode("0755") == 0o755
    assert parse_mode("644") == 0o644
    assert parse_mode(OctalInt(0o600)) == 0o600
    assert parse_mode(0) == 0
    with pytest.raises(ValueError, match="invalid mode"):
        parse_mode("rwx")
    with pytest.raises(ValueError, match="invalid mode"):
        parse_mode(True)
    with pytest.raises(ValueError, match="write '0755' instead"):
        parse_mode(755)


def test_unquoted_decimal_mode_is_rejected(config: AppConfig) -> None:
    """``mode: 755`` is a decimal integer and fails validation."""
    text = """
resources:
  - kind: directory
    path: /srv/repos
    mode: 755
  - kind: directory
    path: /srv/share
    mode: 0755
"""

    with pytest.raises(ValidationError) as excinfo:
        _parse(text, config)

    assert len(excinfo.value.problems) == 1
    assert "resource #1 (directory:/srv/repos): invalid mode 755" in excinfo.value.problems[0]


def test_unsupported_architecture_is_a_validation_problem(
    monkeypatch: pytest.MonkeyPatch,
    config: AppConfig,
) -> None:
    """Release downloads need a known architecture; other manifests still load."""
    monkeypatch.setattr(manifest_module.platform, "machine", lambda: "ppc64le")
    facts = host_facts()

    assert facts["machine"] == "ppc64le"
    with pytest.raises(ValidationError) as excinfo:
        load_manifest(bundled="logstack", config=config, facts=facts)
    problems = "\n".join(excinfo.value.problems)
    assert "unsupported architecture 'ppc64le' (supported: amd64, arm64)" in problems

    reposhare = load_manifest(bundled="reposhare", config=config, facts=facts)
    assert len(reposhare.resources) == 21


def test_host_facts_map_release_architecture(monkeypatch: pytest.MonkeyPatch) -> None:
    """x86_64 and aarch64 use release naming."""
    monkeypatch.setattr(manifest_module.platform, "machine", lambda: "x86_64")
    assert host_facts()["arch"] == "amd64"
    monkeypatch.setattr(manifest_module.platform, "machine", lambda: "aarch64")
    assert host_facts()["arch"] == "arm64"


def test_normalize_key() -> None:
    """Dependency keys get unit and protocol suffixes."""
    assert normalize_key("service:loki") == "service:loki.service"
    assert normalize_key("service:loki.timer") == "service:loki.timer"
    assert normalize_key("firewall_port:3000") == "firewall_port:3000/tcp"
    assert normalize_key("Firewall-Port:53/udp") == "firewall_port:53/udp"
    assert normalize_key("bogus:x") == "bogus:x"
    assert normalize_key("plain") == "plain"
