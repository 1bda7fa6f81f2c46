"""Jinja2 template rendering for provctl manifests and managed files."""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)

from .errors import ProvctlError


class TemplateRenderError(ProvctlError):
    """Raised when a template cannot be located or rendered."""


def _build_environment(override_dir: Path | None) -> Environment:
    loaders: list[FileSystemLoader | PackageLoader] = []
    if override_dir is not None and override_dir.is_dir():
        loaders.append(FileSystemLoader(str(override_dir)))
    loaders.append(PackageLoader("provctl", "templates"))
    return Environment(
        loader=ChoiceLoader(loaders),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        autoescape=False,
    )


@dataclass(slots=True)
class TemplateEngine:
    """Render built-in or operator-supplied templates."""

    environment: Environment
    override_dir: Path | None = None

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine where *override_dir* shadows the built-in templates."""
        return cls(environment=_build_environment(override_dir), override_dir=override_dir)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render the named template with *context*."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render template '{template_name}': {exc}") from exc

    def render_string(self, source: str, context: Mapping[str, object]) -> str:
        """Render an inline template string with *context*."""
        if "{{" not in source and "{%" not in source:
            return source
        try:
            return self.environment.from_string(source).render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {source!r}: {exc}") from exc

    def evaluate(self, expression: str, context: Mapping[str, object]) -> object:
        """Evaluate a Jinja2 expression such as ``open_loki_port == 'yes'``."""
        try:
            compiled = self.environment.compile_expression(expression, undefined_to_none=False)
            return compiled(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to evaluate {expression!r}: {exc}") from exc


def write_if_changed(destination: Path, content: str, *, mode: int = 0o644) -> bool:
    """Atomically replace *destination* with *content* unless it already matches."""
    if destination.exists():
        try:
            current = destination.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            current = None
        if current == content:
            if (destination.stat().st_mode & 0o7777) != mode:
                os.chmod(destination, mode)
                return True
            return False
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", dir=str(destination.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return True


__all__ = ["TemplateEngine", "TemplateRenderError", "write_if_changed"]
