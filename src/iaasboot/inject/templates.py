# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/inject/templates.py

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    UndefinedError,
)

from iaasboot.errors import TemplateRenderError

# jinja leftovers and the __NAME__ tokens the CustomScript templates used to carry
UNRESOLVED = re.compile(r"\{\{.*?\}\}|\{%.*?%\}|__[A-Z][A-Z0-9_]*__")


def unresolved_placeholders(text: str) -> List[str]:
    return UNRESOLVED.findall(text)


class TemplateRenderer:
    """
    Renders config templates. Any placeholder without a value fails at
    render time, and the output is scanned so a literal placeholder can
    never reach a config file.
    """

    def __init__(self, templates_dir: Optional[Path] = None):
        loader = FileSystemLoader(str(templates_dir)) if templates_dir else PackageLoader("iaasboot", "templates")
        self.env = Environment(
            loader=loader,
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def _check(self, name: str, rendered: str) -> str:
        leftovers = unresolved_placeholders(rendered)
        if leftovers:
            raise TemplateRenderError(
                f"template {name} rendered with unresolved placeholders: {', '.join(sorted(set(leftovers)))}"
            )
        return rendered

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        try:
            tmpl = self.env.get_template(template_name)
            rendered = tmpl.render(**context)
        except UndefinedError as e:
            raise TemplateRenderError(f"template {template_name} is missing a value: {e.message}") from e
        except TemplateError as e:
            raise TemplateRenderError(f"template {template_name} failed to render: {e}") from e
        return self._check(template_name, rendered)

    def render_string(self, source: str, context: Dict[str, Any], name: str = "<string>") -> str:
        try:
            rendered = self.env.from_string(source).render(**context)
        except UndefinedError as e:
            raise TemplateRenderError(f"template {name} is missing a value: {e.message}") from e
        except TemplateError as e:
            raise TemplateRenderError(f"template {name} failed to render: {e}") from e
        return self._check(name, rendered)
