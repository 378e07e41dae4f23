"""Prompt rendering and prompt-file management.

Prompts come from one of several sources (see ``resolve_prompt``). Generated
text is rendered from templates shipped with the package, using a sandboxed
jinja2 environment with strict undefined handling so a typo in a template
fails loudly instead of producing an empty prompt.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from jinja2 import FileSystemLoader, StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from ralph.core.config import LoopConfig
from ralph.core.models import Mode
from ralph.core.project import (
    AGENTS_FILE,
    CONSTITUTION_FILE,
    PLAN_FILE,
    find_specs_dir,
    list_specs,
)

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"

# Only templates shipped with the package may be rendered
ALLOWED_TEMPLATES = frozenset([
    "build.j2",
    "plan.j2",
    "spec.j2",
    "all_specs.j2",
])

PROMPT_FILES: dict[Mode, str] = {
    Mode.BUILD: "PROMPT_build.md",
    Mode.PLAN: "PROMPT_plan.md",
}


class PromptError(Exception):
    """Prompt could not be produced."""

    pass


class PromptNotFoundError(PromptError):
    """Prompt file (or named spec) does not exist."""

    pass


@dataclass
class PromptSource:
    """The prompt fed to the agent on every iteration."""

    text: str
    origin: str
    path: Path | None = None


_env = SandboxedEnvironment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def render_template(name: str, **variables: str) -> str:
    if name not in ALLOWED_TEMPLATES:
        raise PromptError(f"Unknown prompt template: {name}")
    return _env.get_template(name).render(**variables)


def _template_vars(root: Path) -> dict[str, str]:
    specs_dir = find_specs_dir(root)
    return {
        "plan_file": PLAN_FILE,
        "agents_file": AGENTS_FILE,
        "constitution": str(CONSTITUTION_FILE),
        "specs_dir": str(specs_dir.relative_to(root)) if specs_dir else "specs",
    }


def ensure_prompt_files(root: Path, overwrite: bool = False) -> list[Path]:
    """Write the default build/plan prompt files.

    Existing files are left alone unless ``overwrite`` is set, so running
    this before every loop is safe. Returns the files written.
    """
    root = Path(root)
    variables = _template_vars(root)
    written = []
    for mode, filename in PROMPT_FILES.items():
        path = root / filename
        if path.exists() and not overwrite:
            continue
        path.write_text(render_template(f"{mode.value}.j2", **variables), encoding="utf-8")
        logger.info(f"Wrote prompt file {path}")
        written.append(path)
    return written


def resolve_prompt(config: LoopConfig, root: Path) -> PromptSource:
    """Pick the prompt for a run.

    Priority: all specs, a single spec, inline text, an explicit prompt
    file, then the mode's default prompt file.
    """
    root = Path(root)
    variables = _template_vars(root)

    if config.all_specs:
        return PromptSource(render_template("all_specs.j2", **variables), origin="all specs")

    if config.spec:
        available = list_specs(root)
        if config.spec not in available:
            listing = ", ".join(available) if available else "(no specs found)"
            raise PromptNotFoundError(
                f"Spec '{config.spec}' not found in {variables['specs_dir']}/. Available: {listing}"
            )
        return PromptSource(
            render_template("spec.j2", spec=config.spec, **variables),
            origin=f"spec {config.spec}",
        )

    if config.prompt:
        return PromptSource(config.prompt, origin="inline prompt")

    path = Path(config.prompt_file) if config.prompt_file else Path(PROMPT_FILES[config.mode])
    if not path.is_absolute():
        path = root / path
    if not path.is_file():
        raise PromptNotFoundError(
            f"{path.name} not found. Run 'ralph init' to create prompt files."
        )
    return PromptSource(path.read_text(encoding="utf-8"), origin=path.name, path=path)
