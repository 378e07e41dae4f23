"""Work-source detection for a project.

The agent reads the plan file and specs itself; the supervisor only checks
for them so it can print status lines before the loop starts.
"""

import re
from dataclasses import dataclass
from pathlib import Path

PLAN_FILE = "IMPLEMENTATION_PLAN.md"
AGENTS_FILE = "AGENTS.md"
CONSTITUTION_FILE = Path(".specify/memory/constitution.md")
SPEC_DIRS = (Path(".specify/specs"), Path("specs"))

_YOLO_DISABLED = re.compile(r"YOLO Mode.*DISABLED")


@dataclass
class ProjectStatus:
    """What the agent will find when it starts."""

    root: Path
    plan_file: Path | None = None
    agents_file: Path | None = None
    specs_dir: Path | None = None
    spec_count: int = 0
    constitution: Path | None = None
    yolo_disabled: bool = False

    @property
    def has_specs(self) -> bool:
        return self.spec_count > 0


def find_specs_dir(root: Path) -> Path | None:
    """First existing spec directory (``.specify/specs`` wins over ``specs``)."""
    for candidate in SPEC_DIRS:
        path = root / candidate
        if path.is_dir():
            return path
    return None


def constitution_disables_yolo(path: Path) -> bool:
    if not path.is_file():
        return False
    text = path.read_text(encoding="utf-8", errors="replace")
    return any(_YOLO_DISABLED.search(line) for line in text.splitlines())


def inspect_project(root: Path) -> ProjectStatus:
    root = Path(root)
    status = ProjectStatus(root=root)

    if (root / PLAN_FILE).is_file():
        status.plan_file = root / PLAN_FILE
    if (root / AGENTS_FILE).is_file():
        status.agents_file = root / AGENTS_FILE

    specs_dir = find_specs_dir(root)
    if specs_dir is not None:
        status.specs_dir = specs_dir
        status.spec_count = sum(1 for p in specs_dir.rglob("*.md") if p.is_file())

    constitution = root / CONSTITUTION_FILE
    if constitution.is_file():
        status.constitution = constitution
        status.yolo_disabled = constitution_disables_yolo(constitution)

    return status


def list_specs(root: Path) -> list[str]:
    """Spec names usable with ``--spec``: subdirectories of the spec dir, sorted."""
    specs_dir = find_specs_dir(Path(root))
    if specs_dir is None:
        return []
    return sorted(p.name for p in specs_dir.iterdir() if p.is_dir())
