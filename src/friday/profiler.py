"""Project type detection from manifest files in the working tree."""

from __future__ import annotations

import json
import logging
import re
import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from friday.memory.models import ProjectProfile, utcnow

logger = logging.getLogger(__name__)

PROJECT_TYPES = ("web", "api", "cli")
DEFAULT_TYPE = "api"
DEFAULT_CONFIDENCE = 0.3

# dependency name → (project type, tech-stack label)
JS_MARKERS = {
    "next": ("web", "nextjs"),
    "react": ("web", "react"),
    "vue": ("web", "vue"),
    "nuxt": ("web", "nuxt"),
    "svelte": ("web", "svelte"),
    "@angular/core": ("web", "angular"),
    "vite": ("web", "vite"),
    "express": ("api", "express"),
    "fastify": ("api", "fastify"),
    "koa": ("api", "koa"),
    "@nestjs/core": ("api", "nestjs"),
    "@hapi/hapi": ("api", "hapi"),
    "commander": ("cli", "commander"),
    "yargs": ("cli", "yargs"),
    "@oclif/core": ("cli", "oclif"),
    "inquirer": ("cli", "inquirer"),
}

PY_MARKERS = {
    "django": ("web", "django"),
    "streamlit": ("web", "streamlit"),
    "fastapi": ("api", "fastapi"),
    "flask": ("api", "flask"),
    "starlette": ("api", "starlette"),
    "aiohttp": ("api", "aiohttp"),
    "click": ("cli", "click"),
    "typer": ("cli", "typer"),
}

_REQ_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def _requirement_name(requirement: str) -> str:
    match = _REQ_NAME.match(requirement)
    return match.group(1).lower().replace("_", "-") if match else ""


class ProjectProfiler:
    """Inspect a project root once and summarise it as a ProjectProfile."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def detect(self, previous: ProjectProfile | None = None) -> ProjectProfile:
        votes: dict[str, int] = {t: 0 for t in PROJECT_TYPES}
        stack: list[str] = []
        name = None

        for scan in (self._scan_node, self._scan_python, self._scan_go, self._scan_rust):
            found = scan(votes, stack)
            name = name or found

        total = sum(votes.values())
        if total:
            # ties resolve in PROJECT_TYPES order
            project_type = max(PROJECT_TYPES, key=lambda t: votes[t])
            confidence = min(0.95, 0.5 + 0.15 * votes[project_type] - 0.1 * (total - votes[project_type]))
            confidence = max(confidence, 0.4)
        else:
            project_type = DEFAULT_TYPE
            confidence = DEFAULT_CONFIDENCE

        now = utcnow()
        if previous is not None:
            # re-detection refreshes confidence and updated_at only
            return ProjectProfile(
                name=previous.name,
                type=previous.type,
                tech_stack=list(previous.tech_stack),
                confidence=round(confidence, 2),
                created_at=previous.created_at,
                updated_at=now,
            )
        profile = ProjectProfile(
            name=name or self.root.resolve().name,
            type=project_type,
            tech_stack=stack,
            confidence=round(confidence, 2),
            created_at=now,
            updated_at=now,
        )
        logger.debug("Detected %s project %s (%s)", profile.type, profile.name, profile.tech_stack)
        return profile

    # ── Manifest scanners ─────────────────────────────────────

    def _add(self, stack: list[str], label: str) -> None:
        if label not in stack:
            stack.append(label)

    def _vote(self, deps, markers: dict, votes: dict, stack: list[str]) -> None:
        for dep in deps:
            if dep in markers:
                project_type, label = markers[dep]
                votes[project_type] += 1
                self._add(stack, label)

    def _scan_node(self, votes: dict, stack: list[str]) -> str | None:
        path = self.root / "package.json"
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Cannot parse %s: %s", path, e)
            return None
        deps = {**data.get("dependencies", {}), **data.get("devDependencies", {})}
        is_ts = "typescript" in deps or (self.root / "tsconfig.json").is_file()
        self._add(stack, "typescript" if is_ts else "javascript")
        self._vote(sorted(deps), JS_MARKERS, votes, stack)
        if data.get("bin"):
            votes["cli"] += 1
        return data.get("name")

    def _scan_python(self, votes: dict, stack: list[str]) -> str | None:
        deps: list[str] = []
        name = None
        found = False

        pyproject = self.root / "pyproject.toml"
        if pyproject.is_file():
            found = True
            try:
                data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.warning("Cannot parse %s: %s", pyproject, e)
                data = {}
            project = data.get("project", {})
            poetry = data.get("tool", {}).get("poetry", {})
            name = project.get("name") or poetry.get("name")
            deps += [_requirement_name(d) for d in project.get("dependencies", [])]
            deps += [d.lower() for d in poetry.get("dependencies", {}) if d.lower() != "python"]
            if project.get("scripts") or poetry.get("scripts"):
                votes["cli"] += 1

        requirements = self.root / "requirements.txt"
        if requirements.is_file():
            found = True
            for line in requirements.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if line and not line.startswith(("#", "-")):
                    deps.append(_requirement_name(line))

        if found or (self.root / "setup.py").is_file():
            self._add(stack, "python")
            self._vote(sorted(set(deps)), PY_MARKERS, votes, stack)
        return name

    def _scan_go(self, votes: dict, stack: list[str]) -> str | None:
        path = self.root / "go.mod"
        if not path.is_file():
            return None
        self._add(stack, "go")
        text = path.read_text(encoding="utf-8")
        for module, project_type, label in [
            ("github.com/gin-gonic/gin", "api", "gin"),
            ("github.com/labstack/echo", "api", "echo"),
            ("github.com/spf13/cobra", "cli", "cobra"),
        ]:
            if module in text:
                votes[project_type] += 1
                self._add(stack, label)
        match = re.search(r"^module\s+(\S+)", text, re.MULTILINE)
        return match.group(1).rsplit("/", 1)[-1] if match else None

    def _scan_rust(self, votes: dict, stack: list[str]) -> str | None:
        path = self.root / "Cargo.toml"
        if not path.is_file():
            return None
        self._add(stack, "rust")
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Cannot parse %s: %s", path, e)
            return None
        deps = {d.lower() for d in data.get("dependencies", {})}
        for crate, project_type in [("axum", "api"), ("actix-web", "api"), ("clap", "cli")]:
            if crate in deps:
                votes[project_type] += 1
                self._add(stack, crate)
        return data.get("package", {}).get("name")
