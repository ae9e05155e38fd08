"""
SKILL.md discovery and resolution

Searches the known agent framework locations for SKILL.md files, parses
their YAML frontmatter and resolves skill pointers in agent cards.

Project-local (searched first):
    .claude/skills/  .cursor/skills/  .windsurf/skills/  .codex/skills/  .agents/skills/
User-global:
    ~/.claude/skills/  ~/.codex/skills/  ~/.codeium/windsurf/skills/

The first location that defines a skill id wins.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List

import yaml

from .models import AgentCard

logger = logging.getLogger("nit.skills")

PROJECT_SKILL_DIRS = [
    (".claude", "skills"),
    (".cursor", "skills"),
    (".windsurf", "skills"),
    (".codex", "skills"),
    (".agents", "skills"),
]

USER_SKILL_DIRS = [
    (".claude", "skills"),
    (".codex", "skills"),
    (".codeium", "windsurf", "skills"),
]

FRONTMATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---", re.DOTALL)


@dataclass
class SkillMetadata:
    """A skill discovered on disk. The id is the skill's directory name."""
    id: str
    name: str
    description: str
    path: Path
    version: Optional[str] = None


def skill_search_dirs(project_dir: Path) -> List[Path]:
    project_dir = Path(project_dir)
    home = Path.home()
    return (
        [project_dir.joinpath(*parts) for parts in PROJECT_SKILL_DIRS]
        + [home.joinpath(*parts) for parts in USER_SKILL_DIRS]
    )


def parse_frontmatter(content: str, dir_name: str, path: Path) -> Optional[SkillMetadata]:
    """Parse SKILL.md frontmatter. Returns None without both name and description."""
    match = FRONTMATTER_RE.match(content)
    if not match:
        return None

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning(f"Skipping {path}: invalid frontmatter ({e})")
        return None

    if not isinstance(data, dict):
        return None

    name = data.get("name")
    description = data.get("description")
    if not name or not description:
        return None

    version = None
    metadata = data.get("metadata")
    if isinstance(metadata, dict) and metadata.get("version") is not None:
        version = str(metadata["version"])

    return SkillMetadata(
        id=dir_name,
        name=str(name).strip(),
        description=str(description).strip(),
        path=path,
        version=version,
    )


def scan_skill_dir(directory: Path) -> List[SkillMetadata]:
    """Parse <directory>/<skill>/SKILL.md for every subdirectory."""
    if not directory.is_dir():
        return []

    skills = []
    for entry in sorted(directory.iterdir()):
        skill_md = entry / "SKILL.md"
        if not skill_md.is_file():
            continue
        try:
            content = skill_md.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable {skill_md}: {e}")
            continue
        meta = parse_frontmatter(content, entry.name, skill_md)
        if meta:
            skills.append(meta)
    return skills


def discover_skills(project_dir: Path) -> List[SkillMetadata]:
    """All skills visible from a project, deduplicated by id."""
    seen = set()
    skills = []
    for directory in skill_search_dirs(project_dir):
        for skill in scan_skill_dir(directory):
            if skill.id not in seen:
                seen.add(skill.id)
                skills.append(skill)

    logger.debug(f"Discovered {len(skills)} skills for {project_dir}")
    return skills


def resolve_skill_pointers(card: AgentCard, project_dir: Path) -> AgentCard:
    """
    Refresh name and description of each card skill from its SKILL.md.

    Skills without a matching SKILL.md are kept as they are. Returns a new card.
    """
    discovered = {s.id: s for s in discover_skills(project_dir)}

    skills = []
    for skill in card.skills:
        meta = discovered.get(skill.id)
        if meta is None:
            skills.append(skill)
        else:
            skills.append(skill.model_copy(update={"name": meta.name, "description": meta.description}))

    return card.model_copy(update={"skills": skills})
