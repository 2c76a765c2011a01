"""Project configuration loader.

Loads and validates project configurations (include/exclude globs and
declared sources) from YAML files.
"""

import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
import logging

from .models import Source

logger = logging.getLogger(__name__)


@dataclass
class ProjectConfig:
    """Configuration of a project and its sources."""
    id: str
    sources: List[Source] = field(default_factory=list)
    include: List[str] = field(default_factory=lambda: ['**'])
    exclude: List[str] = field(default_factory=list)
    custom_page_fetcher: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.id:
            raise ValueError("Project id cannot be empty")

        ids = [source.id for source in self.sources]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate source ids in project {self.id}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProjectConfig':
        """Create ProjectConfig from dictionary."""
        include = data.get('include')
        return cls(
            id=str(data['id']),
            sources=[Source.from_dict(s) for s in data.get('sources') or []],
            include=list(include) if include is not None else ['**'],
            exclude=list(data.get('exclude') or []),
            custom_page_fetcher=bool(data.get('custom_page_fetcher', False))
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'include': self.include,
            'exclude': self.exclude,
            'custom_page_fetcher': self.custom_page_fetcher,
            'sources': [source.to_dict() for source in self.sources]
        }


class ProjectLoader:
    """Loads project configurations from YAML files."""

    def __init__(self, projects_dir: Path):
        """Initialize project loader.

        Args:
            projects_dir: Directory containing ``<project_id>.yaml`` files.
        """
        self.projects_dir = Path(projects_dir)
        self._cache: Dict[str, ProjectConfig] = {}
        self._last_modified: Dict[str, float] = {}

    def load_project(self, project_id: str) -> Optional[ProjectConfig]:
        """Load configuration for a specific project.

        Returns:
            ProjectConfig if found and valid, None otherwise
        """
        yaml_file = self.projects_dir / f"{project_id}.yaml"

        if not yaml_file.exists():
            logger.warning(f"Project configuration not found: {yaml_file}")
            return None

        current_mtime = yaml_file.stat().st_mtime
        if (project_id in self._cache and
                self._last_modified.get(project_id, 0) >= current_mtime):
            return self._cache[project_id]

        config = load_project_file(yaml_file)
        if config is None:
            return None

        if config.id != project_id:
            logger.warning(f"Project id mismatch in {yaml_file}: {config.id} != {project_id}")
            config.id = project_id

        self._cache[project_id] = config
        self._last_modified[project_id] = current_mtime
        return config

    def reload_cache(self):
        """Clear cache to force reload of all configurations."""
        self._cache.clear()
        self._last_modified.clear()
        logger.info("Project configuration cache cleared")


def load_project_file(path: Path) -> Optional[ProjectConfig]:
    """Parse a single project YAML file.

    Returns None (and logs why) when the file is empty or invalid.
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML file {path}: {e}")
        return None

    if not data:
        logger.error(f"Empty or invalid YAML file: {path}")
        return None

    data.setdefault('id', path.stem)
    try:
        config = ProjectConfig.from_dict(data)
    except (ValueError, KeyError) as e:
        logger.error(f"Invalid project configuration in {path}: {e}")
        return None

    logger.info(f"Loaded project configuration: {config.id} ({len(config.sources)} sources)")
    return config
