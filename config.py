"""
Run configuration.
Values come from (highest first) CLI flags, environment variables, a YAML config file, defaults.
"""
import os
from typing import Any, Dict, List, Optional

import yaml

DEFAULT_DAYS = 7
DEFAULT_MAX_WORKERS = 8
DEFAULT_RESULT_ROOT = 'results'

# environment variable per setting
ENV_VARS = {
    'api_key': 'APPVEYOR_API_KEY',
    'endpoint': 'APPVEYOR_ENDPOINT',
    'result_root': 'TESTSTATS_RESULT_ROOT',
    'max_workers': 'TESTSTATS_MAX_WORKERS',
}


class Target:
    """A project/branch pair to analyze."""

    def __init__(self, project: str, branch: str, include_pull_requests: bool = False):
        self.project = project
        self.branch = branch
        self.include_pull_requests = include_pull_requests

    def __repr__(self):
        return f"Target({self.project!r}, {self.branch!r})"


def load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Read a YAML config file. A missing path returns {}; unreadable or non-mapping files raise ValueError."""
    if not path:
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            doc = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as ex:
        raise ValueError(f"Failed to load config file {path}: {ex}")
    if not isinstance(doc, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return doc


def parse_targets(doc: Dict[str, Any]) -> List[Target]:
    """Targets from the 'targets' list of a config document.

    Each item is either a mapping with project/branch (and optional include_pull_requests)
    or a "project:branch" string.
    """
    targets: List[Target] = []
    for item in doc.get('targets') or []:
        if isinstance(item, str):
            project, sep, branch = item.partition(':')
            if not sep or not project or not branch:
                raise ValueError(f"Invalid target '{item}'; expected 'project:branch'")
            targets.append(Target(project, branch))
        elif isinstance(item, dict) and item.get('project') and item.get('branch'):
            targets.append(Target(str(item['project']), str(item['branch']), bool(item.get('include_pull_requests', False))))
        else:
            raise ValueError(f"Invalid target entry: {item!r}")
    return targets


def resolve_setting(name: str, cli_value: Any, doc: Dict[str, Any], default: Any = None, cast=None) -> Any:
    """CLI value, then environment variable, then config file key, then default."""
    value = cli_value
    if value is None or value == '':
        env_name = ENV_VARS.get(name)
        value = os.getenv(env_name) if env_name else None
    if value is None or value == '':
        value = doc.get(name)
    if value is None or value == '':
        return default
    return cast(value) if cast else value
