import json
import os
from pathlib import Path
from typing import Any

import yaml

_CONFIG_ENV_KEYS = ("LP_KEEPER_CONFIG_PATH", "LP_KEEPER_CONFIG")
_DEFAULT_CONFIG_FILENAME = "config.json"
_YAML_SUFFIXES = (".yaml", ".yml")


def _find_project_root(start: Path) -> Path | None:
    cur = start.resolve()
    for parent in [cur, *cur.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return None


def _project_root() -> Path | None:
    return _find_project_root(Path.cwd()) or _find_project_root(Path(__file__).parent)


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()

    env_path = next(
        (os.getenv(k, "").strip() for k in _CONFIG_ENV_KEYS if os.getenv(k)), ""
    )
    if env_path:
        p = Path(env_path).expanduser()
        if p.is_absolute():
            return p
        root = _project_root()
        return (root / p) if root else p

    root = _project_root()
    return (root / _DEFAULT_CONFIG_FILENAME) if root else Path(_DEFAULT_CONFIG_FILENAME)


def _parse(cfg_path: Path, text: str) -> dict[str, Any]:
    if cfg_path.suffix.lower() in _YAML_SUFFIXES:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"{cfg_path} must contain a mapping at the top level")
    return data


def load_config_file(
    path: str | Path | None = None, *, require_exists: bool = False
) -> dict[str, Any]:
    cfg_path = resolve_config_path(path)
    if not cfg_path.exists():
        if require_exists:
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        return {}
    return _parse(cfg_path, cfg_path.read_text())


def get_keeper_section(config: dict[str, Any]) -> dict[str, Any]:
    section = config.get("keeper", config)
    return dict(section) if isinstance(section, dict) else {}
