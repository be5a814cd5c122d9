from __future__ import annotations

import os
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "fiscalis"

CONFIG_DIR_VAR = "FISCALIS_CONFIG_DIR"
DATA_DIR_VAR = "FISCALIS_DATA_DIR"


def _repo_dir(subdir: str) -> Path | None:
    """``config/`` or ``data/`` next to ``src/`` when running from a checkout."""
    # src/fiscalis/config.py -> repository root three levels up
    candidate = Path(__file__).resolve().parents[2] / subdir
    return candidate if candidate.is_dir() else None


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Where to look for a second ``.env`` before any ``.env`` has been read.

    Same order as _resolve_dir, except the platformdirs location only counts
    when it already exists.
    """
    if os.environ.get(CONFIG_DIR_VAR):
        return Path(os.environ[CONFIG_DIR_VAR])
    repo = _repo_dir("config")
    if repo is not None:
        return repo
    user_dir = Path(platformdirs.user_config_dir(APP_NAME))
    return user_dir if user_dir.is_dir() else None


# cwd .env wins; the config dir .env only fills in what is still unset
load_dotenv()
_env_dir = _resolve_config_dir_for_dotenv()
if _env_dir is not None:
    load_dotenv(_env_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Environment variable, then checkout layout, then the platformdirs user directory."""
    if os.environ.get(env_var):
        return Path(os.environ[env_var])
    repo = _repo_dir(default_subdir)
    if repo is not None:
        return repo
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Looked up on every call so env changes are honoured."""
    return _resolve_dir(CONFIG_DIR_VAR, "config", kind="config")


def get_data_dir() -> Path:
    return _resolve_dir(DATA_DIR_VAR, "data", kind="data")


def get_log_level() -> str:
    return os.environ.get("FISCALIS_LOG_LEVEL", "WARNING").upper()


# --- YAML files ---


def load_yaml(path: Path) -> dict | list | None:
    return yaml.safe_load(path.read_text())


def load_company_profile() -> dict:
    """Load regime flags from config/company.yaml."""
    return load_yaml(get_config_dir() / "company.yaml") or {}


def load_missions() -> list[dict]:
    """Load missions from config/missions.yaml. Missing file means no revenue yet."""
    path = get_config_dir() / "missions.yaml"
    if not path.exists():
        return []
    data = load_yaml(path) or []
    if isinstance(data, dict):
        data = data.get("missions", [])
    return data


def load_fiscal_year_overrides() -> dict:
    """Load extra/overridden fiscal years from config/fiscal_years.yaml, keyed by year."""
    path = get_config_dir() / "fiscal_years.yaml"
    if not path.exists():
        return {}
    return load_yaml(path) or {}


def get_company_store_path() -> Path:
    return get_data_dir() / "company.json"
