from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    concurrency: int = 4


@dataclass
class NsxSection:
    base_url: str = ""
    token: str = ""          # secret – never log in clear text
    verify_tls: bool = True
    timeout_sec: float = 30
    org: str = "default"


@dataclass
class ClusterSection:
    name: str = ""


@dataclass
class SubnetSection:
    use_hierarchical_api: bool = False
    compare_static_ip_allocation: bool = False


@dataclass
class IdentitySection:
    max_attempts: int = 5


@dataclass
class RealizationSection:
    steps: int = 6
    duration_sec: float = 1.0
    factor: float = 2.0
    jitter: float = 0.0
    cap_sec: float = 30.0


@dataclass
class InventorySection:
    page_size: int = 1000


@dataclass
class KubernetesSection:
    kubeconfig: str = ""
    in_cluster: bool = False


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    nsx: NsxSection
    cluster: ClusterSection
    subnet: SubnetSection
    identity: IdentitySection
    realization: RealizationSection
    inventory: InventorySection
    kubernetes: KubernetesSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./subnetsync.yml",
    os.path.expanduser("~/.config/subnetsync/config.yml"),
    "/etc/subnetsync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "concurrency": 4},
    "nsx": {
        "base_url": "",
        "token": "",
        "verify_tls": True,
        "timeout_sec": 30,
        "org": "default",
    },
    "cluster": {"name": ""},
    "subnet": {"use_hierarchical_api": False, "compare_static_ip_allocation": False},
    "identity": {"max_attempts": 5},
    "realization": {"steps": 6, "duration_sec": 1.0, "factor": 2.0, "jitter": 0.0, "cap_sec": 30.0},
    "inventory": {"page_size": 1000},
    "kubernetes": {"kubeconfig": "", "in_cluster": False},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

_BOOL_KEYS = {"verify_tls", "use_hierarchical_api", "compare_static_ip_allocation", "in_cluster"}
_INT_KEYS = {"concurrency", "max_attempts", "steps", "page_size"}
_FLOAT_KEYS = {"timeout_sec", "duration_sec", "factor", "jitter", "cap_sec"}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "SUBNETSYNC_") -> Dict[str, Any]:
    """
    Convert SUBNETSYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Type coercion for booleans, integers and floats in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def to_num(x: Any, kind: type, key: str) -> Any:
        try:
            return kind(x)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {key}: {x!r}") from e

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        key = key_path[-1] if key_path else ""
        if key in _BOOL_KEYS:
            return to_bool(obj)
        if key in _INT_KEYS:
            return to_num(obj, int, ".".join(key_path))
        if key in _FLOAT_KEYS:
            return to_num(obj, float, ".".join(key_path))
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Validate bounds and required fields.
    """
    if int(cfg.get("identity", {}).get("max_attempts", 1)) < 1:
        raise ConfigError("identity.max_attempts must be >= 1")
    if int(cfg.get("realization", {}).get("steps", 1)) < 1:
        raise ConfigError("realization.steps must be >= 1")

    missing = []
    if not cfg.get("nsx", {}).get("base_url"):
        missing.append("nsx.base_url")
    if not cfg.get("cluster", {}).get("name"):
        missing.append("cluster.name")
    if missing:
        raise ConfigError(
            "Missing required configuration: " + ", ".join(missing)
        )


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "SUBNETSYNC_",
    use_dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix SUBNETSYNC_, nested via __),
         after loading a `.env` file found from the working directory
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs:
      - ${ENV_VAR} interpolation
      - type coercion (bool/int/float)
      - validation of bounds and required fields
    """
    if use_dotenv:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    # Load file first (low precedence)
    file_cfg = _load_first_existing(files)

    # Env overlay
    env_cfg = _env_to_dict(env_prefix)

    # Combine: defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, cli_overrides or {})

    # Interpolate and coerce
    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    # Validate
    _validate(merged)

    # Build typed object
    try:
        return AppConfig(
            app=AppSection(**merged.get("app", {})),
            nsx=NsxSection(**merged.get("nsx", {})),
            cluster=ClusterSection(**merged.get("cluster", {})),
            subnet=SubnetSection(**merged.get("subnet", {})),
            identity=IdentitySection(**merged.get("identity", {})),
            realization=RealizationSection(**merged.get("realization", {})),
            inventory=InventorySection(**merged.get("inventory", {})),
            kubernetes=KubernetesSection(**merged.get("kubernetes", {})),
            logging=LoggingSection(**merged.get("logging", {})),
        )
    except TypeError as e:
        raise ConfigError(f"Unknown configuration key: {e}") from e
