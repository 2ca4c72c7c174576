"""
KUBEBUNDLE CONFIG
-----------------
Run-wide settings. Precedence, lowest first: dataclass defaults, an optional
YAML config file, KUBEBUNDLE_* environment variables, CLI flags (applied by
the CLI through `with_overrides`).
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from kubebundle.core import codec
from kubebundle.core.errors import ConfigError, StructuralError
from kubebundle.options.applier import MISSING_KEY_ERROR, MISSING_KEY_POLICIES

logger = logging.getLogger("kubebundle.config")

ENV_PREFIX = "KUBEBUNDLE_"
OUTPUT_FORMATS = ("yaml", "json")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class BundleConfig:
    missing_key: str = MISSING_KEY_ERROR
    include_patch_templates: bool = False
    apply_raw_text: bool = False
    allow_jsonnet_imports: bool = False
    jsonnet_import_paths: List[str] = field(default_factory=list)
    output_format: str = "yaml"
    log_level: str = "WARNING"

    def validate(self) -> "BundleConfig":
        if self.missing_key not in MISSING_KEY_POLICIES:
            raise ConfigError(
                f"missing_key must be one of {', '.join(MISSING_KEY_POLICIES)}, got {self.missing_key!r}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(
                f"output_format must be one of {', '.join(OUTPUT_FORMATS)}, got {self.output_format!r}")
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")
        if not isinstance(self.jsonnet_import_paths, list) or \
                not all(isinstance(p, str) for p in self.jsonnet_import_paths):
            raise ConfigError("jsonnet_import_paths must be a list of strings")
        return self

    def with_overrides(self, **overrides: Any) -> "BundleConfig":
        """Copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes).validate()


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _coerce(values: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name: f for f in dataclasses.fields(BundleConfig)}
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"unknown config key {key!r}")
        if key in ("include_patch_templates", "apply_raw_text", "allow_jsonnet_imports"):
            out[key] = _parse_bool(key, value)
        elif key == "jsonnet_import_paths":
            if isinstance(value, str):
                value = [p for p in value.split(os.pathsep) if p]
            if value is not None and not isinstance(value, list):
                raise ConfigError(f"{key} must be a list of paths, got {value!r}")
            out[key] = list(value or [])
        else:
            out[key] = str(value)
    return out


def _from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values = {}
    for f in dataclasses.fields(BundleConfig):
        env_key = ENV_PREFIX + f.name.upper()
        if env_key in environ:
            values[f.name] = environ[env_key]
    return values


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> BundleConfig:
    """Builds a BundleConfig from an optional YAML file and the environment."""
    values: Dict[str, Any] = {}
    if path:
        try:
            text = Path(path).read_text(encoding="utf-8-sig")
        except OSError as e:
            raise ConfigError(f"cannot read config file {path}: {e}") from e
        try:
            data = codec.load_yaml(text)
        except StructuralError as e:
            raise ConfigError(f"config file {path} is not valid YAML: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must contain a mapping")
        values.update(_coerce({str(k).replace("-", "_"): v for k, v in data.items()}))
        logger.debug(f"Loaded config file {path}")

    env = os.environ if environ is None else environ
    values.update(_coerce(_from_env(env)))
    return BundleConfig(**values).validate()
