import os
import yaml
from dataclasses import fields
from typing import Any, Dict, List, Optional
from ..models import log, ResolverConfig

class SettingsManager:
    """YAML overrides for ResolverConfig; files loaded later win."""
    _instance = None

    def __init__(self, config_paths: List[str] = None):
        self.values: Dict[str, Any] = {}
        self.loaded_paths: List[str] = []
        if config_paths:
            for path in config_paths:
                self.load_config(path)

    @classmethod
    def get_instance(cls, extra_path: Optional[str] = None):
        if not cls._instance:
            paths = [os.path.expanduser("~/.config/inliner/settings.yaml"), "inliner.yaml"]
            if extra_path:
                paths.append(extra_path)
            cls._instance = cls(paths)
        elif extra_path and os.path.abspath(extra_path) not in cls._instance.loaded_paths:
            cls._instance.load_config(extra_path)
        return cls._instance

    def load_config(self, path: str):
        if not os.path.exists(path): return
        self.loaded_paths.append(os.path.abspath(path))
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            log.warning(f"Failed to load settings {path}: {e}")
            return
        if not data: return
        if not isinstance(data, dict):
            log.warning(f"Ignoring settings {path}: expected a mapping")
            return

        defaults = ResolverConfig()
        known = {f.name for f in fields(ResolverConfig)}
        for key, value in data.items():
            if key not in known:
                log.warning(f"Unknown setting '{key}' in {path}")
                continue
            default = getattr(defaults, key)
            if value is not None and default is not None and not isinstance(default, str):
                try:
                    value = type(default)(value)
                except (TypeError, ValueError):
                    log.warning(f"Bad value for '{key}' in {path}: {value!r}")
                    continue
            self.values[key] = value
        log.info(f"Loaded {len(self.values)} setting(s) from {path}")

    def resolver_config(self, **overrides) -> ResolverConfig:
        """Settings merged with non-None overrides (typically CLI flags)."""
        values = dict(self.values)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ResolverConfig(**values)
