from __future__ import annotations
from pathlib import Path
from typing import Optional

import yaml

_KEY = "selected_provider"


class YamlPreferenceStore:
    """Remembers the last selected provider id in a small YAML file."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def load_selected_provider_id(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError:
            return None
        if not isinstance(data, dict):
            return None
        val = data.get(_KEY)
        return str(val) if val else None

    def save_selected_provider_id(self, provider_id: str) -> None:
        data = {}
        if self.path.exists():
            try:
                loaded = yaml.safe_load(self.path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    data = loaded
            except yaml.YAMLError:
                data = {}
        data[_KEY] = provider_id
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


class MemoryPreferenceStore:
    def __init__(self, selected: Optional[str] = None):
        self.selected = selected

    def load_selected_provider_id(self) -> Optional[str]:
        return self.selected

    def save_selected_provider_id(self, provider_id: str) -> None:
        self.selected = provider_id
