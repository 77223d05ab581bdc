from __future__ import annotations
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from switchyard.core.errors import InvalidConfiguration

_ACTIONS = ("allow", "drop", "reject")


@dataclass
class PolicyRule:
    regex: re.Pattern
    action: str              # "allow" | "drop" | "reject"
    params: List[str]
    message: Optional[str] = None


@dataclass
class ParamPolicy:
    """
    Per-model sampling-parameter rules. The first rule whose regex matches the
    model id decides; models with no matching rule keep their params as-is.
    """
    rules: List[PolicyRule]

    @classmethod
    def load(cls, path: Path) -> "ParamPolicy":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return cls.from_config(data.get("rules", []))

    @classmethod
    def from_config(cls, raw_rules: Iterable[Mapping[str, Any]]) -> "ParamPolicy":
        rules: List[PolicyRule] = []
        for r in raw_rules or []:
            action = str(r["action"]).lower()
            if action not in _ACTIONS:
                raise InvalidConfiguration(f"Unknown param policy action '{action}'")
            rx = re.compile(str(r["when_model_matches"]))
            params = [str(p) for p in r.get("params", [])]
            rules.append(PolicyRule(regex=rx, action=action, params=params, message=r.get("message")))
        return cls(rules)

    def evaluate(self, model: str, raw_params: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """
        Returns (effective_params, warnings).
        - allow:  keep everything
        - drop:   remove listed keys, add a warning
        - reject: raise InvalidConfiguration if any listed key is present
        """
        effective = dict(raw_params or {})
        warnings: List[str] = []

        rule = next((r for r in self.rules if r.regex.search(model)), None)
        if rule is None:
            return effective, warnings

        present = sorted(k for k in set(rule.params) if k in effective)
        if rule.action == "drop" and present:
            for k in present:
                effective.pop(k, None)
            warnings.append(rule.message or f"Dropping unsupported params for model '{model}': {present}")
        elif rule.action == "reject" and present:
            raise InvalidConfiguration(rule.message or f"Unsupported params for model '{model}': {present}")

        return effective, warnings
