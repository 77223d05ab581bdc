from __future__ import annotations
from typing import Any, Callable, Dict, List, Type
from importlib import import_module

from switchyard.core.errors import InvalidConfiguration

BUILTIN_MODULES = (
    "switchyard.providers.local",
    "switchyard.providers.openai",
    "switchyard.providers.gemini",
    "switchyard.providers.anthropic",
)


class ProviderFactory:
    """Kind name -> provider class. Adapters register themselves with @ProviderFactory.register."""

    _classes: Dict[str, Type] = {}

    @classmethod
    def register(cls, kind: str) -> Callable[[Type], Type]:
        kind = kind.lower()

        def deco(klass: Type) -> Type:
            if not callable(getattr(klass, "create", None)):
                raise TypeError(f"{klass.__name__} needs a create() classmethod to register as '{kind}'")
            declared = getattr(klass, "kind", kind)
            if declared != kind:
                raise TypeError(f"{klass.__name__} declares kind '{declared}' but registers as '{kind}'")
            cls._classes[kind] = klass
            return klass
        return deco

    @classmethod
    def get(cls, kind: str) -> Type:
        key = kind.lower()
        if key not in cls._classes:
            known = ", ".join(sorted(cls._classes)) or "none"
            raise InvalidConfiguration(f"Provider kind '{kind}' not registered (known: {known})")
        return cls._classes[key]

    @classmethod
    def build(cls, kind: str, **deps: Any):
        """Instantiate the adapter registered for ``kind`` through its create() hook."""
        return cls.get(kind).create(**deps)

    @classmethod
    def kinds(cls) -> List[str]:
        return list(cls._classes)

    @classmethod
    def ensure_imports(cls) -> None:
        """Import built-in adapters so their @register decorators run. Call once before get()."""
        for module in BUILTIN_MODULES:
            import_module(module)
