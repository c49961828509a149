import json
from functools import lru_cache
from importlib import resources
from typing import Any, Dict, Iterator, List, Tuple

from .settings import settings_keys


class CapabilityError(ValueError):
    """Raised when the bundled capability descriptor is inconsistent."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def load_capabilities_text() -> str:
    with resources.files(__package__).joinpath("data/capabilities.json").open("r", encoding="utf-8") as fh:
        return fh.read()


@lru_cache(maxsize=1)
def load_capabilities() -> Dict[str, Any]:
    """Parse and validate the capability descriptor once per process."""
    descriptor = json.loads(load_capabilities_text())
    validate_capabilities(descriptor)
    return descriptor


def validate_capabilities(descriptor: Dict[str, Any]) -> None:
    missing = [path for path, entry in _entries(descriptor, "") if "displayName" in entry and not entry.get("displayNameKey")]
    if missing:
        raise CapabilityError(
            "E_CAPABILITY_KEY",
            "entries with displayName lack displayNameKey: " + ", ".join(missing),
        )
    undeclared = [key for key in settings_keys() if not _declares(descriptor, key)]
    if undeclared:
        raise CapabilityError(
            "E_CAPABILITY_SETTING",
            "settings keys missing from capabilities objects: " + ", ".join(undeclared),
        )


def declared_setting_keys(descriptor: Dict[str, Any]) -> List[str]:
    keys: List[str] = []
    for object_name, obj in (descriptor.get("objects") or {}).items():
        for prop_name in (obj.get("properties") or {}):
            keys.append(f"{object_name}.{prop_name}")
    return keys


def _declares(descriptor: Dict[str, Any], key: str) -> bool:
    return key in declared_setting_keys(descriptor)


def _entries(value: Any, path: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
    if isinstance(value, dict):
        yield path or "$", value
        for key, child in value.items():
            yield from _entries(child, f"{path}.{key}" if path else key)
    elif isinstance(value, list):
        for idx, child in enumerate(value):
            yield from _entries(child, f"{path}[{idx}]")
