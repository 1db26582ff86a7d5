"""Baseline loading, validation, and lookup.

Baselines are declarative JSON documents::

    {
      "name": "...", "version": "...",
      "tenantSettings": {"<key>": {"expected": <value>, "compareMode": "equals"|"maxBound", "riskWeight": n}},
      "siteSettings":   {"<key>": {...}}
    }

A document is validated completely before it is registered; every problem
found is reported in one BaselineValidationError and nothing partial is kept.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from importlib.resources import files
from pathlib import Path

from spo_baseline_auditor.config import AuditConfig
from spo_baseline_auditor.exceptions import BaselineNotFoundError, BaselineValidationError
from spo_baseline_auditor.models import Baseline, BaselineEntry, ScopeKind

logger = logging.getLogger(__name__)

_COMPARE_MODES = {"equals": "equals", "maxBound": "max_bound", "max_bound": "max_bound"}
_VALUE_TYPES = {"bool", "int", "string", "enum"}
_ENTRY_FIELDS = {"expected", "compareMode", "riskWeight", "valueType", "allowedValues", "description"}
_SCOPE_SECTIONS: dict[str, ScopeKind] = {"tenantSettings": "tenant", "siteSettings": "site"}


def _reject_duplicate_keys(pairs: list[tuple[str, object]]) -> dict:
    seen: dict[str, object] = {}
    duplicates: list[str] = []
    for key, value in pairs:
        if key in seen:
            duplicates.append(key)
        seen[key] = value
    if duplicates:
        raise BaselineValidationError(
            "Duplicate keys in baseline document",
            errors=[f"duplicate key '{key}'" for key in duplicates],
        )
    return seen


def _python_type(value: object) -> str | None:
    # bool must be checked before int
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, str):
        return "string"
    return None


def _parse_entry(key: str, scope: ScopeKind, raw: object, errors: list[str]) -> BaselineEntry | None:
    where = f"{scope}.{key}"
    if not key:
        errors.append(f"{scope}: empty setting key")
        return None
    if not isinstance(raw, Mapping):
        errors.append(f"{where}: entry must be an object")
        return None

    before = len(errors)
    unknown = sorted(set(raw) - _ENTRY_FIELDS)
    if unknown:
        errors.append(f"{where}: unknown fields {unknown}")

    if "expected" not in raw:
        errors.append(f"{where}: missing 'expected'")
        return None
    expected = raw["expected"]
    observed_type = _python_type(expected)
    if observed_type is None:
        errors.append(f"{where}: expected value must be a bool, integer or string, got {type(expected).__name__}")
        return None

    allowed = raw.get("allowedValues", [])
    if not isinstance(allowed, list) or not all(isinstance(v, str) for v in allowed):
        errors.append(f"{where}: allowedValues must be a list of strings")
        allowed = []
    elif len(set(allowed)) != len(allowed):
        errors.append(f"{where}: allowedValues contains duplicates")

    value_type = raw.get("valueType")
    if value_type is None:
        value_type = "enum" if observed_type == "string" and allowed else observed_type
    elif value_type not in _VALUE_TYPES:
        errors.append(f"{where}: unknown valueType '{value_type}'")
        return None
    elif observed_type != ("string" if value_type == "enum" else value_type):
        errors.append(f"{where}: expected value {expected!r} does not match valueType '{value_type}'")

    if value_type == "enum":
        if not allowed:
            errors.append(f"{where}: enum settings must declare allowedValues")
        elif expected not in allowed:
            errors.append(f"{where}: expected value {expected!r} not in allowedValues")
    elif allowed:
        errors.append(f"{where}: allowedValues is only valid for enum settings")

    raw_mode = raw.get("compareMode")
    if raw_mode is None:
        if value_type in ("int", "enum"):
            errors.append(f"{where}: compareMode is required for {value_type} settings")
        compare_mode = "equals"
    elif raw_mode not in _COMPARE_MODES:
        errors.append(f"{where}: unknown compareMode '{raw_mode}'")
        compare_mode = "equals"
    else:
        compare_mode = _COMPARE_MODES[raw_mode]
        if compare_mode == "max_bound" and value_type not in ("int", "enum"):
            errors.append(f"{where}: maxBound applies only to int or enum settings")

    weight = raw.get("riskWeight")
    if isinstance(weight, bool) or not isinstance(weight, (int, float)):
        errors.append(f"{where}: riskWeight must be a number")
    elif not math.isfinite(weight) or weight <= 0:
        errors.append(f"{where}: riskWeight must be positive, got {weight}")

    description = raw.get("description", "")
    if not isinstance(description, str):
        errors.append(f"{where}: description must be a string")

    if len(errors) > before:
        return None
    return BaselineEntry(
        key=key,
        scope=scope,
        expected=expected,
        value_type=value_type,
        compare_mode=compare_mode,
        risk_weight=float(weight),  # type: ignore[arg-type]
        allowed_values=tuple(allowed),
        description=description,
    )


def parse_baseline(document: object) -> Baseline:
    """Validate a baseline document and build an immutable Baseline.

    Raises:
        BaselineValidationError: If anything in the document is malformed.
    """
    if not isinstance(document, Mapping):
        raise BaselineValidationError("Baseline document must be an object")

    errors: list[str] = []
    name = document.get("name")
    version = document.get("version")
    if not isinstance(name, str) or not name.strip():
        errors.append("name must be a non-empty string")
    if not isinstance(version, str) or not version.strip():
        errors.append("version must be a non-empty string")
    description = document.get("description", "")
    if not isinstance(description, str):
        errors.append("description must be a string")
        description = ""

    sections: dict[ScopeKind, list[BaselineEntry]] = {"tenant": [], "site": []}
    for section, scope in _SCOPE_SECTIONS.items():
        raw_section = document.get(section, {})
        if not isinstance(raw_section, Mapping):
            errors.append(f"{section} must be an object")
            continue
        for key, raw_entry in raw_section.items():
            entry = _parse_entry(key, scope, raw_entry, errors)
            if entry is not None:
                sections[scope].append(entry)

    if not any(document.get(section) for section in _SCOPE_SECTIONS) and not errors:
        errors.append("baseline declares no settings")

    if errors:
        raise BaselineValidationError(
            f"Invalid baseline {name!r}: {len(errors)} problem(s)",
            errors=errors,
            details={"name": name, "version": version},
        )

    return Baseline(
        name=name,  # type: ignore[arg-type]
        version=version,  # type: ignore[arg-type]
        description=description,
        tenant_settings=tuple(sections["tenant"]),
        site_settings=tuple(sections["site"]),
    )


class BaselineRegistry:
    """In-memory index of validated baselines by name."""

    def __init__(self) -> None:
        self._baselines: dict[str, Baseline] = {}

    def load_baseline(self, source: Mapping | str | Path) -> Baseline:
        """Load, validate, and register a baseline.

        Args:
            source: A parsed document, JSON text, or a path to a JSON file.

        Returns:
            The registered Baseline.

        Raises:
            BaselineValidationError: If the document is malformed.
        """
        if isinstance(source, Mapping):
            baseline = parse_baseline(source)
        elif isinstance(source, Path) or not source.lstrip().startswith("{"):
            baseline = self._parse_text(Path(source).read_text(encoding="utf-8"), origin=str(source))
        else:
            baseline = self._parse_text(source, origin="<text>")

        if baseline.name in self._baselines:
            logger.warning("Replacing registered baseline %s", baseline.name)
        self._baselines[baseline.name] = baseline
        logger.info(
            "Loaded baseline %s v%s (%d tenant, %d site settings)",
            baseline.name,
            baseline.version,
            len(baseline.tenant_settings),
            len(baseline.site_settings),
        )
        return baseline

    @staticmethod
    def _parse_text(text: str, origin: str) -> Baseline:
        try:
            document = json.loads(text, object_pairs_hook=_reject_duplicate_keys)
        except json.JSONDecodeError as exc:
            raise BaselineValidationError(f"Baseline {origin} is not valid JSON: {exc}") from exc
        return parse_baseline(document)

    def load_directory(self, path: str | Path) -> list[Baseline]:
        """Load every ``*.json`` baseline in a directory, in file name order."""
        return [self.load_baseline(p) for p in sorted(Path(path).glob("*.json"))]

    def load_bundled(self) -> list[Baseline]:
        """Load the baselines shipped with the package."""
        loaded: list[Baseline] = []
        bundled = files("spo_baseline_auditor").joinpath("data", "baselines")
        for resource in sorted(bundled.iterdir(), key=lambda r: r.name):
            if resource.name.endswith(".json"):
                baseline = self._parse_text(resource.read_text(encoding="utf-8"), origin=resource.name)
                self._baselines[baseline.name] = baseline
                loaded.append(baseline)
        return loaded

    def get_baseline(self, name: str) -> Baseline:
        """Return a registered baseline.

        Raises:
            BaselineNotFoundError: If no baseline with that name is registered.
        """
        try:
            return self._baselines[name]
        except KeyError:
            raise BaselineNotFoundError(
                f"Baseline not found: {name}",
                details={"available": sorted(self._baselines)},
            ) from None

    def list_baselines(self) -> list[dict]:
        return [
            {
                "name": b.name,
                "version": b.version,
                "description": b.description,
                "tenant_settings": len(b.tenant_settings),
                "site_settings": len(b.site_settings),
            }
            for b in sorted(self._baselines.values(), key=lambda b: b.name)
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._baselines

    def __len__(self) -> int:
        return len(self._baselines)


def build_registry(config: AuditConfig) -> BaselineRegistry:
    """Return a registry with bundled baselines plus any from ``config.baseline_path``."""
    registry = BaselineRegistry()
    registry.load_bundled()
    if config.baseline_path:
        registry.load_directory(config.baseline_path)
    return registry
