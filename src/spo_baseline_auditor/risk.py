"""Risk classification for non-compliant setting values.

The matrix is data, not logic. Lookup order for ``classify(key, value)``:

  1. exact value match in the setting's ``values`` table
  2. boolean rule (``whenTrue`` or ``whenFalse``; the other value maps to none)
  3. the setting's own ``default``, then the matrix-wide default (medium)

A missing value (``None``) uses the setting's ``missing`` level when declared,
otherwise falls through to step 3.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from importlib.resources import files
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from spo_baseline_auditor.exceptions import BaselineValidationError
from spo_baseline_auditor.models import RiskLevel, SettingValue


class RiskRule(BaseModel):
    """Risk levels for one setting."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    values: dict[str, RiskLevel] = Field(default_factory=dict)
    when_true: RiskLevel | None = Field(None, alias="whenTrue")
    when_false: RiskLevel | None = Field(None, alias="whenFalse")
    missing: RiskLevel | None = None
    default: RiskLevel | None = None

    @model_validator(mode="after")
    def _one_boolean_direction(self) -> RiskRule:
        if self.when_true is not None and self.when_false is not None:
            raise ValueError("declare whenTrue or whenFalse, not both")
        return self


def value_token(value: SettingValue) -> str:
    """Render a value the way it is written as a key in the ``values`` table."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class RiskMatrix:
    """Lookup from (setting key, observed value) to a risk level."""

    DEFAULT_LEVEL: RiskLevel = "medium"

    def __init__(self, rules: Mapping[str, RiskRule] | None = None, default: RiskLevel = DEFAULT_LEVEL) -> None:
        self.rules: dict[str, RiskRule] = dict(rules or {})
        self.default = default

    @classmethod
    def from_dict(cls, data: Mapping) -> RiskMatrix:
        """Build a matrix from its JSON document form.

        Raises:
            BaselineValidationError: If a rule or level is malformed.
        """
        try:
            document = _Document.model_validate(data)
        except ValidationError as exc:
            raise BaselineValidationError(
                "Invalid risk matrix",
                errors=[f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()],
            ) from exc
        return cls(document.settings, default=document.default)

    @classmethod
    def from_file(cls, path: str | Path) -> RiskMatrix:
        return cls.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))

    @classmethod
    def bundled(cls) -> RiskMatrix:
        """Return the matrix shipped with the package."""
        text = files("spo_baseline_auditor").joinpath("data", "risk_matrix.json").read_text(encoding="utf-8")
        return cls.from_dict(json.loads(text))

    def classify(self, setting_key: str, observed: SettingValue | None) -> RiskLevel:
        rule = self.rules.get(setting_key)
        if rule is None:
            return self.default

        if observed is None:
            return rule.missing or rule.default or self.default

        level = rule.values.get(value_token(observed))
        if level is not None:
            return level

        if isinstance(observed, bool):
            if rule.when_true is not None:
                return rule.when_true if observed else "none"
            if rule.when_false is not None:
                return "none" if observed else rule.when_false

        return rule.default or self.default

    def with_overrides(self, overrides: Mapping[str, RiskRule]) -> RiskMatrix:
        """Return a new matrix with per-setting rules replaced."""
        merged = dict(self.rules)
        merged.update(overrides)
        return RiskMatrix(merged, default=self.default)


class _Document(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: RiskLevel = RiskMatrix.DEFAULT_LEVEL
    settings: dict[str, RiskRule] = Field(default_factory=dict)
