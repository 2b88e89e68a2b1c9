"""
Ledger configuration.

``LedgerConfig`` is an explicit object handed to each service; there is no
process-wide "current config".  It can be built from defaults, from a dict
(e.g. a settings row), or from a YAML file:

    config = LedgerConfig.with_defaults()
    config = LedgerConfig.from_dict({"depreciation_posting_mode": "per_category"})
    config = load_config("ledger.yaml")

The YAML file may hold the settings at the top level or under a ``ledger:``
key.  Unknown keys and invalid values raise InvalidConfigurationError.

The default chart of accounts that ``AccountRegistry.initialize_default_accounts``
seeds ships as package data (``school_ledger/data/default_chart.yaml``) and
is read by ``load_default_chart()``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from importlib import resources
from pathlib import Path
from typing import Any, Self

import yaml

from school_ledger.exceptions import InvalidConfigurationError
from school_ledger.logging_config import get_logger

logger = get_logger("config")

POSTING_MODES = ("per_asset", "per_category")


@dataclass(frozen=True)
class CategoryAccounts:
    """Depreciation account codes for one asset category."""

    expense_account: str
    accumulated_account: str


@dataclass(frozen=True)
class LedgerConfig:
    """
    Settings for the ledger services.

    Field defaults match the default school chart: 5500 Depreciation
    Expense and 1250 Accumulated Depreciation.
    """

    depreciation_expense_account: str = "5500"
    accumulated_depreciation_account: str = "1250"
    category_accounts: dict[str, CategoryAccounts] = field(default_factory=dict)
    depreciation_posting_mode: str = "per_asset"
    reference_prefix: str = "JE"
    account_code_pattern: str = r"^[0-9]{4,10}$"

    def __post_init__(self):
        if self.depreciation_posting_mode not in POSTING_MODES:
            raise InvalidConfigurationError(
                "depreciation_posting_mode",
                f"must be one of {', '.join(POSTING_MODES)}",
            )
        if not self.reference_prefix or not re.fullmatch(r"[A-Z][A-Z0-9]{0,9}", self.reference_prefix):
            raise InvalidConfigurationError(
                "reference_prefix", "must be 1-10 uppercase letters or digits"
            )
        try:
            re.compile(self.account_code_pattern)
        except re.error as exc:
            raise InvalidConfigurationError(
                "account_code_pattern", f"not a valid regular expression: {exc}"
            ) from exc
        for name in ("depreciation_expense_account", "accumulated_depreciation_account"):
            if not getattr(self, name):
                raise InvalidConfigurationError(name, "must not be empty")

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the default school chart mappings."""
        logger.info("ledger_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. loaded from a file)."""
        if not isinstance(data, dict):
            raise InvalidConfigurationError("ledger", "expected a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfigurationError(unknown[0], "unknown configuration key")

        logger.info(
            "ledger_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )

        values = dict(data)
        if "category_accounts" in values:
            values["category_accounts"] = _parse_category_accounts(
                values["category_accounts"]
            )
        for key, val in values.items():
            if key == "category_accounts":
                continue
            # YAML reads unquoted account codes as ints
            if key.endswith("_account") and isinstance(val, int) and not isinstance(val, bool):
                values[key] = str(val)
            elif not isinstance(val, str):
                raise InvalidConfigurationError(key, "must be a string")
        return cls(**values)

    def accounts_for_category(self, category: str | None) -> CategoryAccounts:
        """Depreciation accounts for an asset category, falling back to the defaults."""
        if category and category in self.category_accounts:
            return self.category_accounts[category]
        return CategoryAccounts(
            expense_account=self.depreciation_expense_account,
            accumulated_account=self.accumulated_depreciation_account,
        )


def _parse_category_accounts(raw: Any) -> dict[str, CategoryAccounts]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise InvalidConfigurationError("category_accounts", "expected a mapping")

    parsed: dict[str, CategoryAccounts] = {}
    for category, spec in raw.items():
        if isinstance(spec, CategoryAccounts):
            parsed[category] = spec
            continue
        if not isinstance(spec, dict):
            raise InvalidConfigurationError(
                f"category_accounts.{category}", "expected a mapping"
            )
        extra = set(spec) - {"expense_account", "accumulated_account"}
        if extra:
            raise InvalidConfigurationError(
                f"category_accounts.{category}.{sorted(extra)[0]}",
                "unknown configuration key",
            )
        try:
            parsed[category] = CategoryAccounts(
                expense_account=str(spec["expense_account"]),
                accumulated_account=str(spec["accumulated_account"]),
            )
        except KeyError as exc:
            raise InvalidConfigurationError(
                f"category_accounts.{category}.{exc.args[0]}", "required"
            ) from exc
    return parsed


def load_config(path: str | Path) -> LedgerConfig:
    """
    Load a LedgerConfig from a YAML file.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        InvalidConfigurationError: on unknown keys or invalid values.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if isinstance(data, dict) and "ledger" in data and len(data) == 1:
        data = data["ledger"] or {}
    return LedgerConfig.from_dict(data)


def load_default_chart() -> list[dict[str, Any]]:
    """
    Read the bundled default chart of accounts.

    Returns a list of ``{code, name, type, parent}`` dicts, parents before
    children.
    """
    text = (
        resources.files("school_ledger")
        .joinpath("data/default_chart.yaml")
        .read_text(encoding="utf-8")
    )
    data = yaml.safe_load(text) or {}
    return list(data.get("accounts", []))
