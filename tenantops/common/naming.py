"""Canonical resource naming.

Every cloud resource the orchestrator touches is addressed by a name derived
from (solution, client, environment, kind). Re-running a deployment is only
safe because the same inputs always produce the same names, so the templates
below are versioned: changing any of them renames already-provisioned
resources and must bump ``NAMING_VERSION`` instead of being edited in place.

Platform limits (Azure):
  - resource group:      1..90, letters, digits, hyphens
  - storage account:     3..24, lowercase letters and digits only
  - Cosmos DB account:   3..44, lowercase letters, digits, hyphens
  - App Service plan:    1..40, letters, digits, hyphens
  - Function app:        2..60, letters, digits, hyphens

Names over the limit are truncated and suffixed with a short hash of the full
name, which keeps them unique and stable.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Dict

NAMING_VERSION = 1

HASH_SUFFIX_LEN = 6

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_NON_ALNUM_HYPHEN_RE = re.compile(r"[^a-z0-9-]")
_MULTI_HYPHEN_RE = re.compile(r"-{2,}")


@dataclass(frozen=True)
class NameRule:
    template: str
    max_length: int
    allow_hyphen: bool = True


# Keyed by resource kind. Nested data-store kinds take their name from the registry.
NAME_RULES: Dict[str, NameRule] = {
    "resource-group": NameRule("{prefix}-{solution}-{client}-{env}", 90),
    "storage-account": NameRule("st{solution}{client}{env}", 24, allow_hyphen=False),
    "data-store-account": NameRule("{solution}-{client}-{env}", 44),
    "compute-plan": NameRule("plan-{solution}-{client}-{env}", 40),
    "deployed-function-unit": NameRule("{function}-{client}-{env}", 60),
}


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_SUFFIX_LEN]


def normalize_name(raw: str, max_length: int, allow_hyphen: bool = True) -> str:
    """Lowercase, strip disallowed characters and fit ``max_length``.

    Truncation keeps the head of the name and appends a hash of the full
    normalized name so two long names sharing a prefix stay distinct.
    """
    s = str(raw or "").strip().lower()
    if allow_hyphen:
        s = _NON_ALNUM_HYPHEN_RE.sub("", s)
        s = _MULTI_HYPHEN_RE.sub("-", s).strip("-")
    else:
        s = _NON_ALNUM_RE.sub("", s)
    if not s:
        raise ValueError(f"name {raw!r} is empty after normalization")
    if len(s) <= max_length:
        return s

    suffix = _short_hash(s)
    sep = "-" if allow_hyphen else ""
    head = s[: max_length - len(suffix) - len(sep)]
    if allow_hyphen:
        head = head.rstrip("-")
    return f"{head}{sep}{suffix}"


def derive_name(kind: str, *, solution: str, client: str, env: str, prefix: str = "rg", function: str = "") -> str:
    rule = NAME_RULES.get(kind)
    if rule is None:
        raise ValueError(f"no naming rule for resource kind {kind!r}")
    raw = rule.template.format(prefix=prefix, solution=solution, client=client, env=env, function=function)
    return normalize_name(raw, rule.max_length, allow_hyphen=rule.allow_hyphen)


def resource_group_name(solution: str, client: str, env: str, prefix: str = "rg") -> str:
    return derive_name("resource-group", solution=solution, client=client, env=env, prefix=prefix)


def storage_account_name(solution: str, client: str, env: str) -> str:
    return derive_name("storage-account", solution=solution, client=client, env=env)


def data_store_account_name(solution: str, client: str, env: str) -> str:
    return derive_name("data-store-account", solution=solution, client=client, env=env)


def compute_plan_name(solution: str, client: str, env: str) -> str:
    return derive_name("compute-plan", solution=solution, client=client, env=env)


def function_unit_name(function: str, client: str, env: str) -> str:
    return derive_name("deployed-function-unit", solution="", client=client, env=env, function=function)
