from __future__ import annotations

from typing import Tuple

from ..config.models import CollectionConfig, EnvironmentConfig
from ..infra.contracts import DataStore
from ..infra.errors import InfraError
from ..infra.models import ValidationResult


def validate_collection(store: DataStore, collection: CollectionConfig) -> ValidationResult:
    """Compare the ids in ``collection`` with its baseline. Read-only.

    Extra records are ignored. A collection that cannot be listed reports
    every expected id as missing, with the error attached.
    """
    expected = collection.expected_ids
    try:
        records = store.list_records(collection)
    except InfraError as e:
        return ValidationResult(
            collection=collection.name,
            present=(),
            missing=tuple(expected),
            error=f"{e.__class__.__name__}: {e}",
        )
    ids = {str(r["id"]) for r in records if r.get("id") is not None}
    return ValidationResult(
        collection=collection.name,
        present=tuple(i for i in expected if i in ids),
        missing=tuple(i for i in expected if i not in ids),
    )


def validate_environment(store: DataStore, env: EnvironmentConfig) -> Tuple[ValidationResult, ...]:
    return tuple(validate_collection(store, c) for c in env.data_store.collections)
