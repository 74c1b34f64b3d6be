from __future__ import annotations

import time
from typing import Callable, Dict, Tuple

from ..common.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from ..config.models import CollectionConfig, EnvironmentConfig
from ..infra.contracts import DataStore
from ..infra.errors import ConflictError, InfraError, RetryableError
from ..infra.models import SeedResult


def _insert(
    store: DataStore,
    collection: CollectionConfig,
    record: Dict,
    policy: RetryPolicy,
    sleep: Callable[[float], None],
) -> None:
    attempt = 0
    while True:
        attempt += 1
        try:
            store.insert_record(collection, dict(record))
            return
        except RetryableError:
            if attempt >= policy.max_attempts:
                raise
            sleep(policy.delay(attempt))


def seed_collection(
    store: DataStore,
    collection: CollectionConfig,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> SeedResult:
    """Insert every baseline record of ``collection``.

    An id that already exists counts as ``already_existed``. Any other failure
    is recorded against its id and the remaining records are still processed,
    so seeding is safe to repeat after a partial run.
    """
    created = 0
    existed = 0
    failed: Dict[str, str] = {}
    for record in collection.default_data:
        rid = str(record.get("id"))
        try:
            _insert(store, collection, record, policy, sleep)
            created += 1
        except ConflictError:
            existed += 1
        except InfraError as e:
            failed[rid] = f"{e.__class__.__name__}: {e}"
        except Exception as e:  # noqa: BLE001
            failed[rid] = f"unexpected {e.__class__.__name__}: {e}"
    return SeedResult(collection=collection.name, created_count=created, already_existed_count=existed, failed_ids=failed)


def seed_environment(
    store: DataStore,
    env: EnvironmentConfig,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[SeedResult, ...]:
    return tuple(seed_collection(store, c, policy=policy, sleep=sleep) for c in env.data_store.collections)
