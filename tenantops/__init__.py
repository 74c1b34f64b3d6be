"""Multi-tenant infrastructure deployment toolkit.

A JSON registry describes a solution, its clients and their environments. The
orchestration layer derives deterministic resource names from it, expands each
(client, environment) pair into a dependency-ordered provisioning plan, applies
that plan idempotently against a cloud control plane, then seeds and validates
baseline records in the provisioned document database.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.1.0"
