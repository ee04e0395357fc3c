"""Account provisioning: create accounts with allocated role identifiers.

Usage:
    from records_engine.provisioning import AccountInput, provision, provision_many
"""

from records_engine.provisioning.accounts import (
    backfill_identifiers,
    generate_temporary_password,
    provision,
    provision_many,
)
from records_engine.provisioning.models import (
    AccountInput,
    BatchProvisionResult,
    ProvisionResult,
    SkippedAccount,
)

__all__ = [
    "provision",
    "provision_many",
    "backfill_identifiers",
    "generate_temporary_password",
    "AccountInput",
    "ProvisionResult",
    "BatchProvisionResult",
    "SkippedAccount",
]
