"""Role table for custody operations.

The caller's roles are derived from the record (originator, beneficiary) and
from the configured supervisor identity. A caller can hold several roles at
once, e.g. a supervisor who also funded the record.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from crystal_custody.domain.enums import Role
from crystal_custody.domain.exceptions import PermissionDeniedError

if TYPE_CHECKING:
    from collections.abc import Set

O = Role.ORIGINATOR
B = Role.BENEFICIARY
S = Role.SUPERVISOR
X = Role.ANYONE

OPERATION_ROLES: dict[str, frozenset[Role]] = {
    "finalize_transmission": frozenset({O, S}),
    "signed_finalize": frozenset({X}),
    "revert_energy": frozenset({S}),
    "dissolve": frozenset({O}),
    "extend_stability": frozenset({O, B, S}),
    "reclaim_decayed": frozenset({O, S}),
    "report_anomaly": frozenset({O, B}),
    "balance_anomaly": frozenset({S}),
    "isolate_unstable": frozenset({O, B, S}),
    "acknowledge_receipt": frozenset({B}),
    "partial_extraction": frozenset({O}),
    "transfer_stewardship": frozenset({O, S}),
    "split_into_fragments": frozenset({O}),
    "emergency_recovery": frozenset({S}),
    "chrono_extraction": frozenset({O, S}),
    "freeze": frozenset({S}),
    "initiate_chrono_extraction": frozenset({O}),
    "initiate_recovery": frozenset({O, S}),
    # overlays
    "register_quantum_signature": frozenset({O, B}),
    "embed_metadata": frozenset({O, S}),
    "register_zk_verification": frozenset({O, S}),
    "apply_encryption": frozenset({O}),
    "register_multisig_scheme": frozenset({O}),
    "apply_timelock": frozenset({O}),
    "configure_rate_limiting": frozenset({O, S}),
    "register_tamper_monitoring": frozenset({O, S}),
}


def roles_of(caller: str, originator: str, beneficiary: str, supervisor: str) -> set[Role]:
    """Every role ``caller`` holds with respect to one record."""
    roles = {X}
    if caller == originator:
        roles.add(O)
    if caller == beneficiary:
        roles.add(B)
    if caller == supervisor:
        roles.add(S)
    return roles


def require_role(
    operation: str,
    caller_roles: Set[Role],
    caller: str,
    crystal_id: int | None = None,
) -> None:
    """Raise PermissionDeniedError unless the caller holds an allowed role."""
    allowed = OPERATION_ROLES[operation]
    if not allowed & caller_roles:
        raise PermissionDeniedError(caller, operation, crystal_id)
