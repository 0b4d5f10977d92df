"""Crystal State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
Every custody operation, including the ones that leave the state unchanged,
is an event here, so the set of predecessor states of each operation is
declared exactly once.

The state machine is instantiated per-operation and validates the transition
before the ORM row's state column is updated.

Transition table:
    stabilizing               -> transmitted         (finalize_transmission)
    stabilizing|acknowledged  -> transmitted         (signed_finalize)
    stabilizing               -> reverted            (revert_energy)
    stabilizing               -> dissolved           (dissolve)
    stabilizing|acknowledged  -> decayed             (reclaim_decayed)
    stabilizing               -> acknowledged        (acknowledge_receipt)
    stabilizing|acknowledged  -> anomalous           (report_anomaly)
    anomalous                 -> balanced            (balance_anomaly)
    stabilizing|acknowledged  -> isolated            (isolate_unstable)
    stabilizing|acknowledged  -> frozen              (freeze)
    stabilizing               -> split               (split_into_fragments)
    stabilizing|acknowledged  -> extraction_pending  (initiate_chrono_extraction)
    extraction_pending        -> extracted           (chrono_extraction)
    stabilizing|acknowledged|isolated -> recovering  (initiate_recovery)
    anomalous|isolated|frozen|recovering|timelocked|encrypted
                              -> recovered           (emergency_recovery)
    stabilizing|acknowledged  -> encrypted           (apply_encryption)
    stabilizing|acknowledged  -> timelocked          (apply_timelock)

Self-loops (state unchanged):
    stabilizing|acknowledged  extend_stability, transfer_stewardship
    stabilizing               partial_extraction
    any open state            register_quantum_signature, embed_metadata,
                              register_zk_verification, register_multisig_scheme,
                              configure_rate_limiting, register_tamper_monitoring
"""

from __future__ import annotations

import operator
from functools import reduce

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from crystal_custody.domain.enums import CrystalState


class CrystalStateMachine(StateMachine):
    """State machine that guards the custody record lifecycle.

    Usage:
        sm = CrystalStateMachine(current_state="stabilizing")
        sm.report_anomaly()   # transitions to anomalous
        sm.status             # 'anomalous'
    """

    # --- Open states ---
    stabilizing = State("Stabilizing", initial=True)
    acknowledged = State("Acknowledged")
    anomalous = State("Anomalous")
    isolated = State("Isolated")
    timelocked = State("Timelocked")
    encrypted = State("Encrypted")
    frozen = State("Frozen")
    extraction_pending = State("Extraction pending")
    recovering = State("Recovering")

    # --- Terminal states ---
    transmitted = State("Transmitted", final=True)
    reverted = State("Reverted", final=True)
    dissolved = State("Dissolved", final=True)
    decayed = State("Decayed", final=True)
    extracted = State("Extracted", final=True)
    split = State("Split", final=True)
    balanced = State("Balanced", final=True)
    recovered = State("Recovered", final=True)

    # --- Release paths ---
    finalize_transmission = stabilizing.to(transmitted)
    signed_finalize = stabilizing.to(transmitted) | acknowledged.to(transmitted)
    revert_energy = stabilizing.to(reverted)
    dissolve = stabilizing.to(dissolved)
    reclaim_decayed = stabilizing.to(decayed) | acknowledged.to(decayed)
    partial_extraction = stabilizing.to.itself()
    split_into_fragments = stabilizing.to(split)

    # --- Lifecycle without funds movement ---
    acknowledge_receipt = stabilizing.to(acknowledged)
    extend_stability = stabilizing.to.itself() | acknowledged.to.itself()
    transfer_stewardship = stabilizing.to.itself() | acknowledged.to.itself()

    # --- Disputes ---
    report_anomaly = stabilizing.to(anomalous) | acknowledged.to(anomalous)
    balance_anomaly = anomalous.to(balanced)
    isolate_unstable = stabilizing.to(isolated) | acknowledged.to(isolated)
    freeze = stabilizing.to(frozen) | acknowledged.to(frozen)

    # --- Recovery ---
    initiate_chrono_extraction = (
        stabilizing.to(extraction_pending) | acknowledged.to(extraction_pending)
    )
    chrono_extraction = extraction_pending.to(extracted)
    initiate_recovery = (
        stabilizing.to(recovering) | acknowledged.to(recovering) | isolated.to(recovering)
    )
    emergency_recovery = (
        anomalous.to(recovered)
        | isolated.to(recovered)
        | frozen.to(recovered)
        | recovering.to(recovered)
        | timelocked.to(recovered)
        | encrypted.to(recovered)
    )

    # --- Overlays ---
    apply_encryption = stabilizing.to(encrypted) | acknowledged.to(encrypted)
    apply_timelock = stabilizing.to(timelocked) | acknowledged.to(timelocked)

    _open = (
        stabilizing,
        acknowledged,
        anomalous,
        isolated,
        timelocked,
        encrypted,
        frozen,
        extraction_pending,
        recovering,
    )
    register_quantum_signature = reduce(operator.or_, (s.to.itself() for s in _open))
    embed_metadata = reduce(operator.or_, (s.to.itself() for s in _open))
    register_zk_verification = reduce(operator.or_, (s.to.itself() for s in _open))
    register_multisig_scheme = reduce(operator.or_, (s.to.itself() for s in _open))
    configure_rate_limiting = reduce(operator.or_, (s.to.itself() for s in _open))
    register_tamper_monitoring = reduce(operator.or_, (s.to.itself() for s in _open))
    del _open

    def __init__(self, current_state: str = "stabilizing") -> None:
        """Initialize the state machine at a given state.

        Args:
            current_state: The current CrystalState value (e.g., "anomalous").
        """
        valid_values = {s.value for s in self.states}
        if current_state not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown state '{current_state}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_state))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches CrystalState)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def resolve_transition(current_state: str, event_name: str) -> CrystalState:
    """Fire ``event_name`` on a throwaway machine and return the resulting state.

    Args:
        current_state: Current CrystalState value.
        event_name: The event to fire (e.g., "report_anomaly").

    Returns:
        The CrystalState the record would move to.

    Raises:
        TransitionNotAllowed: If the event is illegal from ``current_state``.
        ValueError: If the state or event name is unknown.
    """
    sm = CrystalStateMachine(current_state=current_state)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_state}: {sm.get_allowed_events()}"
        )

    event_method()
    return CrystalState(sm.status)


def allowed_operations(current_state: str) -> list[str]:
    """Event names permitted from ``current_state``, sorted for stable output."""
    return sorted(CrystalStateMachine(current_state=current_state).get_allowed_events())


def is_allowed(current_state: str, event_name: str) -> bool:
    try:
        resolve_transition(current_state, event_name)
    except TransitionNotAllowed:
        return False
    return True

