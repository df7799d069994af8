# services/entities.py
"""
Mutable entities of the materialized view and the append-only EventRecord.

Entities are only ever constructed through the IdentityResolver, which fills every
field explicitly. COUNTER_FIELDS lists the fields the InvariantGuard keeps >= 0.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Entity kinds
OPERATOR = "operator"
AVS_KIND = "avs"
OPERATOR_SET = "operator_set"
STRATEGY = "strategy"
STAKER = "staker"
EIGEN_POD = "eigen_pod"
MEMBERSHIP = "operator_set_membership"
AVS_REGISTRATION = "operator_avs_registration"
DELEGATION = "staker_delegation"

REGISTERED = "REGISTERED"
UNREGISTERED = "UNREGISTERED"


@dataclass
class Entity:
    KIND: ClassVar[str] = ""
    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = ()

    id: str


@dataclass
class Operator(Entity):
    KIND: ClassVar[str] = OPERATOR
    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = (
        "delegator_count",
        "avs_registration_count",
        "operator_set_count",
        "slashing_event_count",
    )

    address: str
    delegation_approver: str
    metadata_uri: Optional[str]
    delegator_count: int
    avs_registration_count: int
    operator_set_count: int
    slashing_event_count: int
    registered_at: int
    registered_at_block: int
    registered_at_transaction: Optional[str]
    last_activity_at: int
    updated_at: int


@dataclass
class AVS(Entity):
    KIND: ClassVar[str] = AVS_KIND
    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = (
        "operator_set_count",
        "total_operator_registrations",
        "rewards_submission_count",
        "slashing_event_count",
    )

    address: str
    metadata_uri: Optional[str]
    registrar: Optional[str]
    operator_set_count: int
    total_operator_registrations: int
    rewards_submission_count: int
    slashing_event_count: int
    created_at: int
    last_activity_at: int
    updated_at: int


@dataclass
class OperatorSet(Entity):
    KIND: ClassVar[str] = OPERATOR_SET
    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = (
        "member_count",
        "strategy_count",
        "allocation_count",
        "slashing_event_count",
    )

    avs_id: str
    operator_set_index: int
    member_count: int
    strategy_count: int
    allocation_count: int
    slashing_event_count: int
    redistribution_recipient: Optional[str]
    created_at: int
    last_activity_at: int


@dataclass
class Strategy(Entity):
    KIND: ClassVar[str] = STRATEGY
    # total_shares is persisted clamped; it may dip below zero inside one step
    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = (
        "total_shares",
        "total_deposits",
    )

    address: str
    total_shares: int
    total_deposits: int
    is_whitelisted: bool
    whitelisted_at: Optional[int]
    first_deposit_at: Optional[int]
    last_activity_at: int


@dataclass
class Staker(Entity):
    KIND: ClassVar[str] = STAKER
    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = (
        "delegation_change_count",
        "withdrawal_count",
    )

    address: str
    delegated_operator: Optional[str]
    delegated_at: Optional[int]
    delegation_change_count: int
    withdrawal_count: int
    first_activity_at: int
    last_activity_at: int


@dataclass
class EigenPod(Entity):
    KIND: ClassVar[str] = EIGEN_POD
    # total_shares is signed: beacon chain balance deficits are legal
    COUNTER_FIELDS: ClassVar[Tuple[str, ...]] = ("deposit_count", "withdrawal_count")

    address: str
    owner: str
    total_shares: int
    deposit_count: int
    withdrawal_count: int
    deployed_at: int
    last_activity_at: int


@dataclass
class OperatorSetMembership(Entity):
    KIND: ClassVar[str] = MEMBERSHIP

    operator_id: str
    operator_set_id: str
    joined_at: int
    joined_at_block: int
    left_at: Optional[int]
    left_at_block: Optional[int]
    join_record_id: Optional[str]
    leave_record_id: Optional[str]

    @property
    def is_active(self) -> bool:
        return self.left_at is None


@dataclass
class OperatorAVSRegistration(Entity):
    KIND: ClassVar[str] = AVS_REGISTRATION

    operator_id: str
    avs_id: str
    status: str
    updated_at: int
    updated_at_block: int


@dataclass
class StakerDelegation(Entity):
    """One delegation transition of a staker, kept as history."""

    KIND: ClassVar[str] = DELEGATION

    staker_id: str
    operator_id: str
    delegation_type: str
    block_number: int
    block_timestamp: int
    transaction_hash: str
    log_index: int


ENTITY_CLASSES: Dict[str, Type[Entity]] = {
    cls.KIND: cls
    for cls in (
        Operator,
        AVS,
        OperatorSet,
        Strategy,
        Staker,
        EigenPod,
        OperatorSetMembership,
        OperatorAVSRegistration,
        StakerDelegation,
    )
}


# -----------------------------
# Derived records
# -----------------------------

OPERATOR_REGISTERED = "OPERATOR_REGISTERED"
METADATA_UPDATE = "METADATA_UPDATE"
DELEGATION_EVENT = "DELEGATION_EVENT"
SHARE_EVENT = "SHARE_EVENT"
WITHDRAWAL_EVENT = "WITHDRAWAL_EVENT"
DELEGATION_APPROVER_UPDATE = "DELEGATION_APPROVER_UPDATE"
DEPOSIT_SCALING_FACTOR_UPDATE = "DEPOSIT_SCALING_FACTOR_UPDATE"
SLASHING_EVENT = "SLASHING_EVENT"
ALLOCATION_EVENT = "ALLOCATION_EVENT"
ALLOCATION_DELAY_SET = "ALLOCATION_DELAY_SET"
MAGNITUDE_UPDATE = "MAGNITUDE_UPDATE"
OPERATOR_SET_CREATED = "OPERATOR_SET_CREATED"
OPERATOR_SET_MEMBERSHIP_EVENT = "OPERATOR_SET_MEMBERSHIP_EVENT"
STRATEGY_OPERATOR_SET_EVENT = "STRATEGY_OPERATOR_SET_EVENT"
REDISTRIBUTION_ADDRESS_SET = "REDISTRIBUTION_ADDRESS_SET"
AVS_REGISTRAR_SET = "AVS_REGISTRAR_SET"
OPERATOR_AVS_REGISTRATION_STATUS = "OPERATOR_AVS_REGISTRATION_STATUS"
DEPOSIT = "DEPOSIT"
WHITELIST_EVENT = "WHITELIST_EVENT"
BURN_SHARES_EVENT = "BURN_SHARES_EVENT"
POD_DEPLOYED = "POD_DEPLOYED"
BEACON_CHAIN_DEPOSIT = "BEACON_CHAIN_DEPOSIT"
BEACON_CHAIN_WITHDRAWAL = "BEACON_CHAIN_WITHDRAWAL"
BEACON_CHAIN_SLASHING = "BEACON_CHAIN_SLASHING"
REWARDS_SUBMISSION = "REWARDS_SUBMISSION"
COMMISSION_EVENT = "COMMISSION_EVENT"
DISTRIBUTION_ROOT_EVENT = "DISTRIBUTION_ROOT_EVENT"
REWARDS_CLAIMED = "REWARDS_CLAIMED"
PROTOCOL_CONFIG_EVENT = "PROTOCOL_CONFIG_EVENT"

# Record columns that point at entities, and the kind each one points at
RECORD_FOREIGN_KEYS: Dict[str, str] = {
    "operator_id": OPERATOR,
    "staker_id": STAKER,
    "avs_id": AVS_KIND,
    "operator_set_id": OPERATOR_SET,
    "strategy_id": STRATEGY,
    "pod_id": EIGEN_POD,
}


@dataclass
class EventRecord:
    """Append-only audit row, one per applied source event."""

    id: str
    record_type: str
    event_type: str
    block_number: int
    log_index: int
    block_timestamp: int
    transaction_hash: str
    contract_address: str
    operator_id: Optional[str] = None
    staker_id: Optional[str] = None
    avs_id: Optional[str] = None
    operator_set_id: Optional[str] = None
    strategy_id: Optional[str] = None
    pod_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def foreign_keys(self) -> Dict[str, str]:
        return {
            column: getattr(self, column)
            for column in RECORD_FOREIGN_KEYS
            if getattr(self, column) is not None
        }


@dataclass
class Anomaly:
    """A recoverable inconsistency noticed while reconciling one event."""

    event_id: str
    category: str
    detail: str
    entity_kind: Optional[str] = None
    entity_id: Optional[str] = None
    field_name: Optional[str] = None
    severity: str = "WARNING"


# Anomaly categories
NEGATIVE_COUNTER = "NEGATIVE_COUNTER"
DANGLING_FOREIGN_KEY = "DANGLING_FOREIGN_KEY"
MEMBERSHIP_STATE = "MEMBERSHIP_STATE"
DELEGATION_STATE = "DELEGATION_STATE"
REGISTRATION_STATE = "REGISTRATION_STATE"
POD_OWNERSHIP = "POD_OWNERSHIP"
OUT_OF_ORDER = "OUT_OF_ORDER"
