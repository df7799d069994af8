# services/events.py
"""
Typed protocol events.

Every event the engine accepts is one of the frozen dataclasses below. They share the
block-ordering position and transaction context from ProtocolEvent; EVENT_TYPE is the
on-chain event name and the key used by the decoder and the dispatch table.
"""

from dataclasses import dataclass
from typing import ClassVar, Dict, List, Optional, Tuple, Type


@dataclass(frozen=True)
class ProtocolEvent:
    EVENT_TYPE: ClassVar[str] = ""

    block_number: int
    log_index: int
    block_timestamp: int
    transaction_hash: str
    contract_address: str

    @property
    def event_id(self) -> str:
        return f"{self.transaction_hash}-{self.log_index}"

    @property
    def position(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class StrategyMultiplier:
    strategy: str
    multiplier: int


@dataclass(frozen=True)
class OperatorReward:
    operator: str
    amount: int


# -----------------------------
# DelegationManager
# -----------------------------


@dataclass(frozen=True)
class OperatorRegistered(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorRegistered"

    operator: str
    delegation_approver: str


@dataclass(frozen=True)
class OperatorMetadataURIUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorMetadataURIUpdated"

    operator: str
    metadata_uri: str


@dataclass(frozen=True)
class StakerDelegated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "StakerDelegated"

    staker: str
    operator: str


@dataclass(frozen=True)
class StakerUndelegated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "StakerUndelegated"

    staker: str
    operator: str


@dataclass(frozen=True)
class StakerForceUndelegated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "StakerForceUndelegated"

    staker: str
    operator: str


@dataclass(frozen=True)
class OperatorSharesIncreased(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorSharesIncreased"

    operator: str
    staker: str
    strategy: str
    shares: int


@dataclass(frozen=True)
class OperatorSharesDecreased(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorSharesDecreased"

    operator: str
    staker: str
    strategy: str
    shares: int


@dataclass(frozen=True)
class OperatorSharesSlashed(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorSharesSlashed"

    operator: str
    strategy: str
    total_slashed_shares: int


@dataclass(frozen=True)
class SlashingWithdrawalQueued(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "SlashingWithdrawalQueued"

    withdrawal_root: str
    staker: str
    delegated_to: str
    withdrawer: str
    nonce: int
    start_block: int
    strategies: List[str]
    scaled_shares: List[int]
    shares_to_withdraw: List[int]


@dataclass(frozen=True)
class SlashingWithdrawalCompleted(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "SlashingWithdrawalCompleted"

    withdrawal_root: str


@dataclass(frozen=True)
class DelegationApproverUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "DelegationApproverUpdated"

    operator: str
    new_delegation_approver: str


@dataclass(frozen=True)
class DepositScalingFactorUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "DepositScalingFactorUpdated"

    staker: str
    strategy: str
    new_deposit_scaling_factor: int


# -----------------------------
# AllocationManager
# -----------------------------


@dataclass(frozen=True)
class OperatorSlashed(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorSlashed"

    operator: str
    avs: str
    operator_set_index: int
    strategies: List[str]
    wad_slashed: List[int]
    description: str


@dataclass(frozen=True)
class AllocationUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "AllocationUpdated"

    operator: str
    avs: str
    operator_set_index: int
    strategy: str
    magnitude: int
    effect_block: int


@dataclass(frozen=True)
class AllocationDelaySet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "AllocationDelaySet"

    operator: str
    delay: int
    effect_block: int


@dataclass(frozen=True)
class EncumberedMagnitudeUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "EncumberedMagnitudeUpdated"

    operator: str
    strategy: str
    encumbered_magnitude: int


@dataclass(frozen=True)
class MaxMagnitudeUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "MaxMagnitudeUpdated"

    operator: str
    strategy: str
    max_magnitude: int


@dataclass(frozen=True)
class OperatorSetCreated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorSetCreated"

    avs: str
    operator_set_index: int


@dataclass(frozen=True)
class OperatorAddedToOperatorSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorAddedToOperatorSet"

    operator: str
    avs: str
    operator_set_index: int


@dataclass(frozen=True)
class OperatorRemovedFromOperatorSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorRemovedFromOperatorSet"

    operator: str
    avs: str
    operator_set_index: int


@dataclass(frozen=True)
class StrategyAddedToOperatorSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "StrategyAddedToOperatorSet"

    avs: str
    operator_set_index: int
    strategy: str


@dataclass(frozen=True)
class StrategyRemovedFromOperatorSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "StrategyRemovedFromOperatorSet"

    avs: str
    operator_set_index: int
    strategy: str


@dataclass(frozen=True)
class AVSMetadataURIUpdated(ProtocolEvent):
    """Emitted by both the AllocationManager and the legacy AVSDirectory."""

    EVENT_TYPE: ClassVar[str] = "AVSMetadataURIUpdated"

    avs: str
    metadata_uri: str


@dataclass(frozen=True)
class RedistributionAddressSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "RedistributionAddressSet"

    avs: str
    operator_set_index: int
    redistribution_recipient: str


@dataclass(frozen=True)
class AVSRegistrarSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "AVSRegistrarSet"

    avs: str
    registrar: str


# -----------------------------
# AVSDirectory (legacy M2 registrations)
# -----------------------------


@dataclass(frozen=True)
class OperatorAVSRegistrationStatusUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorAVSRegistrationStatusUpdated"

    operator: str
    avs: str
    status: int


# -----------------------------
# StrategyManager
# -----------------------------


@dataclass(frozen=True)
class Deposit(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "Deposit"

    staker: str
    strategy: str
    shares: int


@dataclass(frozen=True)
class StrategyAddedToDepositWhitelist(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "StrategyAddedToDepositWhitelist"

    strategy: str


@dataclass(frozen=True)
class StrategyRemovedFromDepositWhitelist(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "StrategyRemovedFromDepositWhitelist"

    strategy: str


@dataclass(frozen=True)
class BurnOrRedistributableSharesIncreased(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "BurnOrRedistributableSharesIncreased"

    avs: str
    operator_set_index: int
    slash_id: int
    strategy: str
    shares: int


@dataclass(frozen=True)
class BurnOrRedistributableSharesDecreased(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "BurnOrRedistributableSharesDecreased"

    avs: str
    operator_set_index: int
    slash_id: int
    strategy: str
    shares: int


@dataclass(frozen=True)
class BurnableSharesDecreased(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "BurnableSharesDecreased"

    strategy: str
    shares: int


# -----------------------------
# EigenPodManager
# -----------------------------


@dataclass(frozen=True)
class PodDeployed(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "PodDeployed"

    eigen_pod: str
    pod_owner: str


@dataclass(frozen=True)
class BeaconChainETHDeposited(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "BeaconChainETHDeposited"

    pod_owner: str
    amount: int


@dataclass(frozen=True)
class PodSharesUpdated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "PodSharesUpdated"

    pod_owner: str
    shares_delta: int


@dataclass(frozen=True)
class NewTotalShares(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "NewTotalShares"

    pod_owner: str
    new_total_shares: int


@dataclass(frozen=True)
class BeaconChainETHWithdrawalCompleted(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "BeaconChainETHWithdrawalCompleted"

    pod_owner: str
    shares: int
    nonce: int
    delegated_address: str
    withdrawer: str
    withdrawal_root: str


@dataclass(frozen=True)
class BeaconChainSlashingFactorDecreased(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "BeaconChainSlashingFactorDecreased"

    staker: str
    prev_beacon_chain_slashing_factor: int
    new_beacon_chain_slashing_factor: int


@dataclass(frozen=True)
class BurnableETHSharesIncreased(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "BurnableETHSharesIncreased"

    shares: int


# -----------------------------
# RewardsCoordinator
# -----------------------------


@dataclass(frozen=True)
class AVSRewardsSubmissionCreated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "AVSRewardsSubmissionCreated"

    avs: str
    submission_nonce: int
    rewards_submission_hash: str
    strategies_and_multipliers: List[StrategyMultiplier]
    token: str
    amount: int
    start_timestamp: int
    duration: int


@dataclass(frozen=True)
class RewardsSubmissionForAllCreated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "RewardsSubmissionForAllCreated"

    submitter: str
    submission_nonce: int
    rewards_submission_hash: str
    strategies_and_multipliers: List[StrategyMultiplier]
    token: str
    amount: int
    start_timestamp: int
    duration: int


@dataclass(frozen=True)
class RewardsSubmissionForAllEarnersCreated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "RewardsSubmissionForAllEarnersCreated"

    token_hopper: str
    submission_nonce: int
    rewards_submission_hash: str
    strategies_and_multipliers: List[StrategyMultiplier]
    token: str
    amount: int
    start_timestamp: int
    duration: int


@dataclass(frozen=True)
class OperatorDirectedAVSRewardsSubmissionCreated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorDirectedAVSRewardsSubmissionCreated"

    caller: str
    avs: str
    submission_nonce: int
    rewards_submission_hash: str
    strategies_and_multipliers: List[StrategyMultiplier]
    token: str
    operator_rewards: List[OperatorReward]
    start_timestamp: int
    duration: int
    description: str


@dataclass(frozen=True)
class OperatorDirectedOperatorSetRewardsSubmissionCreated(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorDirectedOperatorSetRewardsSubmissionCreated"

    caller: str
    avs: str
    operator_set_index: int
    submission_nonce: int
    rewards_submission_hash: str
    strategies_and_multipliers: List[StrategyMultiplier]
    token: str
    operator_rewards: List[OperatorReward]
    start_timestamp: int
    duration: int
    description: str


@dataclass(frozen=True)
class OperatorAVSSplitBipsSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorAVSSplitBipsSet"

    caller: str
    operator: str
    avs: str
    activated_at: int
    old_split_bips: int
    new_split_bips: int


@dataclass(frozen=True)
class OperatorPISplitBipsSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorPISplitBipsSet"

    caller: str
    operator: str
    activated_at: int
    old_split_bips: int
    new_split_bips: int


@dataclass(frozen=True)
class OperatorSetSplitBipsSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "OperatorSetSplitBipsSet"

    caller: str
    operator: str
    avs: str
    operator_set_index: int
    activated_at: int
    old_split_bips: int
    new_split_bips: int


@dataclass(frozen=True)
class DistributionRootSubmitted(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "DistributionRootSubmitted"

    root_index: int
    root: str
    rewards_calculation_end_timestamp: int
    activated_at: int


@dataclass(frozen=True)
class DistributionRootDisabled(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "DistributionRootDisabled"

    root_index: int


@dataclass(frozen=True)
class RewardsClaimed(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "RewardsClaimed"

    root: str
    earner: str
    claimer: str
    recipient: str
    token: str
    claimed_amount: int


@dataclass(frozen=True)
class ActivationDelaySet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "ActivationDelaySet"

    old_activation_delay: int
    new_activation_delay: int


@dataclass(frozen=True)
class DefaultOperatorSplitBipsSet(ProtocolEvent):
    EVENT_TYPE: ClassVar[str] = "DefaultOperatorSplitBipsSet"

    old_default_split_bips: int
    new_default_split_bips: int


def operator_set_key(event: ProtocolEvent) -> Tuple[str, int]:
    """(avs, setIndex) for events that reference an operator set."""
    return (getattr(event, "avs"), getattr(event, "operator_set_index"))


EVENT_CLASSES: Dict[str, Type[ProtocolEvent]] = {
    cls.EVENT_TYPE: cls
    for cls in (
        OperatorRegistered,
        OperatorMetadataURIUpdated,
        StakerDelegated,
        StakerUndelegated,
        StakerForceUndelegated,
        OperatorSharesIncreased,
        OperatorSharesDecreased,
        OperatorSharesSlashed,
        SlashingWithdrawalQueued,
        SlashingWithdrawalCompleted,
        DelegationApproverUpdated,
        DepositScalingFactorUpdated,
        OperatorSlashed,
        AllocationUpdated,
        AllocationDelaySet,
        EncumberedMagnitudeUpdated,
        MaxMagnitudeUpdated,
        OperatorSetCreated,
        OperatorAddedToOperatorSet,
        OperatorRemovedFromOperatorSet,
        StrategyAddedToOperatorSet,
        StrategyRemovedFromOperatorSet,
        AVSMetadataURIUpdated,
        RedistributionAddressSet,
        AVSRegistrarSet,
        OperatorAVSRegistrationStatusUpdated,
        Deposit,
        StrategyAddedToDepositWhitelist,
        StrategyRemovedFromDepositWhitelist,
        BurnOrRedistributableSharesIncreased,
        BurnOrRedistributableSharesDecreased,
        BurnableSharesDecreased,
        PodDeployed,
        BeaconChainETHDeposited,
        PodSharesUpdated,
        NewTotalShares,
        BeaconChainETHWithdrawalCompleted,
        BeaconChainSlashingFactorDecreased,
        BurnableETHSharesIncreased,
        AVSRewardsSubmissionCreated,
        RewardsSubmissionForAllCreated,
        RewardsSubmissionForAllEarnersCreated,
        OperatorDirectedAVSRewardsSubmissionCreated,
        OperatorDirectedOperatorSetRewardsSubmissionCreated,
        OperatorAVSSplitBipsSet,
        OperatorPISplitBipsSet,
        OperatorSetSplitBipsSet,
        DistributionRootSubmitted,
        DistributionRootDisabled,
        RewardsClaimed,
        ActivationDelaySet,
        DefaultOperatorSplitBipsSet,
    )
}


def event_class_for(event_type: str) -> Optional[Type[ProtocolEvent]]:
    return EVENT_CLASSES.get(event_type)
