# services/decoding/event_decoder.py
"""
Decode raw event-source rows into typed ProtocolEvents.

A row carries the log position (event_type, block_number, log_index,
block_timestamp, transaction_hash, contract_address) and a params mapping. Param
names are accepted in snake_case or in the camelCase of the contract ABI. ABI struct
params (operatorSet, rewardsSubmission, operatorDirectedRewardsSubmission,
withdrawal) may be passed nested, as a mapping or a positional tuple, or already
flattened.
"""

import re
from typing import Any, Dict, Mapping

from services.errors import PayloadValidationError, UnsupportedEventError
from services.events import EVENT_CLASSES, ProtocolEvent
from services.validators.payload_validator import PayloadValidator, to_int
from utils.normalizers import normalize_address, normalize_hex

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


# Field rules per event type. a=address, u=uint, i=int, b=bytes, s=string,
# a[]=address list, u[]=uint list, sm=(strategy, multiplier) list, or=(operator, amount) list
PAYLOAD_SCHEMAS: Dict[str, Dict[str, str]] = {
    # DelegationManager
    "OperatorRegistered": {"operator": "a", "delegation_approver": "a"},
    "OperatorMetadataURIUpdated": {"operator": "a", "metadata_uri": "s"},
    "StakerDelegated": {"staker": "a", "operator": "a"},
    "StakerUndelegated": {"staker": "a", "operator": "a"},
    "StakerForceUndelegated": {"staker": "a", "operator": "a"},
    "OperatorSharesIncreased": {"operator": "a", "staker": "a", "strategy": "a", "shares": "u"},
    "OperatorSharesDecreased": {"operator": "a", "staker": "a", "strategy": "a", "shares": "u"},
    "OperatorSharesSlashed": {"operator": "a", "strategy": "a", "total_slashed_shares": "u"},
    "SlashingWithdrawalQueued": {
        "withdrawal_root": "b",
        "staker": "a",
        "delegated_to": "a",
        "withdrawer": "a",
        "nonce": "u",
        "start_block": "u",
        "strategies": "a[]",
        "scaled_shares": "u[]",
        "shares_to_withdraw": "u[]",
    },
    "SlashingWithdrawalCompleted": {"withdrawal_root": "b"},
    "DelegationApproverUpdated": {"operator": "a", "new_delegation_approver": "a"},
    "DepositScalingFactorUpdated": {
        "staker": "a",
        "strategy": "a",
        "new_deposit_scaling_factor": "u",
    },
    # AllocationManager
    "OperatorSlashed": {
        "operator": "a",
        "avs": "a",
        "operator_set_index": "u",
        "strategies": "a[]",
        "wad_slashed": "u[]",
        "description": "s",
    },
    "AllocationUpdated": {
        "operator": "a",
        "avs": "a",
        "operator_set_index": "u",
        "strategy": "a",
        "magnitude": "u",
        "effect_block": "u",
    },
    "AllocationDelaySet": {"operator": "a", "delay": "u", "effect_block": "u"},
    "EncumberedMagnitudeUpdated": {"operator": "a", "strategy": "a", "encumbered_magnitude": "u"},
    "MaxMagnitudeUpdated": {"operator": "a", "strategy": "a", "max_magnitude": "u"},
    "OperatorSetCreated": {"avs": "a", "operator_set_index": "u"},
    "OperatorAddedToOperatorSet": {"operator": "a", "avs": "a", "operator_set_index": "u"},
    "OperatorRemovedFromOperatorSet": {"operator": "a", "avs": "a", "operator_set_index": "u"},
    "StrategyAddedToOperatorSet": {"avs": "a", "operator_set_index": "u", "strategy": "a"},
    "StrategyRemovedFromOperatorSet": {"avs": "a", "operator_set_index": "u", "strategy": "a"},
    "AVSMetadataURIUpdated": {"avs": "a", "metadata_uri": "s"},
    "RedistributionAddressSet": {
        "avs": "a",
        "operator_set_index": "u",
        "redistribution_recipient": "a",
    },
    "AVSRegistrarSet": {"avs": "a", "registrar": "a"},
    # AVSDirectory
    "OperatorAVSRegistrationStatusUpdated": {"operator": "a", "avs": "a", "status": "u"},
    # StrategyManager
    "Deposit": {"staker": "a", "strategy": "a", "shares": "u"},
    "StrategyAddedToDepositWhitelist": {"strategy": "a"},
    "StrategyRemovedFromDepositWhitelist": {"strategy": "a"},
    "BurnOrRedistributableSharesIncreased": {
        "avs": "a",
        "operator_set_index": "u",
        "slash_id": "u",
        "strategy": "a",
        "shares": "u",
    },
    "BurnOrRedistributableSharesDecreased": {
        "avs": "a",
        "operator_set_index": "u",
        "slash_id": "u",
        "strategy": "a",
        "shares": "u",
    },
    "BurnableSharesDecreased": {"strategy": "a", "shares": "u"},
    # EigenPodManager
    "PodDeployed": {"eigen_pod": "a", "pod_owner": "a"},
    "BeaconChainETHDeposited": {"pod_owner": "a", "amount": "u"},
    "PodSharesUpdated": {"pod_owner": "a", "shares_delta": "i"},
    "NewTotalShares": {"pod_owner": "a", "new_total_shares": "i"},
    "BeaconChainETHWithdrawalCompleted": {
        "pod_owner": "a",
        "shares": "u",
        "nonce": "u",
        "delegated_address": "a",
        "withdrawer": "a",
        "withdrawal_root": "b",
    },
    "BeaconChainSlashingFactorDecreased": {
        "staker": "a",
        "prev_beacon_chain_slashing_factor": "u",
        "new_beacon_chain_slashing_factor": "u",
    },
    "BurnableETHSharesIncreased": {"shares": "u"},
    # RewardsCoordinator
    "AVSRewardsSubmissionCreated": {
        "avs": "a",
        "submission_nonce": "u",
        "rewards_submission_hash": "b",
        "strategies_and_multipliers": "sm",
        "token": "a",
        "amount": "u",
        "start_timestamp": "u",
        "duration": "u",
    },
    "RewardsSubmissionForAllCreated": {
        "submitter": "a",
        "submission_nonce": "u",
        "rewards_submission_hash": "b",
        "strategies_and_multipliers": "sm",
        "token": "a",
        "amount": "u",
        "start_timestamp": "u",
        "duration": "u",
    },
    "RewardsSubmissionForAllEarnersCreated": {
        "token_hopper": "a",
        "submission_nonce": "u",
        "rewards_submission_hash": "b",
        "strategies_and_multipliers": "sm",
        "token": "a",
        "amount": "u",
        "start_timestamp": "u",
        "duration": "u",
    },
    "OperatorDirectedAVSRewardsSubmissionCreated": {
        "caller": "a",
        "avs": "a",
        "submission_nonce": "u",
        "rewards_submission_hash": "b",
        "strategies_and_multipliers": "sm",
        "token": "a",
        "operator_rewards": "or",
        "start_timestamp": "u",
        "duration": "u",
        "description": "s",
    },
    "OperatorDirectedOperatorSetRewardsSubmissionCreated": {
        "caller": "a",
        "avs": "a",
        "operator_set_index": "u",
        "submission_nonce": "u",
        "rewards_submission_hash": "b",
        "strategies_and_multipliers": "sm",
        "token": "a",
        "operator_rewards": "or",
        "start_timestamp": "u",
        "duration": "u",
        "description": "s",
    },
    "OperatorAVSSplitBipsSet": {
        "caller": "a",
        "operator": "a",
        "avs": "a",
        "activated_at": "u",
        "old_split_bips": "u",
        "new_split_bips": "u",
    },
    "OperatorPISplitBipsSet": {
        "caller": "a",
        "operator": "a",
        "activated_at": "u",
        "old_split_bips": "u",
        "new_split_bips": "u",
    },
    "OperatorSetSplitBipsSet": {
        "caller": "a",
        "operator": "a",
        "avs": "a",
        "operator_set_index": "u",
        "activated_at": "u",
        "old_split_bips": "u",
        "new_split_bips": "u",
    },
    "DistributionRootSubmitted": {
        "root_index": "u",
        "root": "b",
        "rewards_calculation_end_timestamp": "u",
        "activated_at": "u",
    },
    "DistributionRootDisabled": {"root_index": "u"},
    "RewardsClaimed": {
        "root": "b",
        "earner": "a",
        "claimer": "a",
        "recipient": "a",
        "token": "a",
        "claimed_amount": "u",
    },
    "ActivationDelaySet": {"old_activation_delay": "u", "new_activation_delay": "u"},
    "DefaultOperatorSplitBipsSet": {"old_default_split_bips": "u", "new_default_split_bips": "u"},
}

# ABI parameter names that differ from the typed field names
PARAM_ALIASES: Dict[str, str] = {
    "operator_set_id": "operator_set_index",
    "operator_directed_rewards_submission_hash": "rewards_submission_hash",
    "old_operator_avs_split_bips": "old_split_bips",
    "new_operator_avs_split_bips": "new_split_bips",
    "old_operator_pi_split_bips": "old_split_bips",
    "new_operator_pi_split_bips": "new_split_bips",
    "old_operator_set_split_bips": "old_split_bips",
    "new_operator_set_split_bips": "new_split_bips",
    "old_default_operator_split_bips": "old_default_split_bips",
    "new_default_operator_split_bips": "new_default_split_bips",
}

# ABI struct params and their members, in ABI order. Members are lifted to the
# top level under the given field names; positional tuples are accepted too.
STRUCT_MEMBERS: Dict[str, Dict[str, str]] = {
    "operator_set": {"avs": "avs", "id": "operator_set_index"},
    "rewards_submission": {
        "strategies_and_multipliers": "strategies_and_multipliers",
        "token": "token",
        "amount": "amount",
        "start_timestamp": "start_timestamp",
        "duration": "duration",
    },
    "operator_directed_rewards_submission": {
        "strategies_and_multipliers": "strategies_and_multipliers",
        "token": "token",
        "operator_rewards": "operator_rewards",
        "start_timestamp": "start_timestamp",
        "duration": "duration",
        "description": "description",
    },
    "withdrawal": {
        "staker": "staker",
        "delegated_to": "delegated_to",
        "withdrawer": "withdrawer",
        "nonce": "nonce",
        "start_block": "start_block",
        "strategies": "strategies",
        "scaled_shares": "scaled_shares",
    },
}


def flatten_struct(name: str, value: Any) -> Dict[str, Any]:
    """Lift the members of a struct param to top-level field names."""
    members = STRUCT_MEMBERS[name]
    if isinstance(value, Mapping):
        flattened = {}
        for member, member_value in value.items():
            snake = to_snake_case(member)
            flattened[members.get(snake, PARAM_ALIASES.get(snake, snake))] = member_value
        return flattened
    if isinstance(value, (list, tuple)) and len(value) == len(members):
        return dict(zip(members.values(), value))
    raise PayloadValidationError(
        f"Param '{name}' must be a struct of {tuple(members)}, got {value!r}"
    )


def build_validator(schema: Dict[str, str]) -> PayloadValidator:
    validator = PayloadValidator()
    builders = {
        "a": validator.add_address_field,
        "u": validator.add_uint_field,
        "i": validator.add_int_field,
        "b": validator.add_bytes_field,
        "s": validator.add_string_field,
        "a[]": validator.add_address_list_field,
        "u[]": validator.add_uint_list_field,
        "sm": validator.add_strategy_multipliers_field,
        "or": validator.add_operator_rewards_field,
    }
    for field_name, rule in schema.items():
        builders[rule](field_name)
    return validator


class EventDecoder:
    """Turns event-source rows into typed events, one PayloadValidator per event type."""

    def __init__(self):
        self.validators: Dict[str, PayloadValidator] = {
            event_type: build_validator(schema) for event_type, schema in PAYLOAD_SCHEMAS.items()
        }

    def supports(self, event_type: str) -> bool:
        return event_type in self.validators and event_type in EVENT_CLASSES

    def decode(self, row: Mapping[str, Any]) -> ProtocolEvent:
        """
        Decode one row into its ProtocolEvent variant.

        Raises:
            UnsupportedEventError: If the event type is unknown
            PayloadValidationError: If the position or params are invalid
        """
        event_type = row.get("event_type")
        if not self.supports(event_type):
            raise UnsupportedEventError(f"Unsupported event type '{event_type}'")

        try:
            position = {
                "block_number": to_int("block_number", row["block_number"]),
                "log_index": to_int("log_index", row["log_index"]),
                "block_timestamp": to_int("block_timestamp", row["block_timestamp"]),
                "transaction_hash": normalize_hex(row["transaction_hash"]),
                "contract_address": normalize_address(row["contract_address"]),
            }
        except KeyError as exc:
            raise PayloadValidationError(f"{event_type}: missing position field {exc}") from exc
        except ValueError as exc:
            raise PayloadValidationError(f"{event_type}: {exc}") from exc

        try:
            params = self.normalize_param_names(row.get("params") or {})
            payload = self.validators[event_type].validate_and_transform(params)
        except PayloadValidationError as exc:
            raise PayloadValidationError(
                f"{event_type} at {position['transaction_hash']}-{position['log_index']}: {exc}"
            ) from exc

        return EVENT_CLASSES[event_type](**position, **payload)

    @staticmethod
    def normalize_param_names(params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Snake-case param names, apply aliases and flatten struct params.

        Raises:
            PayloadValidationError: If a struct param is malformed, or one of its
                members disagrees with a top-level param of the same name
        """
        normalized: Dict[str, Any] = {}
        lifted: Dict[str, Any] = {}
        for name, value in params.items():
            snake = to_snake_case(name)
            if snake in STRUCT_MEMBERS:
                lifted.update(flatten_struct(snake, value))
            else:
                normalized[PARAM_ALIASES.get(snake, snake)] = value

        for field_name, value in lifted.items():
            if field_name in normalized and normalized[field_name] != value:
                raise PayloadValidationError(
                    f"Struct member '{field_name}' conflicts with the top-level param"
                )
            normalized[field_name] = value
        return normalized
