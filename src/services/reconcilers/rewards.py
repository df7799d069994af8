# services/reconcilers/rewards.py

from typing import Any, Dict, List, Optional, Type

from services.entities import (
    AVS_KIND,
    COMMISSION_EVENT,
    DISTRIBUTION_ROOT_EVENT,
    OPERATOR,
    OPERATOR_SET,
    PROTOCOL_CONFIG_EVENT,
    REWARDS_CLAIMED,
    REWARDS_SUBMISSION,
)
from services.events import (
    ActivationDelaySet,
    AVSRewardsSubmissionCreated,
    DefaultOperatorSplitBipsSet,
    DistributionRootDisabled,
    DistributionRootSubmitted,
    OperatorAVSSplitBipsSet,
    OperatorDirectedAVSRewardsSubmissionCreated,
    OperatorDirectedOperatorSetRewardsSubmissionCreated,
    OperatorPISplitBipsSet,
    OperatorReward,
    OperatorSetSplitBipsSet,
    ProtocolEvent,
    RewardsClaimed,
    RewardsSubmissionForAllCreated,
    RewardsSubmissionForAllEarnersCreated,
    StrategyMultiplier,
    operator_set_key,
)
from services.identity import address_id
from .base import BaseReconciler, Handler, ReconciliationStep

AVS_SPECIFIC = "AVS_SPECIFIC"
PI_SPECIFIC = "PI_SPECIFIC"
OPERATOR_SET_SPECIFIC = "OPERATOR_SET_SPECIFIC"


def encode_multipliers(pairs: List[StrategyMultiplier]) -> List[Dict[str, str]]:
    return [
        {"strategy": address_id(pair.strategy), "multiplier": str(pair.multiplier)}
        for pair in pairs
    ]


def encode_operator_rewards(rewards: List[OperatorReward]) -> List[Dict[str, str]]:
    return [
        {"operator": address_id(reward.operator), "amount": str(reward.amount)}
        for reward in rewards
    ]


class RewardsReconciler(BaseReconciler):
    """
    Rewards submissions, operator commission splits, distribution roots and claims.

    All of these are append-only. Commission changes take effect at activated_at,
    which is recorded for consumers and not applied here.
    """

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            AVSRewardsSubmissionCreated: self.avs_rewards_submission,
            RewardsSubmissionForAllCreated: self.rewards_for_all_submission,
            RewardsSubmissionForAllEarnersCreated: self.rewards_for_all_earners_submission,
            OperatorDirectedAVSRewardsSubmissionCreated: self.operator_directed_avs_submission,
            OperatorDirectedOperatorSetRewardsSubmissionCreated: self.operator_directed_set_submission,
            OperatorAVSSplitBipsSet: self.operator_avs_split,
            OperatorPISplitBipsSet: self.operator_pi_split,
            OperatorSetSplitBipsSet: self.operator_set_split,
            DistributionRootSubmitted: self.distribution_root_submitted,
            DistributionRootDisabled: self.distribution_root_disabled,
            RewardsClaimed: self.rewards_claimed,
            ActivationDelaySet: self.activation_delay_set,
            DefaultOperatorSplitBipsSet: self.default_operator_split_set,
        }

    # -----------------------------
    # Submissions
    # -----------------------------

    def _submission_data(
        self, event: ProtocolEvent, submission_type: str, submitter: str, amount: int
    ) -> Dict[str, Any]:
        return {
            "submission_type": submission_type,
            "submitter": address_id(submitter),
            "submission_nonce": event.submission_nonce,
            "rewards_submission_hash": event.rewards_submission_hash,
            "strategies_and_multipliers": encode_multipliers(event.strategies_and_multipliers),
            "token": address_id(event.token),
            "amount": str(amount),
            "start_timestamp": event.start_timestamp,
            "duration": event.duration,
        }

    def _avs_submission(
        self,
        step: ReconciliationStep,
        event: ProtocolEvent,
        submission_type: str,
        submitter: str,
        amount: int,
        extra: Optional[Dict[str, Any]] = None,
        operator_set_id: Optional[str] = None,
    ):
        avs = step.get_or_create(AVS_KIND, event.avs)
        avs.rewards_submission_count += 1
        step.touch(avs)

        data = self._submission_data(event, submission_type, submitter, amount)
        data.update(extra or {})
        step.add_record(REWARDS_SUBMISSION, avs_id=avs.id, operator_set_id=operator_set_id, data=data)

        self.logger.info(
            f"{submission_type} rewards submission {event.submission_nonce} by AVS {avs.id}: "
            f"{amount} of token {data['token']}"
        )

    def avs_rewards_submission(self, step: ReconciliationStep, event: AVSRewardsSubmissionCreated):
        self._avs_submission(step, event, "AVS", event.avs, event.amount)

    def rewards_for_all_submission(
        self, step: ReconciliationStep, event: RewardsSubmissionForAllCreated
    ):
        step.add_record(
            REWARDS_SUBMISSION,
            data=self._submission_data(event, "REWARDS_FOR_ALL", event.submitter, event.amount),
        )

    def rewards_for_all_earners_submission(
        self, step: ReconciliationStep, event: RewardsSubmissionForAllEarnersCreated
    ):
        step.add_record(
            REWARDS_SUBMISSION,
            data=self._submission_data(
                event, "REWARDS_FOR_ALL_EARNERS", event.token_hopper, event.amount
            ),
        )

    def operator_directed_avs_submission(
        self, step: ReconciliationStep, event: OperatorDirectedAVSRewardsSubmissionCreated
    ):
        total = sum(reward.amount for reward in event.operator_rewards)
        self._avs_submission(
            step,
            event,
            "OPERATOR_DIRECTED_AVS",
            event.caller,
            total,
            extra={
                "operator_rewards": encode_operator_rewards(event.operator_rewards),
                "description": event.description,
            },
        )

    def operator_directed_set_submission(
        self, step: ReconciliationStep, event: OperatorDirectedOperatorSetRewardsSubmissionCreated
    ):
        operator_set = step.load(OPERATOR_SET, *operator_set_key(event))
        if operator_set is not None:
            operator_set.last_activity_at = event.block_timestamp

        total = sum(reward.amount for reward in event.operator_rewards)
        self._avs_submission(
            step,
            event,
            "OPERATOR_DIRECTED_OPERATOR_SET",
            event.caller,
            total,
            extra={
                "operator_rewards": encode_operator_rewards(event.operator_rewards),
                "description": event.description,
                "operator_set": step.id_for(OPERATOR_SET, *operator_set_key(event)),
            },
            operator_set_id=operator_set.id if operator_set is not None else None,
        )

    # -----------------------------
    # Commission
    # -----------------------------

    def _commission(
        self,
        step: ReconciliationStep,
        event: ProtocolEvent,
        commission_type: str,
        avs_id: Optional[str] = None,
        operator_set_id: Optional[str] = None,
    ):
        operator = step.load(OPERATOR, event.operator)
        step.touch(operator)

        step.add_record(
            COMMISSION_EVENT,
            operator_id=operator.id if operator is not None else None,
            avs_id=avs_id,
            operator_set_id=operator_set_id,
            data={
                "commission_type": commission_type,
                "operator_address": step.id_for(OPERATOR, event.operator),
                "caller": address_id(event.caller),
                "activated_at": event.activated_at,
                "old_commission_bips": event.old_split_bips,
                "new_commission_bips": event.new_split_bips,
            },
        )
        self.logger.info(
            f"COMMISSION CHANGE ({commission_type}): operator {step.id_for(OPERATOR, event.operator)} "
            f"split {event.old_split_bips} -> {event.new_split_bips} bips, "
            f"active from {event.activated_at}"
        )

    def operator_avs_split(self, step: ReconciliationStep, event: OperatorAVSSplitBipsSet):
        avs = step.get_or_create(AVS_KIND, event.avs)
        step.touch(avs)
        self._commission(step, event, AVS_SPECIFIC, avs_id=avs.id)

    def operator_pi_split(self, step: ReconciliationStep, event: OperatorPISplitBipsSet):
        self._commission(step, event, PI_SPECIFIC)

    def operator_set_split(self, step: ReconciliationStep, event: OperatorSetSplitBipsSet):
        operator_set = step.load(OPERATOR_SET, *operator_set_key(event))
        if operator_set is None:
            self._commission(step, event, OPERATOR_SET_SPECIFIC)
            return None

        operator_set.last_activity_at = event.block_timestamp
        avs = step.load(AVS_KIND, operator_set.avs_id)
        self._commission(
            step,
            event,
            OPERATOR_SET_SPECIFIC,
            avs_id=avs.id if avs is not None else None,
            operator_set_id=operator_set.id,
        )

    # -----------------------------
    # Distribution roots and claims
    # -----------------------------

    def distribution_root_submitted(
        self, step: ReconciliationStep, event: DistributionRootSubmitted
    ):
        step.add_record(
            DISTRIBUTION_ROOT_EVENT,
            data={
                "root_event": "SUBMITTED",
                "root_index": event.root_index,
                "root": event.root,
                "rewards_calculation_end_timestamp": event.rewards_calculation_end_timestamp,
                "activated_at": event.activated_at,
            },
        )
        self.logger.info(f"Distribution root {event.root_index} submitted: {event.root}")

    def distribution_root_disabled(self, step: ReconciliationStep, event: DistributionRootDisabled):
        step.add_record(
            DISTRIBUTION_ROOT_EVENT,
            data={"root_event": "DISABLED", "root_index": event.root_index},
        )
        self.logger.warning(f"Distribution root {event.root_index} disabled at {step.event_id}")

    def rewards_claimed(self, step: ReconciliationStep, event: RewardsClaimed):
        step.add_record(
            REWARDS_CLAIMED,
            data={
                "root": event.root,
                "earner": address_id(event.earner),
                "claimer": address_id(event.claimer),
                "recipient": address_id(event.recipient),
                "token": address_id(event.token),
                "claimed_amount": str(event.claimed_amount),
            },
        )

    # -----------------------------
    # Protocol configuration
    # -----------------------------

    def activation_delay_set(self, step: ReconciliationStep, event: ActivationDelaySet):
        step.add_record(
            PROTOCOL_CONFIG_EVENT,
            data={
                "setting": "ACTIVATION_DELAY",
                "old_value": event.old_activation_delay,
                "new_value": event.new_activation_delay,
            },
        )

    def default_operator_split_set(
        self, step: ReconciliationStep, event: DefaultOperatorSplitBipsSet
    ):
        step.add_record(
            PROTOCOL_CONFIG_EVENT,
            data={
                "setting": "DEFAULT_OPERATOR_SPLIT_BIPS",
                "old_value": event.old_default_split_bips,
                "new_value": event.new_default_split_bips,
            },
        )
