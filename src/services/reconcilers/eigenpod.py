# services/reconcilers/eigenpod.py

from typing import Dict, Type

from services.entities import (
    BEACON_CHAIN_DEPOSIT,
    BEACON_CHAIN_WITHDRAWAL,
    EIGEN_POD,
    POD_DEPLOYED,
    POD_OWNERSHIP,
    SHARE_EVENT,
    STAKER,
    EigenPod,
    Staker,
)
from services.errors import MissingParentError
from services.events import (
    BeaconChainETHDeposited,
    BeaconChainETHWithdrawalCompleted,
    NewTotalShares,
    PodDeployed,
    PodSharesUpdated,
    ProtocolEvent,
)
from services.identity import address_id
from .base import BaseReconciler, Handler, Outcome, ReconciliationStep

POD_SHARES = "POD"


class EigenPodReconciler(BaseReconciler):
    """
    Native restaking through EigenPods.

    Each staker owns at most one pod, found through EigenPod.owner. Pod share
    events arrive either as a delta (PodSharesUpdated) or as an absolute total
    (NewTotalShares); both produce a SHARE_EVENT with the same signed delta
    semantics. Pod totals are signed and may legitimately go negative.
    """

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            PodDeployed: self.pod_deployed,
            BeaconChainETHDeposited: self.beacon_chain_deposit,
            PodSharesUpdated: self.pod_shares_updated,
            NewTotalShares: self.new_total_shares,
            BeaconChainETHWithdrawalCompleted: self.beacon_chain_withdrawal,
        }

    def _pod_of(self, step: ReconciliationStep, staker: Staker) -> EigenPod:
        pods = step.find(EIGEN_POD, owner=staker.id)
        if not pods:
            self.logger.warning(
                f"{step.event.EVENT_TYPE} {step.event_id}: no EigenPod found for staker "
                f"{staker.id}, skipping event"
            )
            raise MissingParentError(EIGEN_POD, f"owned by {staker.id}", step.event_id)
        if len(pods) > 1:
            self.logger.error(
                f"Staker {staker.id} owns {len(pods)} EigenPods, using {pods[0].id}"
            )
        return pods[0]

    def pod_deployed(self, step: ReconciliationStep, event: PodDeployed):
        staker = step.get_or_create(STAKER, event.pod_owner)
        pod_id = address_id(event.eigen_pod)

        for existing in step.find(EIGEN_POD, owner=staker.id):
            if existing.id != pod_id:
                step.note_anomaly(
                    POD_OWNERSHIP,
                    f"staker {staker.id} already owns pod {existing.id}, "
                    f"refusing second pod {pod_id}",
                    entity=existing,
                    severity="ERROR",
                )
                return Outcome.skipped(f"staker {staker.id} already owns EigenPod {existing.id}")

        pod = step.get_or_create(EIGEN_POD, event.eigen_pod, owner=staker.id)
        if pod.owner != staker.id:
            step.note_anomaly(
                POD_OWNERSHIP,
                f"pod {pod.id} already owned by {pod.owner}, not {staker.id}",
                entity=pod,
                severity="ERROR",
            )
            return Outcome.skipped(f"EigenPod {pod.id} belongs to {pod.owner}")
        step.touch(staker, pod)

        step.add_record(POD_DEPLOYED, staker_id=staker.id, pod_id=pod.id)
        self.logger.info(f"EigenPod {pod.id} deployed for staker {staker.id}")

    def beacon_chain_deposit(self, step: ReconciliationStep, event: BeaconChainETHDeposited):
        staker = step.get_or_create(STAKER, event.pod_owner)
        pod = self._pod_of(step, staker)

        pod.deposit_count += 1
        step.touch(staker, pod)

        step.add_record(
            BEACON_CHAIN_DEPOSIT,
            staker_id=staker.id,
            pod_id=pod.id,
            data={"amount": str(event.amount)},
        )

    def _apply_pod_delta(
        self, step: ReconciliationStep, event: ProtocolEvent, pod: EigenPod, staker: Staker,
        shares_delta: int,
    ):
        previous_total = pod.total_shares
        pod.total_shares = previous_total + shares_delta
        step.touch(staker, pod)

        if shares_delta < 0:
            self.logger.warning(
                f"POTENTIAL SLASHING: pod owner {staker.id} shares {previous_total} -> "
                f"{pod.total_shares} (delta {shares_delta}) at {step.event_id}"
            )

        step.add_record(
            SHARE_EVENT,
            staker_id=staker.id,
            pod_id=pod.id,
            data={
                "share_kind": POD_SHARES,
                "event_type": event.EVENT_TYPE,
                "shares_delta": shares_delta,
                "new_total_shares": pod.total_shares,
            },
        )

    def pod_shares_updated(self, step: ReconciliationStep, event: PodSharesUpdated):
        staker = step.get_or_create(STAKER, event.pod_owner)
        pod = self._pod_of(step, staker)
        self._apply_pod_delta(step, event, pod, staker, event.shares_delta)

    def new_total_shares(self, step: ReconciliationStep, event: NewTotalShares):
        staker = step.get_or_create(STAKER, event.pod_owner)
        pod = self._pod_of(step, staker)
        # Delta against the current total, taken before the total is overwritten
        self._apply_pod_delta(step, event, pod, staker, event.new_total_shares - pod.total_shares)

    def beacon_chain_withdrawal(
        self, step: ReconciliationStep, event: BeaconChainETHWithdrawalCompleted
    ):
        staker = step.get_or_create(STAKER, event.pod_owner)
        pod = self._pod_of(step, staker)

        pod.withdrawal_count += 1
        staker.withdrawal_count += 1
        step.touch(staker, pod)

        step.add_record(
            BEACON_CHAIN_WITHDRAWAL,
            staker_id=staker.id,
            pod_id=pod.id,
            data={
                "shares": str(event.shares),
                "nonce": event.nonce,
                "delegated_address": address_id(event.delegated_address),
                "withdrawer": address_id(event.withdrawer),
                "withdrawal_root": event.withdrawal_root,
            },
        )
