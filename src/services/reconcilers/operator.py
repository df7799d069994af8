# services/reconcilers/operator.py

from typing import Dict, Type

from services.entities import (
    AVS_KIND,
    AVS_REGISTRAR_SET,
    AVS_REGISTRATION,
    DELEGATION_APPROVER_UPDATE,
    METADATA_UPDATE,
    OPERATOR,
    OPERATOR_AVS_REGISTRATION_STATUS,
    OPERATOR_REGISTERED,
    REGISTERED,
    REGISTRATION_STATE,
    UNREGISTERED,
)
from services.events import (
    AVSMetadataURIUpdated,
    AVSRegistrarSet,
    DelegationApproverUpdated,
    OperatorAVSRegistrationStatusUpdated,
    OperatorMetadataURIUpdated,
    OperatorRegistered,
    ProtocolEvent,
)
from .base import BaseReconciler, Handler, ReconciliationStep


class OperatorReconciler(BaseReconciler):
    """Operator and AVS lifecycle: registration, metadata, approvers, legacy AVS registrations"""

    def handlers(self) -> Dict[Type[ProtocolEvent], Handler]:
        return {
            OperatorRegistered: self.operator_registered,
            OperatorMetadataURIUpdated: self.operator_metadata_updated,
            DelegationApproverUpdated: self.delegation_approver_updated,
            OperatorAVSRegistrationStatusUpdated: self.avs_registration_status_updated,
            AVSMetadataURIUpdated: self.avs_metadata_updated,
            AVSRegistrarSet: self.avs_registrar_set,
        }

    def operator_registered(self, step: ReconciliationStep, event: OperatorRegistered):
        operator = step.get_or_create(
            OPERATOR,
            event.operator,
            delegation_approver=event.delegation_approver,
            registered_at_block=event.block_number,
            registered_at_transaction=event.transaction_hash,
        )

        if not step.resolver.was_created(OPERATOR, operator.id):
            if operator.registered_at_block == 0:
                # Seen earlier through a weak reference; fill in the real registration
                operator.delegation_approver = event.delegation_approver
                operator.registered_at = event.block_timestamp
                operator.registered_at_block = event.block_number
                operator.registered_at_transaction = event.transaction_hash
            else:
                self.logger.warning(
                    f"Operator {operator.id} registered again at {step.event_id} "
                    f"(first registration block {operator.registered_at_block})"
                )

        step.touch(operator)
        step.add_record(
            OPERATOR_REGISTERED,
            operator_id=operator.id,
            data={"delegation_approver": event.delegation_approver},
        )
        self.logger.info(f"Operator {operator.id} registered at {step.event_id}")

    def operator_metadata_updated(
        self, step: ReconciliationStep, event: OperatorMetadataURIUpdated
    ):
        operator = step.require(OPERATOR, event.operator)
        operator.metadata_uri = event.metadata_uri
        step.touch(operator)

        step.add_record(
            METADATA_UPDATE,
            operator_id=operator.id,
            data={"target": "OPERATOR", "metadata_uri": event.metadata_uri},
        )

    def delegation_approver_updated(
        self, step: ReconciliationStep, event: DelegationApproverUpdated
    ):
        operator = step.require(OPERATOR, event.operator)
        previous = operator.delegation_approver
        operator.delegation_approver = event.new_delegation_approver
        step.touch(operator)

        step.add_record(
            DELEGATION_APPROVER_UPDATE,
            operator_id=operator.id,
            data={
                "previous_delegation_approver": previous,
                "new_delegation_approver": event.new_delegation_approver,
            },
        )

    def avs_registration_status_updated(
        self, step: ReconciliationStep, event: OperatorAVSRegistrationStatusUpdated
    ):
        operator = step.get_or_create(OPERATOR, event.operator)
        avs = step.get_or_create(AVS_KIND, event.avs)
        registration = step.get_or_create(
            AVS_REGISTRATION,
            operator.id,
            avs.id,
            updated_at_block=event.block_number,
        )

        status = REGISTERED if event.status == 1 else UNREGISTERED

        if registration.status == status:
            step.note_anomaly(
                REGISTRATION_STATE,
                f"operator {operator.id} already {status} with AVS {avs.id}, counters unchanged",
                entity=registration,
            )
        elif status == REGISTERED:
            operator.avs_registration_count += 1
            avs.total_operator_registrations += 1
        else:
            operator.avs_registration_count -= 1
            avs.total_operator_registrations -= 1

        registration.status = status
        registration.updated_at = event.block_timestamp
        registration.updated_at_block = event.block_number
        step.touch(operator, avs)

        step.add_record(
            OPERATOR_AVS_REGISTRATION_STATUS,
            operator_id=operator.id,
            avs_id=avs.id,
            data={"status": status, "registration_id": registration.id},
        )
        self.logger.info(
            f"OperatorAVSRegistrationStatusUpdated processed: {operator.id} {status} with AVS {avs.id}"
        )

    def avs_metadata_updated(self, step: ReconciliationStep, event: AVSMetadataURIUpdated):
        avs = step.get_or_create(AVS_KIND, event.avs)
        avs.metadata_uri = event.metadata_uri
        step.touch(avs)

        step.add_record(
            METADATA_UPDATE,
            avs_id=avs.id,
            data={"target": "AVS", "metadata_uri": event.metadata_uri},
        )

    def avs_registrar_set(self, step: ReconciliationStep, event: AVSRegistrarSet):
        avs = step.get_or_create(AVS_KIND, event.avs)
        avs.registrar = event.registrar
        step.touch(avs)

        step.add_record(AVS_REGISTRAR_SET, avs_id=avs.id, data={"registrar": event.registrar})
