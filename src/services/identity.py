# services/identity.py
"""
Identity Resolver - deterministic ids and get-or-create for every entity kind.

Composite ids join their parts with DELIMITER in a fixed order, so the same logical
entity gets the same id whichever event sees it first:

    operator set      "<avs>-<setIndex>"
    membership        "<operator>-<operatorSet>-<joinedAt>"
    avs registration  "<operator>-<avs>"
    staker delegation "<staker>-<operator>-<timestamp>"
    derived record    "<txHash>-<logIndex>"

Membership and staker delegation ids take a "-<logIndex>" suffix when a row with
the plain id already exists from an earlier event at the same timestamp.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from services.entities import (
    AVS,
    AVS_KIND,
    AVS_REGISTRATION,
    DELEGATION,
    EIGEN_POD,
    MEMBERSHIP,
    OPERATOR,
    OPERATOR_SET,
    STAKER,
    STRATEGY,
    UNREGISTERED,
    ZERO_ADDRESS,
    EigenPod,
    Entity,
    Operator,
    OperatorAVSRegistration,
    OperatorSet,
    OperatorSetMembership,
    Staker,
    StakerDelegation,
    Strategy,
)
from services.store.base import EntityStore

DELIMITER = "-"

# Kinds without a canonical creation event; first reference creates them
WEAK_KINDS = frozenset({OPERATOR, AVS_KIND, STRATEGY, STAKER})


def address_id(address: str) -> str:
    return address.lower()


def operator_set_id(avs: str, operator_set_index: int) -> str:
    return f"{address_id(avs)}{DELIMITER}{operator_set_index}"


def membership_id(
    operator_id: str, set_id: str, joined_at: int, log_index: Optional[int] = None
) -> str:
    base = f"{operator_id}{DELIMITER}{set_id}{DELIMITER}{joined_at}"
    if log_index is None:
        return base
    return f"{base}{DELIMITER}{log_index}"


def avs_registration_id(operator_id: str, avs_id: str) -> str:
    return f"{operator_id}{DELIMITER}{avs_id}"


def delegation_id(
    staker_id: str, operator_id: str, timestamp: int, log_index: Optional[int] = None
) -> str:
    base = f"{staker_id}{DELIMITER}{operator_id}{DELIMITER}{timestamp}"
    if log_index is None:
        return base
    return f"{base}{DELIMITER}{log_index}"


def record_id(transaction_hash: str, log_index: int) -> str:
    return f"{transaction_hash}{DELIMITER}{log_index}"


def _new_operator(entity_id: str, parts: Sequence, timestamp: int, fields: Dict) -> Operator:
    return Operator(
        id=entity_id,
        address=entity_id,
        delegation_approver=fields.get("delegation_approver", ZERO_ADDRESS),
        metadata_uri=None,
        delegator_count=0,
        avs_registration_count=0,
        operator_set_count=0,
        slashing_event_count=0,
        registered_at=timestamp,
        registered_at_block=fields.get("registered_at_block", 0),
        registered_at_transaction=fields.get("registered_at_transaction"),
        last_activity_at=timestamp,
        updated_at=timestamp,
    )


def _new_avs(entity_id: str, parts: Sequence, timestamp: int, fields: Dict) -> AVS:
    return AVS(
        id=entity_id,
        address=entity_id,
        metadata_uri=None,
        registrar=None,
        operator_set_count=0,
        total_operator_registrations=0,
        rewards_submission_count=0,
        slashing_event_count=0,
        created_at=timestamp,
        last_activity_at=timestamp,
        updated_at=timestamp,
    )


def _new_operator_set(
    entity_id: str, parts: Sequence, timestamp: int, fields: Dict
) -> OperatorSet:
    avs, index = parts
    return OperatorSet(
        id=entity_id,
        avs_id=address_id(avs),
        operator_set_index=int(index),
        member_count=0,
        strategy_count=0,
        allocation_count=0,
        slashing_event_count=0,
        redistribution_recipient=None,
        created_at=timestamp,
        last_activity_at=timestamp,
    )


def _new_strategy(entity_id: str, parts: Sequence, timestamp: int, fields: Dict) -> Strategy:
    return Strategy(
        id=entity_id,
        address=entity_id,
        total_shares=0,
        total_deposits=0,
        # Protocol default until a whitelist event says otherwise
        is_whitelisted=True,
        whitelisted_at=None,
        first_deposit_at=None,
        last_activity_at=timestamp,
    )


def _new_staker(entity_id: str, parts: Sequence, timestamp: int, fields: Dict) -> Staker:
    return Staker(
        id=entity_id,
        address=entity_id,
        delegated_operator=None,
        delegated_at=None,
        delegation_change_count=0,
        withdrawal_count=0,
        first_activity_at=timestamp,
        last_activity_at=timestamp,
    )


def _new_eigen_pod(entity_id: str, parts: Sequence, timestamp: int, fields: Dict) -> EigenPod:
    return EigenPod(
        id=entity_id,
        address=entity_id,
        owner=fields["owner"],
        total_shares=0,
        deposit_count=0,
        withdrawal_count=0,
        deployed_at=timestamp,
        last_activity_at=timestamp,
    )


def _new_membership(
    entity_id: str, parts: Sequence, timestamp: int, fields: Dict
) -> OperatorSetMembership:
    operator_id, set_id, joined_at = parts[:3]
    return OperatorSetMembership(
        id=entity_id,
        operator_id=operator_id,
        operator_set_id=set_id,
        joined_at=int(joined_at),
        joined_at_block=fields.get("joined_at_block", 0),
        left_at=None,
        left_at_block=None,
        join_record_id=fields.get("join_record_id"),
        leave_record_id=None,
    )


def _new_avs_registration(
    entity_id: str, parts: Sequence, timestamp: int, fields: Dict
) -> OperatorAVSRegistration:
    operator_id, avs_id = parts
    return OperatorAVSRegistration(
        id=entity_id,
        operator_id=operator_id,
        avs_id=avs_id,
        status=UNREGISTERED,
        updated_at=timestamp,
        updated_at_block=fields.get("updated_at_block", 0),
    )


def _new_delegation(
    entity_id: str, parts: Sequence, timestamp: int, fields: Dict
) -> StakerDelegation:
    staker_id, operator_id, block_timestamp = parts[:3]
    return StakerDelegation(
        id=entity_id,
        staker_id=staker_id,
        operator_id=operator_id,
        delegation_type=fields["delegation_type"],
        block_number=fields["block_number"],
        block_timestamp=int(block_timestamp),
        transaction_hash=fields["transaction_hash"],
        log_index=fields["log_index"],
    )


ENTITY_FACTORIES: Dict[str, Callable[[str, Sequence, int, Dict], Entity]] = {
    OPERATOR: _new_operator,
    AVS_KIND: _new_avs,
    OPERATOR_SET: _new_operator_set,
    STRATEGY: _new_strategy,
    STAKER: _new_staker,
    EIGEN_POD: _new_eigen_pod,
    MEMBERSHIP: _new_membership,
    AVS_REGISTRATION: _new_avs_registration,
    DELEGATION: _new_delegation,
}


class IdentityResolver:
    """
    Resolves ids and hands out entities for one processing step.

    Every entity loaded or created through the resolver is cached for the step, so
    repeated get_or_create calls return the same object and never create twice.
    The cache doubles as the step's write set.
    """

    def __init__(self, store: EntityStore, logger: logging.Logger):
        self.store = store
        self.logger = logger
        self._entities: Dict[Tuple[str, str], Entity] = {}
        self._created: set = set()

    def resolve(self, kind: str, *key_parts: Any) -> str:
        """Build the stable id for an entity from its key parts."""
        if kind == OPERATOR_SET:
            avs, index = key_parts
            return operator_set_id(avs, index)
        if kind == MEMBERSHIP:
            return membership_id(*key_parts)
        if kind == AVS_REGISTRATION:
            return avs_registration_id(*key_parts)
        if kind == DELEGATION:
            return delegation_id(*key_parts)
        if kind not in ENTITY_FACTORIES:
            raise ValueError(f"Unknown entity kind '{kind}'")
        (address,) = key_parts
        return address_id(address)

    def load(self, kind: str, *key_parts: Any) -> Optional[Entity]:
        """Load an entity into the step, or None when it does not exist."""
        entity_id = self.resolve(kind, *key_parts)
        key = (kind, entity_id)
        if key in self._entities:
            return self._entities[key]

        entity = self.store.load(kind, entity_id)
        if entity is not None:
            self._entities[key] = entity
        return entity

    def get_or_create(
        self, kind: str, key_parts: Sequence, timestamp: int, **fields: Any
    ) -> Entity:
        """
        Load an entity, creating it fully zero-initialized if absent.

        Args:
            kind: Entity kind
            key_parts: Parts the id is built from (address, or composite parts)
            timestamp: Block timestamp used for creation/activity fields
            **fields: Initial values for non-counter fields (e.g. pod owner)
        """
        existing = self.load(kind, *key_parts)
        if existing is not None:
            return existing

        entity_id = self.resolve(kind, *key_parts)
        entity = ENTITY_FACTORIES[kind](entity_id, key_parts, timestamp, fields)
        self._entities[(kind, entity_id)] = entity
        self._created.add((kind, entity_id))
        self.logger.debug(f"Created {kind} {entity_id}")
        return entity

    def find(self, kind: str, **filters: Any) -> List[Entity]:
        """
        Entities of a kind matching the filters, seen through the step cache so
        entities created or changed earlier in the step are included.
        """
        found: Dict[str, Entity] = {}
        for entity in self.store.find(kind, **filters):
            found[entity.id] = self._entities.setdefault((kind, entity.id), entity)
        for (cached_kind, entity_id), entity in self._entities.items():
            if cached_kind != kind:
                continue
            if all(getattr(entity, name) == value for name, value in filters.items()):
                found[entity_id] = entity
            else:
                found.pop(entity_id, None)
        return [found[entity_id] for entity_id in sorted(found)]

    def was_created(self, kind: str, entity_id: str) -> bool:
        return (kind, entity_id) in self._created

    def is_tracked(self, kind: str, entity_id: str) -> bool:
        return (kind, entity_id) in self._entities

    def tracked_entities(self) -> List[Entity]:
        return list(self._entities.values())
