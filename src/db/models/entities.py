# MATERIALIZED PROTOCOL STATE
from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String

from services.entities import (
    AVS_KIND,
    AVS_REGISTRATION,
    DELEGATION,
    EIGEN_POD,
    MEMBERSHIP,
    OPERATOR,
    OPERATOR_SET,
    STAKER,
    STRATEGY,
)
from .base import Base, Uint256


class OperatorRow(Base):
    __tablename__ = "operators"

    id = Column(String, primary_key=True)
    address = Column(String, nullable=False)
    delegation_approver = Column(String, nullable=False)
    metadata_uri = Column(String)

    # Counts
    delegator_count = Column(Integer, nullable=False, default=0)
    avs_registration_count = Column(Integer, nullable=False, default=0)
    operator_set_count = Column(Integer, nullable=False, default=0)
    slashing_event_count = Column(Integer, nullable=False, default=0)

    # Registration
    registered_at = Column(BigInteger, nullable=False)
    registered_at_block = Column(BigInteger, nullable=False, default=0)
    registered_at_transaction = Column(String)

    last_activity_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)


class AVSRow(Base):
    __tablename__ = "avs"

    id = Column(String, primary_key=True)
    address = Column(String, nullable=False)
    metadata_uri = Column(String)
    registrar = Column(String)

    operator_set_count = Column(Integer, nullable=False, default=0)
    total_operator_registrations = Column(Integer, nullable=False, default=0)
    rewards_submission_count = Column(Integer, nullable=False, default=0)
    slashing_event_count = Column(Integer, nullable=False, default=0)

    created_at = Column(BigInteger, nullable=False)
    last_activity_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)


class OperatorSetRow(Base):
    __tablename__ = "operator_sets"

    id = Column(String, primary_key=True)  # "<avs>-<setIndex>"
    avs_id = Column(String, nullable=False, index=True)
    operator_set_index = Column(BigInteger, nullable=False)

    member_count = Column(Integer, nullable=False, default=0)
    strategy_count = Column(Integer, nullable=False, default=0)
    allocation_count = Column(Integer, nullable=False, default=0)
    slashing_event_count = Column(Integer, nullable=False, default=0)
    redistribution_recipient = Column(String)

    created_at = Column(BigInteger, nullable=False)
    last_activity_at = Column(BigInteger, nullable=False)


class StrategyRow(Base):
    __tablename__ = "strategies"

    id = Column(String, primary_key=True)
    address = Column(String, nullable=False)

    total_shares = Column(Uint256(), nullable=False, default=0)
    total_deposits = Column(Integer, nullable=False, default=0)

    is_whitelisted = Column(Boolean, nullable=False, default=True)
    whitelisted_at = Column(BigInteger)
    first_deposit_at = Column(BigInteger)
    last_activity_at = Column(BigInteger, nullable=False)


class StakerRow(Base):
    __tablename__ = "stakers"

    id = Column(String, primary_key=True)
    address = Column(String, nullable=False)
    delegated_operator = Column(String, index=True)
    delegated_at = Column(BigInteger)

    delegation_change_count = Column(Integer, nullable=False, default=0)
    withdrawal_count = Column(Integer, nullable=False, default=0)

    first_activity_at = Column(BigInteger, nullable=False)
    last_activity_at = Column(BigInteger, nullable=False)


class EigenPodRow(Base):
    __tablename__ = "eigen_pods"

    id = Column(String, primary_key=True)
    address = Column(String, nullable=False)
    owner = Column(String, nullable=False, index=True)

    # Signed: beacon chain deficits can take it below zero
    total_shares = Column(Uint256(), nullable=False, default=0)
    deposit_count = Column(Integer, nullable=False, default=0)
    withdrawal_count = Column(Integer, nullable=False, default=0)

    deployed_at = Column(BigInteger, nullable=False)
    last_activity_at = Column(BigInteger, nullable=False)


class OperatorSetMembershipRow(Base):
    __tablename__ = "operator_set_memberships"

    id = Column(String, primary_key=True)  # "<operator>-<operatorSet>-<joinedAt>"
    operator_id = Column(String, nullable=False)
    operator_set_id = Column(String, nullable=False)

    joined_at = Column(BigInteger, nullable=False)
    joined_at_block = Column(BigInteger, nullable=False)
    left_at = Column(BigInteger)
    left_at_block = Column(BigInteger)
    join_record_id = Column(String)
    leave_record_id = Column(String)

    __table_args__ = (
        Index("idx_membership_operator_set", "operator_id", "operator_set_id"),
    )


class OperatorAVSRegistrationRow(Base):
    __tablename__ = "operator_avs_registrations"

    id = Column(String, primary_key=True)  # "<operator>-<avs>"
    operator_id = Column(String, nullable=False, index=True)
    avs_id = Column(String, nullable=False, index=True)
    status = Column(String(20), nullable=False)
    updated_at = Column(BigInteger, nullable=False)
    updated_at_block = Column(BigInteger, nullable=False)


class StakerDelegationRow(Base):
    __tablename__ = "staker_delegations"

    id = Column(String, primary_key=True)  # "<staker>-<operator>-<timestamp>"
    staker_id = Column(String, nullable=False, index=True)
    operator_id = Column(String, nullable=False, index=True)
    delegation_type = Column(String(20), nullable=False)

    block_number = Column(BigInteger, nullable=False)
    block_timestamp = Column(BigInteger, nullable=False)
    transaction_hash = Column(String, nullable=False)
    log_index = Column(Integer, nullable=False)


ENTITY_MODELS = {
    OPERATOR: OperatorRow,
    AVS_KIND: AVSRow,
    OPERATOR_SET: OperatorSetRow,
    STRATEGY: StrategyRow,
    STAKER: StakerRow,
    EIGEN_POD: EigenPodRow,
    MEMBERSHIP: OperatorSetMembershipRow,
    AVS_REGISTRATION: OperatorAVSRegistrationRow,
    DELEGATION: StakerDelegationRow,
}
