from decimal import Decimal

import pytest

from factories import AVS, OPERATOR, STAKER, STRATEGY, STRATEGY_B, TOKEN
from services.decoding.event_decoder import PAYLOAD_SCHEMAS, EventDecoder, to_snake_case
from services.errors import PayloadValidationError, UnsupportedEventError
from services.events import (
    EVENT_CLASSES,
    AllocationUpdated,
    AVSRewardsSubmissionCreated,
    OperatorAddedToOperatorSet,
    OperatorDirectedOperatorSetRewardsSubmissionCreated,
    OperatorPISplitBipsSet,
    OperatorReward,
    OperatorSlashed,
    SlashingWithdrawalQueued,
    StakerDelegated,
    StrategyMultiplier,
)
from services.validators.payload_validator import PayloadValidator, to_int
from utils.normalizers import normalize_address, normalize_hex

TX_HASH = "0x" + "AB" * 32


def row(event_type, params, **overrides):
    base = {
        "event_type": event_type,
        "block_number": 19_000_000,
        "log_index": 7,
        "block_timestamp": "1700000000",
        "transaction_hash": TX_HASH,
        "contract_address": OPERATOR.upper().replace("0X", "0x"),
        "params": params,
    }
    base.update(overrides)
    return base


@pytest.fixture(scope="module")
def decoder():
    return EventDecoder()


class TestSnakeCase:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("operatorSetId", "operator_set_id"),
            ("metadataURI", "metadata_uri"),
            ("wadSlashed", "wad_slashed"),
            ("oldOperatorAVSSplitBips", "old_operator_avs_split_bips"),
            ("already_snake", "already_snake"),
        ],
    )
    def test_abi_names(self, name, expected):
        assert to_snake_case(name) == expected


class TestEventDecoder:
    def test_every_event_type_has_a_schema(self, decoder):
        assert set(PAYLOAD_SCHEMAS) == set(EVENT_CLASSES)
        assert all(decoder.supports(event_type) for event_type in EVENT_CLASSES)

    def test_decodes_position_and_normalizes(self, decoder):
        event = decoder.decode(row("StakerDelegated", {"staker": STAKER, "operator": OPERATOR}))

        assert isinstance(event, StakerDelegated)
        assert event.block_timestamp == 1_700_000_000
        assert event.transaction_hash == TX_HASH.lower()
        assert event.contract_address == OPERATOR
        assert event.event_id == f"{TX_HASH.lower()}-7"

    def test_camel_case_params_and_aliases(self, decoder):
        params = {
            "operator": OPERATOR,
            "avs": AVS,
            "operatorSetId": "3",
            "strategies": [STRATEGY, STRATEGY_B],
            "wadSlashed": ["100000000000000000", 5],
            "description": "misbehaviour",
        }
        event = decoder.decode(row("OperatorSlashed", params))

        assert isinstance(event, OperatorSlashed)
        assert event.operator_set_index == 3
        assert event.wad_slashed == [10**17, 5]

    def test_split_bips_aliases(self, decoder):
        params = {
            "caller": OPERATOR,
            "operator": OPERATOR,
            "activatedAt": 1,
            "oldOperatorPISplitBips": 1000,
            "newOperatorPISplitBips": "500",
        }
        event = decoder.decode(row("OperatorPISplitBipsSet", params))
        assert isinstance(event, OperatorPISplitBipsSet)
        assert (event.old_split_bips, event.new_split_bips) == (1000, 500)

    def test_strategy_multiplier_pairs(self, decoder):
        params = {
            "avs": AVS,
            "submissionNonce": 0,
            "rewardsSubmissionHash": "0x" + "01" * 32,
            "strategiesAndMultipliers": [
                {"strategy": STRATEGY, "multiplier": "1000000000000000000"},
                (STRATEGY_B, 2),
            ],
            "token": TOKEN,
            "amount": Decimal("1000"),
            "startTimestamp": 1,
            "duration": 2,
        }
        event = decoder.decode(row("AVSRewardsSubmissionCreated", params))
        assert isinstance(event, AVSRewardsSubmissionCreated)
        assert event.strategies_and_multipliers == [
            StrategyMultiplier(STRATEGY, 10**18),
            StrategyMultiplier(STRATEGY_B, 2),
        ]
        assert event.amount == 1000

    def test_unknown_event_type(self, decoder):
        with pytest.raises(UnsupportedEventError):
            decoder.decode(row("Upgraded", {}))

    def test_missing_param(self, decoder):
        with pytest.raises(PayloadValidationError, match="operator"):
            decoder.decode(row("StakerDelegated", {"staker": STAKER}))

    def test_bad_address(self, decoder):
        with pytest.raises(PayloadValidationError):
            decoder.decode(row("StakerDelegated", {"staker": "0x1234", "operator": OPERATOR}))

    def test_bad_position(self, decoder):
        with pytest.raises(PayloadValidationError):
            decoder.decode(row("StakerDelegated", {"staker": STAKER, "operator": OPERATOR}, log_index="x"))
        bad = row("StakerDelegated", {"staker": STAKER, "operator": OPERATOR})
        del bad["block_number"]
        with pytest.raises(PayloadValidationError):
            decoder.decode(bad)


class TestStructParams:
    def test_operator_set_mapping(self, decoder):
        params = {"operator": OPERATOR, "operatorSet": {"avs": AVS, "id": 4}}
        event = decoder.decode(row("OperatorAddedToOperatorSet", params))

        assert isinstance(event, OperatorAddedToOperatorSet)
        assert (event.avs, event.operator_set_index) == (AVS, 4)

    def test_operator_set_tuple(self, decoder):
        params = {
            "operator": OPERATOR,
            "operatorSet": (AVS.upper().replace("0X", "0x"), "2"),
            "strategy": STRATEGY,
            "magnitude": 10,
            "effectBlock": 5,
        }
        event = decoder.decode(row("AllocationUpdated", params))

        assert isinstance(event, AllocationUpdated)
        assert (event.avs, event.operator_set_index) == (AVS, 2)

    def test_rewards_submission(self, decoder):
        params = {
            "avs": AVS,
            "submissionNonce": 1,
            "rewardsSubmissionHash": "0x" + "02" * 32,
            "rewardsSubmission": {
                "strategiesAndMultipliers": [{"strategy": STRATEGY, "multiplier": 1}],
                "token": TOKEN,
                "amount": "500",
                "startTimestamp": 86400,
                "duration": 604800,
            },
        }
        event = decoder.decode(row("AVSRewardsSubmissionCreated", params))

        assert event.strategies_and_multipliers == [StrategyMultiplier(STRATEGY, 1)]
        assert (event.token, event.amount) == (TOKEN, 500)
        assert (event.start_timestamp, event.duration) == (86400, 604800)

    def test_operator_directed_operator_set_submission(self, decoder):
        params = {
            "caller": AVS,
            "operatorDirectedRewardsSubmissionHash": "0x" + "03" * 32,
            "operatorSet": {"avs": AVS, "id": 1},
            "submissionNonce": 0,
            "operatorDirectedRewardsSubmission": {
                "strategiesAndMultipliers": [(STRATEGY, 1)],
                "token": TOKEN,
                "operatorRewards": [{"operator": OPERATOR, "amount": "7"}],
                "startTimestamp": 0,
                "duration": 10,
                "description": "epoch 1",
            },
        }
        event = decoder.decode(row("OperatorDirectedOperatorSetRewardsSubmissionCreated", params))

        assert isinstance(event, OperatorDirectedOperatorSetRewardsSubmissionCreated)
        assert (event.avs, event.operator_set_index) == (AVS, 1)
        assert event.rewards_submission_hash == "0x" + "03" * 32
        assert event.operator_rewards == [OperatorReward(OPERATOR, 7)]
        assert event.description == "epoch 1"

    def test_withdrawal(self, decoder):
        params = {
            "withdrawalRoot": "0x" + "04" * 32,
            "withdrawal": {
                "staker": STAKER,
                "delegatedTo": OPERATOR,
                "withdrawer": STAKER,
                "nonce": 3,
                "startBlock": 100,
                "strategies": [STRATEGY],
                "scaledShares": ["10"],
            },
            "sharesToWithdraw": [9],
        }
        event = decoder.decode(row("SlashingWithdrawalQueued", params))

        assert isinstance(event, SlashingWithdrawalQueued)
        assert (event.staker, event.delegated_to, event.nonce) == (STAKER, OPERATOR, 3)
        assert (event.scaled_shares, event.shares_to_withdraw) == ([10], [9])

    def test_malformed_struct(self, decoder):
        params = {"operator": OPERATOR, "operatorSet": (AVS,)}
        with pytest.raises(PayloadValidationError, match="operator_set"):
            decoder.decode(row("OperatorAddedToOperatorSet", params))

    def test_member_conflicting_with_top_level_param(self, decoder):
        params = {"operator": OPERATOR, "avs": AVS, "operatorSet": {"avs": STAKER, "id": 1}}
        with pytest.raises(PayloadValidationError, match="avs"):
            decoder.decode(row("OperatorAddedToOperatorSet", params))


class TestPayloadValidator:
    def test_to_int(self):
        assert to_int("x", "42") == 42
        assert to_int("x", "0x10") == 16
        assert to_int("x", Decimal("7")) == 7
        assert to_int("x", -3, signed=True) == -3
        for bad in (True, "1.5", Decimal("1.5"), -1, 1.0):
            with pytest.raises(PayloadValidationError):
                to_int("x", bad)

    def test_nullable_field(self):
        validator = PayloadValidator()
        validator.add_address_field("operator", nullable=True)
        assert validator.validate_and_transform({}) == {"operator": None}

    def test_pairs_must_be_pairs(self):
        validator = PayloadValidator()
        validator.add_operator_rewards_field("operator_rewards")
        with pytest.raises(PayloadValidationError):
            validator.validate_and_transform({"operator_rewards": [(OPERATOR, 1, 2)]})
        with pytest.raises(PayloadValidationError):
            validator.validate_and_transform({"operator_rewards": [{"operator": OPERATOR}]})


class TestNormalizers:
    def test_address(self):
        assert normalize_address(bytes.fromhex(STAKER[2:])) == STAKER
        with pytest.raises(ValueError):
            normalize_address("not an address")

    def test_hex(self):
        assert normalize_hex(b"\x01\xff") == "0x01ff"
        assert normalize_hex("0xABCD") == "0xabcd"
        with pytest.raises(ValueError):
            normalize_hex("abcd")
