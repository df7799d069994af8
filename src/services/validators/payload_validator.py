# services/validators/payload_validator.py

from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping

from services.errors import PayloadValidationError
from services.events import OperatorReward, StrategyMultiplier
from utils.normalizers import normalize_address, normalize_hex


def to_int(field: str, value: Any, signed: bool = False) -> int:
    """Coerce an int, decimal string or integral Decimal to int."""
    if isinstance(value, bool):
        raise PayloadValidationError(f"Field '{field}' must be an integer, got bool")

    if isinstance(value, int):
        number = value
    elif isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise PayloadValidationError(f"Field '{field}' must be integral, got {value}")
        number = int(value)
    elif isinstance(value, str):
        try:
            number = int(value, 0) if value.startswith(("0x", "0X")) else int(value)
        except ValueError as exc:
            raise PayloadValidationError(f"Field '{field}' is not an integer: {value!r}") from exc
    else:
        raise PayloadValidationError(
            f"Field '{field}' must be int, decimal string or Decimal, got {type(value)}"
        )

    if not signed and number < 0:
        raise PayloadValidationError(f"Field '{field}' must be unsigned, got {number}")
    return number


class PayloadValidator:
    """
    Validation and normalization rules for one event's params.

    Rules are registered per field with the add_* methods, which chain:

        PayloadValidator().add_address_field("operator").add_uint_field("shares")
    """

    def __init__(self):
        self._rules: Dict[str, Callable[[str, Any], Any]] = {}
        self.nullable_fields = set()

    def _add(self, field_name: str, rule: Callable[[str, Any], Any], nullable: bool):
        self._rules[field_name] = rule
        if nullable:
            self.nullable_fields.add(field_name)
        return self

    def add_address_field(self, field_name: str, nullable: bool = False):
        return self._add(field_name, self._address, nullable)

    def add_uint_field(self, field_name: str, nullable: bool = False):
        return self._add(field_name, lambda name, value: to_int(name, value), nullable)

    def add_int_field(self, field_name: str, nullable: bool = False):
        return self._add(field_name, lambda name, value: to_int(name, value, signed=True), nullable)

    def add_bytes_field(self, field_name: str, nullable: bool = False):
        return self._add(field_name, self._bytes, nullable)

    def add_string_field(self, field_name: str, nullable: bool = False):
        return self._add(field_name, lambda name, value: "" if value is None else str(value), nullable)

    def add_address_list_field(self, field_name: str):
        return self._add(field_name, self._address_list, False)

    def add_uint_list_field(self, field_name: str):
        return self._add(field_name, self._uint_list, False)

    def add_strategy_multipliers_field(self, field_name: str):
        return self._add(field_name, self._strategy_multipliers, False)

    def add_operator_rewards_field(self, field_name: str):
        return self._add(field_name, self._operator_rewards, False)

    @property
    def fields(self) -> List[str]:
        return list(self._rules)

    def validate_and_transform(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and normalize params according to the registered rules.

        Unknown params are dropped.

        Raises:
            PayloadValidationError: If a field is missing or invalid
        """
        transformed = {}
        for field_name, rule in self._rules.items():
            value = params.get(field_name)
            if value is None and field_name in self.nullable_fields:
                transformed[field_name] = None
                continue
            if field_name not in params:
                raise PayloadValidationError(f"Missing field '{field_name}'")
            transformed[field_name] = rule(field_name, value)
        return transformed

    @staticmethod
    def _address(field_name: str, value: Any) -> str:
        try:
            return normalize_address(value)
        except ValueError as exc:
            raise PayloadValidationError(f"Field '{field_name}': {exc}") from exc

    @staticmethod
    def _bytes(field_name: str, value: Any) -> str:
        try:
            return normalize_hex(value)
        except ValueError as exc:
            raise PayloadValidationError(f"Field '{field_name}': {exc}") from exc

    @staticmethod
    def _sequence(field_name: str, value: Any) -> list:
        if isinstance(value, (str, bytes, dict)) or not hasattr(value, "__iter__"):
            raise PayloadValidationError(f"Field '{field_name}' must be a list, got {type(value)}")
        return list(value)

    def _address_list(self, field_name: str, value: Any) -> List[str]:
        return [self._address(field_name, item) for item in self._sequence(field_name, value)]

    def _uint_list(self, field_name: str, value: Any) -> List[int]:
        return [to_int(field_name, item) for item in self._sequence(field_name, value)]

    def _pairs(self, field_name: str, value: Any, keys: tuple) -> List[tuple]:
        pairs = []
        for item in self._sequence(field_name, value):
            if isinstance(item, Mapping):
                try:
                    pairs.append((item[keys[0]], item[keys[1]]))
                except KeyError as exc:
                    raise PayloadValidationError(
                        f"Field '{field_name}' entry is missing {exc}"
                    ) from exc
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                pairs.append((item[0], item[1]))
            else:
                raise PayloadValidationError(
                    f"Field '{field_name}' entries must be {keys} pairs, got {item!r}"
                )
        return pairs

    def _strategy_multipliers(self, field_name: str, value: Any) -> List[StrategyMultiplier]:
        return [
            StrategyMultiplier(
                strategy=self._address(field_name, strategy),
                multiplier=to_int(field_name, multiplier),
            )
            for strategy, multiplier in self._pairs(field_name, value, ("strategy", "multiplier"))
        ]

    def _operator_rewards(self, field_name: str, value: Any) -> List[OperatorReward]:
        return [
            OperatorReward(
                operator=self._address(field_name, operator),
                amount=to_int(field_name, amount),
            )
            for operator, amount in self._pairs(field_name, value, ("operator", "amount"))
        ]
