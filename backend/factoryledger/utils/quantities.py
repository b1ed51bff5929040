"""Decimal helpers shared by the ledger, lot allocator, and batch engine.

Quantities and money are handled as ``Decimal`` end to end.  JSON columns
(planned/actual item lists, cost breakdowns) store them as strings so no
precision is lost on the round trip.

Input values are checked against the scale of the column they land in
(``Numeric(14, 3)`` quantities, ``Numeric(14, 4)`` costs); anything finer
is rejected rather than rounded by the database.
"""

from decimal import Decimal, InvalidOperation

from factoryledger.exceptions import InvalidInputError

ZERO = Decimal("0")

QUANTITY_PLACES = 3
COST_PLACES = 4


def to_decimal(value, field: str = "quantity", places: int | None = None) -> Decimal:
    """Coerce ``value`` to a finite Decimal or raise InvalidInputError.

    With ``places`` set, values with more significant decimal places are
    rejected (``1.5000`` passes at 3 places, ``1.0004`` does not).
    """
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"{field} is required and must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() first so floats keep their printed value (0.1, not 0.1000000000000000055...)
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidInputError(f"{field} must be a number, got {value!r}")
    if not result.is_finite():
        raise InvalidInputError(f"{field} must be a finite number")
    if places is not None and result != result.quantize(Decimal(1).scaleb(-places)):
        raise InvalidInputError(
            f"{field} allows at most {places} decimal places",
            details={field: str(result), "max_decimal_places": places},
        )
    return result


def to_positive(value, field: str = "quantity", places: int = QUANTITY_PLACES) -> Decimal:
    result = to_decimal(value, field, places)
    if result <= ZERO:
        raise InvalidInputError(f"{field} must be greater than 0", details={field: str(result)})
    return result


def as_json(value: Decimal | None) -> str | None:
    """Decimal → canonical string for JSON columns (None passes through)."""
    if value is None:
        return None
    return format(value.normalize(), "f")
