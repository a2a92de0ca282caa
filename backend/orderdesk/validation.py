from __future__ import annotations

from typing import Any


# Maximum money value: 9,999,999.99 (999,999,999 cents)
MAX_CENTS = 999_999_999
MAX_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion for request payloads.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals and
    scientific notation so that "1e3" or 12.5 never become quantities.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field)

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field)
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field)
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field)
    else:
        raise ValidationError(f"{field} must be an integer", field)

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field)
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", field)
    return result


def coerce_cents(value: Any, field: str, *, default: int | None = None) -> int:
    """Money in integer cents, 0..MAX_CENTS. None falls back to `default`."""
    if value is None:
        if default is None:
            raise ValidationError(f"{field} is required", field)
        return default
    return coerce_int(value, field, minimum=0, maximum=MAX_CENTS)


def parse_line_items(items: Any) -> list[dict]:
    """
    Normalize a line-item payload.

    Input: list of {"product_id", "quantity", "price_cents"?}
    Output: list of {"product_id": int, "quantity": int, "price_cents": int | None}

    An empty list is invalid: an order must carry at least one item.
    """
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list", "items")
    if len(items) < 1:
        raise ValidationError("an order needs at least one item", "items")

    parsed = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object", "items")
        if raw.get("product_id") is None:
            raise ValidationError(f"items[{idx}].product_id is required", "items")
        if raw.get("quantity") is None:
            raise ValidationError(f"items[{idx}].quantity is required", "items")

        price = raw.get("price_cents")
        parsed.append({
            "product_id": coerce_int(raw["product_id"], f"items[{idx}].product_id", minimum=1),
            "quantity": coerce_int(raw["quantity"], f"items[{idx}].quantity", minimum=1, maximum=MAX_QUANTITY),
            "price_cents": None if price is None else coerce_cents(price, f"items[{idx}].price_cents"),
        })
    return parsed
