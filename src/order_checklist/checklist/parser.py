from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from ..domain.models import ChecklistItem
from ..errors import ValidationFailure
from ..logging import get_logger


LOG = get_logger("checklist-parser")


def _norm_s(s: Any) -> Optional[str]:
    return " ".join(s.split()) if isinstance(s, str) and s.strip() else None


def _quantity(value: Any, idx: int) -> int:
    if isinstance(value, bool):
        raise ValidationFailure(f"items[{idx}].quantity must be a number")
    if isinstance(value, int):
        qty = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationFailure(f"items[{idx}].quantity must be a whole number")
        qty = int(value)
    elif isinstance(value, str) and value.strip():
        try:
            qty = int(value.strip())
        except ValueError:
            raise ValidationFailure(f"items[{idx}].quantity invalid: {value!r}")
    else:
        raise ValidationFailure(f"items[{idx}].quantity required")
    if qty < 0:
        raise ValidationFailure(f"items[{idx}].quantity must be >= 0")
    return qty


def _price(value: Any, idx: int) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationFailure(f"items[{idx}].price must be a number")
    try:
        if isinstance(value, str):
            # Tolerate currency symbols and thousands separators ("$1,250.00")
            cleaned = value.strip().lstrip("$€£").replace(",", "").strip()
            price = Decimal(cleaned)
        else:
            # str() first so floats keep their printed value (12.5 not 12.4999…)
            price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailure(f"items[{idx}].price invalid: {value!r}")
    if not price.is_finite():
        raise ValidationFailure(f"items[{idx}].price must be finite")
    if price < 0:
        raise ValidationFailure(f"items[{idx}].price must be >= 0")
    return price


def parse_items(payload: Any) -> List[ChecklistItem]:
    """Validate model output into checklist items.

    Accepts either the constrained object shape ``{"items": [...]}`` or a
    bare JSON array, each element being ``{name, quantity, price}``.
    An empty list is valid: the image simply showed no items.
    """
    if isinstance(payload, dict):
        items_in = payload.get("items")
    else:
        items_in = payload
    if not isinstance(items_in, list):
        raise ValidationFailure("items must be a list")

    items: List[ChecklistItem] = []
    for idx, it in enumerate(items_in):
        if not isinstance(it, dict):
            raise ValidationFailure(f"items[{idx}] must be an object")
        name = _norm_s(it.get("name"))
        if not name:
            raise ValidationFailure(f"items[{idx}].name required")
        items.append(
            ChecklistItem(
                name=name,
                quantity=_quantity(it.get("quantity"), idx),
                price=_price(it.get("price"), idx),
            )
        )
    LOG.debug("Parsed %d checklist item(s)", len(items))
    return items


def parse_image_urls(value: Any) -> List[str]:
    """Normalize the optional `imageUrls` request field; None means no images."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationFailure("imageUrls must be a list")
    urls: List[str] = []
    for idx, url in enumerate(value):
        if not isinstance(url, str) or not url.strip():
            raise ValidationFailure(f"imageUrls[{idx}] must be a non-empty string")
        urls.append(url.strip())
    return urls


__all__ = ["parse_items", "parse_image_urls"]
