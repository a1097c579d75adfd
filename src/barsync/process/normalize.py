"""Turn raw payloads into normalized row dicts, one parser per data type."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from barsync.aggregate.periods import week_of
from barsync.models import Base, CmvSummary, Purchase, RawRecord, Review, SaleVisit, TicketOrder
from barsync.sources.base import parse_day

APPROVED_ORDER_STATUS = "A"
LATE_SHIFT_HOUR = 15


class MalformedPayload(ValueError):
    """Payload cannot be normalized. The raw row is parked with an error."""


def parse_amount(value: Any, field: str) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise MalformedPayload(f"{field}: expected a number, got {value!r}")
    if isinstance(value, int | float):
        return float(value)
    text = str(value).strip()
    if "," in text:
        # 1.234,56
        text = text.replace(".", "").replace(",", ".")
    try:
        return float(text)
    except ValueError as exc:
        raise MalformedPayload(f"{field}: expected a number, got {value!r}") from exc


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).strip().replace(" ", "T"))
    except ValueError:
        return None


def shift_corrected_date(business_date: date, last_order_at: Any) -> date:
    """Move a visit to the day its last order was placed when the shift was opened on the wrong day.

    Applies only when the last order falls on a later calendar day, at or after 15h.
    """
    last_order = _timestamp(last_order_at)
    if last_order is None:
        return business_date
    if last_order.date() > business_date and last_order.hour >= LATE_SHIFT_HOUR:
        return last_order.date()
    return business_date


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(payload: dict[str, Any], *keys: str) -> str | None:
    """First non-empty value among ``keys`` as text. Numbers are stringified, objects and lists are rejected."""
    value = _first(payload, *keys)
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    raise MalformedPayload(f"{keys[0]}: expected text, got {type(value).__name__}")


def _require_dict(raw: RawRecord) -> dict[str, Any]:
    if not isinstance(raw.payload, dict):
        raise MalformedPayload(f"payload is {type(raw.payload).__name__}, expected object")
    return raw.payload


def normalize_pos_period(raw: RawRecord) -> dict[str, Any]:
    payload = _require_dict(raw)
    business_date = parse_day(payload.get("dt_gerencial")) or raw.business_date
    business_date = shift_corrected_date(business_date, _first(payload, "vd_hrultimo", "ultimo_pedido"))
    return {
        "business_date": business_date,
        "gross_amount": parse_amount(_first(payload, "$vr_pagamentos", "vr_pagamentos"), "vr_pagamentos"),
        "couvert_amount": parse_amount(_first(payload, "$vr_couvert", "vr_couvert"), "vr_couvert"),
        "tip_amount": parse_amount(_first(payload, "$vr_repique", "vr_repique"), "vr_repique"),
        "discount_amount": parse_amount(_first(payload, "$vr_desconto", "vr_desconto"), "vr_desconto"),
        "discount_reason": _text(payload, "motivo"),
        "people": parse_amount(payload.get("pessoas"), "pessoas"),
    }


def normalize_ticket_order(raw: RawRecord) -> dict[str, Any]:
    payload = _require_dict(raw)
    order_day = parse_day(payload.get("order_date"))
    if order_day is None:
        raise MalformedPayload("order_date missing or invalid")
    event_id = payload.get("event_id")
    return {
        "business_date": order_day,
        "event_id": str(event_id) if event_id is not None else None,
        "status": _text(payload, "order_status"),
        "gross_value": parse_amount(payload.get("order_total_sale_price"), "order_total_sale_price"),
        "net_value": parse_amount(payload.get("order_total_net_value"), "order_total_net_value"),
        "buyer_email": _text(payload, "buyer_email"),
    }


def normalize_schedule(raw: RawRecord) -> dict[str, Any]:
    payload = _require_dict(raw)
    accrual_day = parse_day(payload.get("accrualDate"))
    if accrual_day is None:
        raise MalformedPayload("accrualDate missing or invalid")
    kind = payload.get("type")
    if kind not in ("Debit", "Credit"):
        raise MalformedPayload(f"type: expected Debit or Credit, got {kind!r}")
    category = payload.get("category")
    if isinstance(category, dict):
        category_name = _text(category, "name")
    else:
        category_name = _text(payload, "categoryName", "category")
    return {
        "business_date": accrual_day,
        "category": category_name,
        "kind": kind,
        "amount": parse_amount(payload.get("value"), "value"),
        "description": _text(payload, "description"),
    }


def normalize_review(raw: RawRecord) -> dict[str, Any]:
    payload = _require_dict(raw)
    published_day = parse_day(payload.get("publishedAtDate"))
    if published_day is None:
        raise MalformedPayload("publishedAtDate missing or invalid")
    stars = payload.get("stars")
    return {
        "business_date": published_day,
        "stars": parse_amount(stars, "stars") if stars is not None else None,
        "text": _text(payload, "text"),
        "reviewer_name": _text(payload, "name"),
        "place_id": _text(payload, "placeId"),
    }


# Row index of each manual CMV input in a sheet week column.
SHEET_INPUT_ROWS = {
    "opening_stock": 3,
    "closing_stock": 5,
    "hr_consumption": 9,
    "other_adjustments": 11,
    "bonuses": 12,
    "theoretical_cmv_pct": 16,
}
_SHEET_BLANKS = {"", "-", "R$-", "R$"}


def parse_sheet_money(value: Any, field: str) -> float:
    """``R$ 1.234,56`` style cell; parentheses mean negative, blanks and formula errors are zero."""
    if isinstance(value, int | float) and not isinstance(value, bool):
        return float(value)
    text = str(value or "").replace("\u00a0", "").replace(" ", "")
    if text in _SHEET_BLANKS or text.startswith("#"):
        return 0.0
    negative = text.startswith("(") and text.endswith(")")
    text = text.strip("()").replace("R$", "")
    amount = parse_amount(text.replace(".", "").replace(",", "."), field)
    return -amount if negative else amount


def parse_sheet_percent(value: Any, field: str) -> float:
    text = str(value or "").replace("%", "").strip()
    if not text or text.startswith("#"):
        return 0.0
    return parse_amount(text.replace(",", "."), field)


def normalize_cmv_sheet_week(raw: RawRecord) -> dict[str, Any]:
    payload = _require_dict(raw)
    cells = payload.get("cells")
    if not isinstance(cells, list):
        raise MalformedPayload("cells: expected a list")

    inputs = {}
    for field, row in SHEET_INPUT_ROWS.items():
        value = cells[row] if row < len(cells) else None
        if field == "theoretical_cmv_pct":
            if value in (None, ""):
                continue
            inputs[field] = parse_sheet_percent(value, field)
        else:
            inputs[field] = parse_sheet_money(value, field)
    return {
        "business_date": raw.business_date,
        "period_key": week_of(raw.business_date).key,
        "inputs": inputs,
    }


NORMALIZERS: dict[tuple[str, str], tuple[type[Base], Callable[[RawRecord], dict[str, Any]]]] = {
    ("pos", "period"): (SaleVisit, normalize_pos_period),
    ("ticketing", "orders"): (TicketOrder, normalize_ticket_order),
    ("accounting", "schedules"): (Purchase, normalize_schedule),
    ("reviews", "reviews"): (Review, normalize_review),
    ("sheets", "cmv_weeks"): (CmvSummary, normalize_cmv_sheet_week),
}


def normalize_record(raw: RawRecord, updated_at: datetime) -> tuple[type[Base], dict[str, Any]]:
    """Normalized row for a raw record, keyed by ``(bar_id, source_key)``."""
    entry = NORMALIZERS.get((raw.source_system, raw.data_type))
    if entry is None:
        raise MalformedPayload(f"no normalizer for {raw.source_system}/{raw.data_type}")
    model, parse = entry
    row = parse(raw)
    row.update(
        bar_id=raw.bar_id,
        source_key=raw.dedupe_key,
        raw_record_id=raw.id,
        updated_at=updated_at,
    )
    return model, row
