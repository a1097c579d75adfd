"""CMV (cost of goods sold) formulas."""

from __future__ import annotations

import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

PARTNERS = "partners"
BENEFITS = "benefits"
ADMIN = "admin"
HR = "hr"
ARTIST = "artist"

DISCOUNT_BUCKETS = (PARTNERS, BENEFITS, ADMIN, HR, ARTIST)

CONSUMPTION_RATES = {
    PARTNERS: 0.35,
    BENEFITS: 0.33,
    ADMIN: 0.35,
    ARTIST: 0.35,
}

PURCHASE_CATEGORIES = {
    "CUSTO COMIDA": "food",
    "CUSTO BEBIDA": "beverages",
    "CUSTO DRINK": "drinks",
    "CUSTO OUTRO": "other",
}

MANUAL_FIELDS = (
    "opening_stock",
    "closing_stock",
    "bonuses",
    "other_adjustments",
    "hr_consumption",
    "theoretical_cmv_pct",
)

_BENEFIT_MARKERS = ("aniversario", "aniversariante", "beneficio", "confraternizacao", "influenc")
_IGNORED_EXACT = {"teste", "ambev", "pv", "slu"}


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower().strip())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def classify_discount(reason: str | None, partner_names: Sequence[str] = ()) -> str | None:
    """Consumption bucket for a discount reason, or None when it is ignored."""
    motive = _fold(reason or "")
    if "arredondamento" in motive or motive in _IGNORED_EXACT:
        return None
    if "socio" in motive or any(_fold(name) in motive for name in partner_names if name):
        return PARTNERS
    if any(marker in motive for marker in _BENEFIT_MARKERS):
        return BENEFITS
    if motive == "rh" or "recursos humanos" in motive:
        return HR
    padded = f" {motive} "
    if "funcionario" in motive or "marketing" in motive or "mkt" in motive:
        return ADMIN
    if " adm" in padded or " casa" in padded or " prod " in padded:
        return ADMIN
    return ARTIST


def bucket_discounts(discounts: Iterable[tuple[str | None, float]], partner_names: Sequence[str] = ()) -> dict[str, float]:
    totals = dict.fromkeys(DISCOUNT_BUCKETS, 0.0)
    for reason, amount in discounts:
        if not amount:
            continue
        bucket = classify_discount(reason, partner_names)
        if bucket is not None:
            totals[bucket] += amount
    return totals


def purchase_bucket(category: str | None) -> str | None:
    text = (category or "").upper()
    for marker, bucket in PURCHASE_CATEGORIES.items():
        if marker in text:
            return bucket
    return None


def bucket_purchases(entries: Iterable[tuple[str | None, str, float]]) -> dict[str, float]:
    """Sum debit entries per cost bucket. Credits and unrelated categories are skipped."""
    totals = dict.fromkeys(PURCHASE_CATEGORIES.values(), 0.0)
    for category, kind, amount in entries:
        if kind != "Debit":
            continue
        bucket = purchase_bucket(category)
        if bucket is not None:
            totals[bucket] += abs(amount)
    return totals


@dataclass(frozen=True)
class ManualInputs:
    opening_stock: float = 0.0
    closing_stock: float = 0.0
    bonuses: float = 0.0
    other_adjustments: float = 0.0
    hr_consumption: float = 0.0
    theoretical_cmv_pct: float = 33.0


def ratio(numerator: float, denominator: float) -> float | None:
    if not denominator:
        return None
    return numerator / denominator * 100


def compute_cmv(
    *,
    gross_revenue: float,
    couvert: float,
    tips: float,
    discounts: dict[str, float],
    purchases: dict[str, float],
    manual: ManualInputs,
) -> dict[str, float | None]:
    net_revenue = gross_revenue - couvert - tips
    consumption = (
        sum(discounts[bucket] * rate for bucket, rate in CONSUMPTION_RATES.items())
        + manual.hr_consumption
        + manual.other_adjustments
    )
    purchases_total = sum(purchases.values())
    cmv_value = manual.opening_stock + purchases_total - manual.closing_stock - consumption + manual.bonuses
    cost_ratio = ratio(cmv_value, net_revenue)
    return {
        "gross_revenue": gross_revenue,
        "net_revenue": net_revenue,
        "partners_discounts": discounts[PARTNERS],
        "benefits_discounts": discounts[BENEFITS],
        "admin_discounts": discounts[ADMIN],
        "hr_discounts": discounts[HR],
        "artist_discounts": discounts[ARTIST],
        "purchases_food": purchases["food"],
        "purchases_beverages": purchases["beverages"],
        "purchases_drinks": purchases["drinks"],
        "purchases_other": purchases["other"],
        "purchases_total": purchases_total,
        "consumption_total": consumption,
        "cmv_value": cmv_value,
        "cost_ratio": cost_ratio,
        "gross_cost_ratio": ratio(cmv_value, gross_revenue),
        "gap": cost_ratio - manual.theoretical_cmv_pct if cost_ratio is not None else None,
    }
