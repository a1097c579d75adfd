"""Weekly/monthly performance scorecard."""

from __future__ import annotations

from collections.abc import Iterable

from barsync.process.normalize import APPROVED_ORDER_STATUS


def pos_net(gross: float, couvert: float, tip: float) -> float:
    return gross - couvert - tip


def compute_performance(
    *,
    visits: Iterable[tuple[float, float, float, float]],
    orders: Iterable[tuple[str | None, float]],
    stars: Iterable[float | None],
) -> dict[str, float | int | None]:
    """Scorecard from (gross, couvert, tip, people) visits, (status, net) orders and review stars."""
    pos_revenue = 0.0
    customers = 0.0
    for gross, couvert, tip, people in visits:
        pos_revenue += pos_net(gross, couvert, tip)
        customers += people

    ticket_revenue = sum(net for status, net in orders if status == APPROVED_ORDER_STATUS)
    total_revenue = pos_revenue + ticket_revenue

    reviews = list(stars)
    rated = [value for value in reviews if value is not None]
    return {
        "pos_revenue": pos_revenue,
        "ticket_revenue": float(ticket_revenue),
        "total_revenue": total_revenue,
        "customers": customers,
        "average_ticket": total_revenue / customers if customers else None,
        "review_count": len(reviews),
        "average_stars": sum(rated) / len(rated) if rated else None,
    }
