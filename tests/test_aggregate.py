"""Tests for CMV/performance formulas and period recomputation."""

from datetime import UTC, date, datetime

import pytest

from barsync.aggregate import recompute as recompute_module
from barsync.aggregate.cmv import (
    ADMIN,
    ARTIST,
    BENEFITS,
    HR,
    PARTNERS,
    ManualInputs,
    bucket_purchases,
    classify_discount,
    compute_cmv,
)
from barsync.aggregate.performance import compute_performance
from barsync.aggregate.recompute import override_summary_field, recompute, recompute_all, recompute_dirty
from barsync.errors import InvalidInput
from barsync.models import CmvSummary, DirtyPeriod, PerformanceSummary, Purchase, Review, SaleVisit, SummaryOverride, TicketOrder

WEEK = "2026-W10"
DAY = date(2026, 3, 2)
NO_DISCOUNTS = {PARTNERS: 0.0, BENEFITS: 0.0, ADMIN: 0.0, HR: 0.0, ARTIST: 0.0}
NO_PURCHASES = {"food": 0.0, "beverages": 0.0, "drinks": 0.0, "other": 0.0}


class TestClassifyDiscount:
    @pytest.mark.parametrize(
        ("reason", "bucket"),
        [
            ("Sócio", PARTNERS),
            ("consuma diogo", PARTNERS),
            ("Aniversário", BENEFITS),
            ("influencer insta", BENEFITS),
            ("Funcionário", ADMIN),
            ("mesa adm", ADMIN),
            ("Casa", ADMIN),
            ("RH", HR),
            ("Banda Samba", ARTIST),
            ("Arredondamento", None),
            ("teste", None),
        ],
    )
    def test_buckets(self, reason, bucket):
        assert classify_discount(reason, partner_names=["Diogo"]) == bucket


def test_bucket_purchases_debits_only():
    totals = bucket_purchases(
        [
            ("CUSTO COMIDA - Hortifruti", "Debit", -100.0),
            ("CUSTO BEBIDA", "Debit", -50.0),
            ("CUSTO DRINK", "Credit", 30.0),
            ("ALUGUEL", "Debit", -999.0),
        ]
    )
    assert totals == {"food": 100.0, "beverages": 50.0, "drinks": 0.0, "other": 0.0}


class TestComputeCmv:
    def test_formula(self):
        result = compute_cmv(
            gross_revenue=10_000.0,
            couvert=500.0,
            tips=500.0,
            discounts={**NO_DISCOUNTS, PARTNERS: 100.0, BENEFITS: 100.0},
            purchases={**NO_PURCHASES, "food": 3_000.0},
            manual=ManualInputs(opening_stock=1_000.0, closing_stock=800.0, bonuses=50.0, hr_consumption=10.0),
        )
        consumption = 100 * 0.35 + 100 * 0.33 + 10.0
        assert result["net_revenue"] == 9_000.0
        assert result["consumption_total"] == pytest.approx(consumption)
        assert result["cmv_value"] == pytest.approx(1_000 + 3_000 - 800 - consumption + 50)
        assert result["cost_ratio"] == pytest.approx(result["cmv_value"] / 9_000 * 100)
        assert result["gap"] == pytest.approx(result["cost_ratio"] - 33.0)

    def test_zero_revenue_gives_null_ratios(self):
        result = compute_cmv(
            gross_revenue=0.0,
            couvert=0.0,
            tips=0.0,
            discounts=NO_DISCOUNTS,
            purchases={**NO_PURCHASES, "other": 10.0},
            manual=ManualInputs(),
        )
        assert result["cost_ratio"] is None
        assert result["gross_cost_ratio"] is None
        assert result["gap"] is None
        assert result["cmv_value"] == 10.0


class TestComputePerformance:
    def test_scorecard(self):
        result = compute_performance(
            visits=[(120.0, 10.0, 10.0, 2), (60.0, 0.0, 0.0, 1)],
            orders=[("A", 90.0), ("C", 500.0)],
            stars=[5, 4, None],
        )
        assert result["pos_revenue"] == 160.0
        assert result["total_revenue"] == 250.0
        assert result["average_ticket"] == pytest.approx(250 / 3)
        assert result["review_count"] == 3
        assert result["average_stars"] == 4.5

    def test_no_customers_or_reviews(self):
        result = compute_performance(visits=[], orders=[], stars=[])
        assert result["average_ticket"] is None
        assert result["average_stars"] is None


def _seed_period(db_session, bar):
    now = datetime.now(UTC)
    common = {"bar_id": bar.id, "raw_record_id": 0, "business_date": DAY, "updated_at": now}
    db_session.add_all(
        [
            SaleVisit(source_key="v1", gross_amount=1000.0, couvert_amount=50.0, tip_amount=50.0,
                      discount_amount=100.0, discount_reason="socio", people=10, **common),
            SaleVisit(source_key="v2", gross_amount=500.0, couvert_amount=0.0, tip_amount=0.0,
                      discount_amount=0.0, people=5, **common),
            TicketOrder(source_key="t1", status="A", gross_value=220.0, net_value=200.0, **common),
            Purchase(source_key="p1", category="CUSTO BEBIDA", kind="Debit", amount=-300.0, **common),
            Review(source_key="r1", stars=5.0, **common),
            DirtyPeriod(bar_id=bar.id, period_key=WEEK, marked_at=now),
        ]
    )
    db_session.commit()


@pytest.fixture
def seeded(db_session, sample_bar):
    _seed_period(db_session, sample_bar)
    return sample_bar


class TestRecompute:
    def test_writes_both_summaries_and_clears_dirty(self, db_session, seeded):
        recompute(db_session, seeded.id, WEEK)
        db_session.commit()

        cmv = db_session.query(CmvSummary).one()
        perf = db_session.query(PerformanceSummary).one()
        assert cmv.period_start == date(2026, 3, 2)
        assert cmv.gross_revenue == 1500.0
        assert cmv.net_revenue == 1400.0
        assert cmv.partners_discounts == 100.0
        assert cmv.purchases_beverages == 300.0
        assert cmv.cmv_value == pytest.approx(300 - 35.0)
        assert perf.total_revenue == 1600.0
        assert perf.customers == 15
        assert perf.review_count == 1
        assert db_session.query(DirtyPeriod).count() == 0

    def test_pure(self, db_session, seeded):
        first = recompute(db_session, seeded.id, WEEK)
        second = recompute(db_session, seeded.id, WEEK)
        db_session.commit()

        assert first["cmv"] == second["cmv"]
        assert first["performance"] == second["performance"]
        assert db_session.query(CmvSummary).count() == 1

    def test_empty_period_has_null_ratio(self, db_session, sample_bar):
        result = recompute(db_session, sample_bar.id, "2026-W20")
        assert result["cmv"]["cost_ratio"] is None
        assert result["performance"]["average_ticket"] is None

    def test_month_period(self, db_session, seeded):
        result = recompute(db_session, seeded.id, "2026-03")
        assert result["performance"]["total_revenue"] == 1600.0


class TestOverride:
    def test_manual_input_survives_recompute(self, db_session, seeded):
        recompute(db_session, seeded.id, WEEK)
        override_summary_field(db_session, seeded.id, WEEK, "closing_stock", 100.0, actor="gerente", reason="count")
        db_session.commit()
        recompute(db_session, seeded.id, WEEK)
        db_session.commit()

        cmv = db_session.query(CmvSummary).one()
        assert cmv.closing_stock == 100.0
        assert cmv.cmv_value == pytest.approx(300 - 100 - 35.0)

        audit = db_session.query(SummaryOverride).one()
        assert audit.field == "closing_stock"
        assert audit.old_value == 0.0
        assert audit.new_value == 100.0
        assert audit.actor == "gerente"

    def test_creates_summary_when_missing(self, db_session, seeded):
        override_summary_field(db_session, seeded.id, WEEK, "opening_stock", 50.0, actor="ops")
        db_session.commit()
        assert db_session.query(CmvSummary).one().opening_stock == 50.0

    def test_rejects_computed_fields(self, db_session, seeded):
        with pytest.raises(InvalidInput):
            override_summary_field(db_session, seeded.id, WEEK, "cmv_value", 1.0, actor="ops")


class TestRecomputeMany:
    def test_recompute_all_trailing_weeks(self, db_session, seeded):
        result = recompute_all(db_session, limit_periods=2, today=date(2026, 3, 4))

        assert result["recalculadas"] == 2
        assert result["erros"] == 0
        assert result["erros_detalhes"] == []
        keys = {row.period_key for row in db_session.query(CmvSummary).all()}
        assert keys == {"2026-W10", "2026-W09"}

    def test_errors_are_counted_with_details(self, db_session, seeded, monkeypatch):
        real_recompute = recompute_module.recompute

        def flaky(session, bar_id, period_key, **kwargs):
            if period_key == "2026-W09":
                raise InvalidInput("boom")
            return real_recompute(session, bar_id, period_key, **kwargs)

        monkeypatch.setattr(recompute_module, "recompute", flaky)
        result = recompute_all(db_session, limit_periods=2, today=date(2026, 3, 4))

        assert result["recalculadas"] == 1
        assert result["erros"] == 1
        assert result["erros_detalhes"] == [{"bar_id": seeded.id, "period_key": "2026-W09", "error": "boom"}]
        assert result["success"] is False

    def test_recompute_dirty_only(self, db_session, seeded):
        result = recompute_dirty(db_session)

        assert result["recalculadas"] == 1
        assert db_session.query(CmvSummary).one().period_key == WEEK

    def test_recompute_dirty_respects_bar_filter(self, db_session, seeded):
        assert recompute_dirty(db_session, bar_ids=[])["recalculadas"] == 0
        assert db_session.query(DirtyPeriod).count() == 1
