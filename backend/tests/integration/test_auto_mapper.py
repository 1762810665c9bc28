"""Integration tests for batch auto-mapping"""

from datetime import datetime, timedelta, timezone
from typing import List

from sqlalchemy import select

from config import Settings
from models.order_link import OrderLink, LinkStatus, LinkType, OrderClassification
from models.provider_order import ProviderOrder
from reconciliation.auto_mapper import AutoMapper
from reconciliation.classifier import classify_order
from reconciliation.errors import TransientStoreError
from reconciliation.matcher import CandidateMatcher
from reconciliation.ports import MatchCandidate, MatcherPort
from reconciliation.reporting import compute_stats

T0 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def all_links(db_session) -> List[OrderLink]:
    return list(db_session.execute(select(OrderLink).order_by(OrderLink.created_at)).scalars().all())


class FixedMatcher(MatcherPort):
    """Returns preset candidates per provider order id."""

    def __init__(self, candidates_by_order):
        self.candidates_by_order = candidates_by_order

    def match(self, provider_order: ProviderOrder) -> List[MatchCandidate]:
        return self.candidates_by_order.get(provider_order.id, [])


def candidate(storefront_order_id, score):
    return MatchCandidate(storefront_order_id=storefront_order_id, score=score, reasons=[], time_gap_seconds=0.0)


class TestAutoMapperScenario:
    """P1 with an exact counterpart S1 and a weaker S2"""

    def test_links_best_candidate(self, db_session, settings, make_provider_order, make_storefront_order):
        p1 = make_provider_order(total_amount="49.99", recipient_name="Jane Doe", created_at=T0)
        s1 = make_storefront_order(
            total_amount="49.99", customer_name="Jane Doe", created_at=T0 - timedelta(minutes=10)
        )
        s2 = make_storefront_order(
            total_amount="49.99", customer_name="John Doe", created_at=datetime(2024, 3, 5, tzinfo=timezone.utc)
        )

        candidates = CandidateMatcher(db_session, settings).match(p1)
        assert [c.storefront_order_id for c in candidates] == [s1.id, s2.id]

        result = AutoMapper(db_session, settings).run()

        assert result.successful_mappings == 1
        assert result.processed == 1
        assert result.errors == []
        links = all_links(db_session)
        assert len(links) == 1
        assert links[0].provider_order_id == p1.id
        assert links[0].storefront_order_id == s1.id
        assert links[0].link_status == LinkStatus.ACTIVE
        assert links[0].link_type == LinkType.AUTOMATIC
        assert links[0].linked_by is None
        assert links[0].confidence > 0.99
        assert "Exact amount match" in links[0].match_details["reasons"]

    def test_second_run_creates_nothing(self, db_session, settings, make_provider_order, make_storefront_order):
        make_provider_order()
        make_storefront_order()
        first = AutoMapper(db_session, settings).run()
        assert first.successful_mappings == 1

        second = AutoMapper(db_session, settings).run()

        assert second.processed == 0
        assert second.successful_mappings == 0
        assert len(all_links(db_session)) == 1

    def test_no_candidates_left_unlinked(self, db_session, settings, make_provider_order):
        make_provider_order()
        result = AutoMapper(db_session, settings).run()
        assert result.left_unlinked == 1
        assert all_links(db_session) == []

    def test_candidate_outside_window_ignored(
        self, db_session, settings, make_provider_order, make_storefront_order
    ):
        make_provider_order(created_at=T0)
        make_storefront_order(created_at=T0 + timedelta(days=8))
        result = AutoMapper(db_session, settings).run()
        assert result.left_unlinked == 1

    def test_pool_cap_keeps_closest_orders(
        self, db_session, make_provider_order, make_storefront_order
    ):
        settings = Settings(DATABASE_URL="sqlite://", MATCH_CANDIDATE_POOL_LIMIT=2)
        po = make_provider_order(created_at=T0)
        make_storefront_order(customer_name="Someone Else", created_at=T0 - timedelta(days=6))
        near = make_storefront_order(customer_name="Someone Else", created_at=T0 - timedelta(days=5))
        exact = make_storefront_order(created_at=T0)
        make_storefront_order(customer_name="Someone Else", created_at=T0 + timedelta(days=6))

        candidates = CandidateMatcher(db_session, settings).match(po)
        assert [c.storefront_order_id for c in candidates] == [exact.id, near.id]

        result = AutoMapper(db_session, settings).run()

        assert result.successful_mappings == 1
        assert all_links(db_session)[0].storefront_order_id == exact.id

    def test_classified_orders_skipped(self, db_session, settings, make_provider_order, make_storefront_order):
        gift = make_provider_order()
        make_storefront_order()
        classify_order(db_session, gift.id, OrderClassification.GIFT)
        db_session.commit()

        result = AutoMapper(db_session, settings).run()

        assert result.processed == 0
        assert len(all_links(db_session)) == 1


class TestAutoMapperDecisions:
    """Decision outcomes with a stubbed matcher"""

    def test_vanished_candidate_recorded_as_error(self, db_session, settings, make_provider_order):
        po = make_provider_order()
        matcher = FixedMatcher({po.id: [candidate(999999, 0.97)]})

        result = AutoMapper(db_session, settings, matcher=matcher).run()

        assert result.processed == 1
        assert result.successful_mappings == 0
        assert len(result.errors) == 1
        assert "999999" in result.errors[0].message
        assert all_links(db_session) == []

    def test_margin_rule(self, db_session, settings, make_provider_order, make_storefront_order):
        close = make_provider_order()
        clear = make_provider_order()
        s1 = make_storefront_order()
        s2 = make_storefront_order()
        matcher = FixedMatcher({
            close.id: [candidate(s1.id, 0.91), candidate(s2.id, 0.89)],
            clear.id: [candidate(s2.id, 0.95), candidate(s1.id, 0.40)],
        })

        result = AutoMapper(db_session, settings, matcher=matcher).run()

        assert result.successful_mappings == 1
        assert result.pending_review_created == 1
        by_order = {link.provider_order_id: link for link in all_links(db_session)}
        assert by_order[close.id].link_status == LinkStatus.PENDING_VERIFICATION
        assert by_order[close.id].storefront_order_id == s1.id
        assert by_order[clear.id].link_status == LinkStatus.ACTIVE
        assert by_order[clear.id].storefront_order_id == s2.id

    def test_pending_pair_not_duplicated(self, db_session, settings, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()
        matcher = FixedMatcher({po.id: [candidate(so.id, 0.7)]})

        AutoMapper(db_session, settings, matcher=matcher).run()
        second = AutoMapper(db_session, settings, matcher=matcher).run()

        assert second.pending_review_created == 0
        assert second.left_unlinked == 1
        assert len(all_links(db_session)) == 1

    def test_failure_isolated_per_order(self, db_session, settings, make_provider_order, make_storefront_order):
        failing = make_provider_order(created_at=T0)
        ok = make_provider_order(created_at=T0 + timedelta(hours=1))
        so = make_storefront_order()

        class FlakyMatcher(MatcherPort):
            def match(self, provider_order):
                if provider_order.id == failing.id:
                    raise TransientStoreError("connection lost")
                return [candidate(so.id, 0.97)]

        result = AutoMapper(db_session, settings, matcher=FlakyMatcher()).run()

        assert result.processed == 2
        assert result.successful_mappings == 1
        assert len(result.errors) == 1
        assert result.errors[0].provider_order_id == failing.id
        assert result.errors[0].message == "connection lost"
        links = all_links(db_session)
        assert [link.provider_order_id for link in links] == [ok.id]

    def test_max_orders_bound(self, db_session, settings, make_provider_order):
        for hour in range(3):
            make_provider_order(created_at=T0 + timedelta(hours=hour))

        result = AutoMapper(db_session, settings, matcher=FixedMatcher({})).run(max_orders=2)

        assert result.processed == 2
        assert result.stopped_early is True

    def test_zero_time_budget_stops_immediately(self, db_session, settings, make_provider_order):
        make_provider_order()
        result = AutoMapper(db_session, settings, matcher=FixedMatcher({})).run(time_budget_seconds=0)
        assert result.processed == 0
        assert result.stopped_early is True

    def test_broken_link_released_before_mapping(
        self, db_session, settings, make_provider_order, make_storefront_order
    ):
        po = make_provider_order()
        gone = make_storefront_order()
        replacement = make_storefront_order()
        AutoMapper(db_session, settings, matcher=FixedMatcher({po.id: [candidate(gone.id, 0.99)]})).run()
        db_session.delete(gone)
        db_session.commit()

        result = AutoMapper(
            db_session, settings, matcher=FixedMatcher({po.id: [candidate(replacement.id, 0.99)]})
        ).run()

        assert result.broken_links_detected == 1
        assert result.successful_mappings == 1
        stats = compute_stats(db_session)
        assert stats.mapped_orders == 1
        assert stats.broken_links == 1

    def test_auto_link_archives_stale_pending(
        self, db_session, settings, make_provider_order, make_storefront_order
    ):
        po = make_provider_order()
        first_guess = make_storefront_order()
        better = make_storefront_order()
        AutoMapper(db_session, settings, matcher=FixedMatcher({po.id: [candidate(first_guess.id, 0.7)]})).run()

        result = AutoMapper(
            db_session, settings, matcher=FixedMatcher({po.id: [candidate(better.id, 0.97)]})
        ).run()

        assert result.successful_mappings == 1
        by_target = {link.storefront_order_id: link for link in all_links(db_session)}
        assert by_target[better.id].link_status == LinkStatus.ACTIVE
        assert by_target[first_guess.id].link_status == LinkStatus.ARCHIVED
        assert compute_stats(db_session).pending_review_orders == 0
