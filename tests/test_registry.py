"""Test opportunity registry dedup, lifecycle and expiry."""

import pytest

from arbsniper.config import RegistryConfig
from arbsniper.core.registry import OpportunityRegistry
from arbsniper.core.types import OpportunityStatus
from arbsniper.errors import InvalidTransition, OpportunityNotFound

from sample_data import BASE_TIME_MS, FakeClock, make_opportunity


class TestIngest:
    """Test registration of detected opportunities."""

    def setup_method(self):
        self.clock = FakeClock()
        self.registry = OpportunityRegistry(RegistryConfig(), clock=self.clock)

    def test_new_opportunity_is_pending(self):
        """Ingested opportunities start pending."""
        created = self.registry.ingest([make_opportunity()])

        assert len(created) == 1
        assert created[0].status == OpportunityStatus.PENDING
        assert created[0].created_at == BASE_TIME_MS
        assert len(self.registry) == 1

    def test_ingest_is_idempotent(self):
        """Ingesting the same opportunity twice keeps one entry."""
        opportunity = make_opportunity()

        self.registry.ingest([opportunity])
        again = self.registry.ingest([opportunity])

        assert again == []
        assert len(self.registry) == 1
        assert self.registry.get_stats()['ingested'] == 1

    def test_first_seen_wins(self):
        """A re-detected opportunity does not reset an executing entry."""
        opportunity = make_opportunity()
        self.registry.ingest([opportunity])
        self.registry.transition(opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

        self.registry.ingest([opportunity])

        assert self.registry.get(opportunity.id).status == OpportunityStatus.EXECUTING

    def test_new_detection_time_is_new_entry(self):
        """The same route detected in a later cycle is a distinct opportunity."""
        self.registry.ingest([make_opportunity(detected_at=BASE_TIME_MS)])
        self.registry.ingest([make_opportunity(detected_at=BASE_TIME_MS + 5000)])

        assert len(self.registry) == 2

    def test_route_dedup_window(self):
        """With a dedup window, repeats of a route inside the window are ignored."""
        registry = OpportunityRegistry(RegistryConfig(dedup_window_ms=10000), clock=self.clock)

        registry.ingest([make_opportunity(detected_at=BASE_TIME_MS)])
        self.clock.advance(5000)
        skipped = registry.ingest([make_opportunity(detected_at=BASE_TIME_MS + 5000)])
        self.clock.advance(6000)
        accepted = registry.ingest([make_opportunity(detected_at=BASE_TIME_MS + 11000)])

        assert skipped == []
        assert len(accepted) == 1
        assert len(registry) == 2

    def test_listeners_notified_of_new_entries(self):
        """Subscribers receive each new entry once."""
        received = []
        self.registry.subscribe(received.append)

        opportunity = make_opportunity()
        self.registry.ingest([opportunity, opportunity])

        assert [entry.id for entry in received] == [opportunity.id]


class TestTransitions:
    """Test status transitions."""

    def setup_method(self):
        self.clock = FakeClock()
        self.registry = OpportunityRegistry(clock=self.clock)
        self.opportunity = make_opportunity()
        self.registry.ingest([self.opportunity])

    def test_full_lifecycle(self):
        """pending -> executing -> completed with fields attached."""
        executing = self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING,
                                             OpportunityStatus.EXECUTING, execution_started_at=BASE_TIME_MS)
        completed = self.registry.transition(self.opportunity.id, OpportunityStatus.EXECUTING,
                                             OpportunityStatus.COMPLETED, actual_profit=9.5,
                                             tx_reference="sig1,sig2")

        assert executing.status == OpportunityStatus.EXECUTING
        assert completed.status == OpportunityStatus.COMPLETED
        assert completed.actual_profit == 9.5
        assert completed.tx_reference == "sig1,sig2"
        assert completed.execution_started_at == BASE_TIME_MS
        assert completed.is_terminal

    def test_entries_are_replaced_not_mutated(self):
        """Earlier snapshots of an entry keep their status."""
        before = self.registry.get(self.opportunity.id)

        self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

        assert before.status == OpportunityStatus.PENDING
        assert self.registry.get(self.opportunity.id).status == OpportunityStatus.EXECUTING

    def test_wrong_from_status_rejected(self):
        """The transition precondition must match the current status."""
        with pytest.raises(InvalidTransition):
            self.registry.transition(self.opportunity.id, OpportunityStatus.EXECUTING, OpportunityStatus.COMPLETED)

        assert self.registry.get(self.opportunity.id).status == OpportunityStatus.PENDING

    def test_skipping_executing_rejected(self):
        """pending cannot jump straight to completed."""
        with pytest.raises(InvalidTransition):
            self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.COMPLETED)

    def test_no_regression_from_terminal(self):
        """Terminal entries never move again."""
        self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)
        self.registry.transition(self.opportunity.id, OpportunityStatus.EXECUTING, OpportunityStatus.FAILED,
                                 error_reason="leg 2 failed")

        with pytest.raises(InvalidTransition):
            self.registry.transition(self.opportunity.id, OpportunityStatus.FAILED, OpportunityStatus.PENDING)

    def test_second_claim_fails(self):
        """Only one caller can take an entry from pending to executing."""
        self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

        with pytest.raises(InvalidTransition):
            self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

    def test_unknown_id(self):
        """Unknown ids raise OpportunityNotFound."""
        with pytest.raises(OpportunityNotFound):
            self.registry.transition("missing", OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)
        with pytest.raises(OpportunityNotFound):
            self.registry.get("missing")

    def test_transitions_published(self):
        """Listeners see every status change."""
        statuses = []
        self.registry.subscribe(lambda entry: statuses.append(entry.status))

        self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)
        self.registry.transition(self.opportunity.id, OpportunityStatus.EXECUTING, OpportunityStatus.COMPLETED)

        assert statuses == [OpportunityStatus.EXECUTING, OpportunityStatus.COMPLETED]

    def test_queries_by_status(self):
        """Status queries and stats reflect transitions."""
        other = make_opportunity(source="venue_c", profit_percentage=2.0)
        self.registry.ingest([other])
        self.registry.transition(self.opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

        assert [e.id for e in self.registry.get_opportunities_by_status(OpportunityStatus.PENDING)] == [other.id]
        assert [e.id for e in self.registry.pending()] == [other.id]
        stats = self.registry.get_stats()
        assert stats['pending'] == 1
        assert stats['executing'] == 1
        assert stats['tracked'] == 2

    def test_pending_ranked_by_profit(self):
        """pending() lists the most profitable first."""
        better = make_opportunity(source="venue_c", profit_percentage=3.0)
        self.registry.ingest([better])

        assert [e.id for e in self.registry.pending()] == [better.id, self.opportunity.id]


class TestExpiry:
    """Test retention-based expiry."""

    def setup_method(self):
        self.clock = FakeClock()

    def test_old_entries_removed(self):
        """Entries older than the retention window are dropped."""
        registry = OpportunityRegistry(RegistryConfig(retention_ms=300000), clock=self.clock)
        old = make_opportunity(detected_at=BASE_TIME_MS)
        fresh = make_opportunity(detected_at=BASE_TIME_MS + 200000)
        registry.ingest([old, fresh])

        removed = registry.expire(BASE_TIME_MS + 300001)

        assert removed == 1
        assert old.id not in registry
        assert fresh.id in registry
        assert registry.get_stats()['expired'] == 1

    def test_in_flight_entries_kept(self):
        """Executing entries survive expiry by default."""
        registry = OpportunityRegistry(RegistryConfig(retention_ms=1000), clock=self.clock)
        opportunity = make_opportunity()
        registry.ingest([opportunity])
        registry.transition(opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

        assert registry.expire(BASE_TIME_MS + 5000) == 0
        assert opportunity.id in registry

    def test_in_flight_entries_expire_when_configured(self):
        """expire_in_flight lets executing entries age out too."""
        registry = OpportunityRegistry(RegistryConfig(retention_ms=1000, expire_in_flight=True), clock=self.clock)
        opportunity = make_opportunity()
        registry.ingest([opportunity])
        registry.transition(opportunity.id, OpportunityStatus.PENDING, OpportunityStatus.EXECUTING)

        assert registry.expire(BASE_TIME_MS + 5000) == 1

    def test_expire_uses_clock_by_default(self):
        """Without an explicit time the registry clock is used."""
        registry = OpportunityRegistry(RegistryConfig(retention_ms=1000), clock=self.clock)
        registry.ingest([make_opportunity()])

        self.clock.advance(500)
        assert registry.expire() == 0
        self.clock.advance(1000)
        assert registry.expire() == 1
