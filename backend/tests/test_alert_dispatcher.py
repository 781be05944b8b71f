"""Tests for alert materialization and the alert lifecycle."""
import pytest

from staywatch.models import Alert, AlertStatus, Insight, InsightType
from staywatch.services.alert_dispatcher import AlertDispatcher


@pytest.fixture
def make_insight(db_session):
    def _make(fingerprint_id, insight_type=InsightType.PRICE_DROP_PERCENT, summary="Price dropped 12.0%"):
        insight = Insight(
            fingerprint_id=fingerprint_id,
            type=insight_type,
            summary=summary,
            details={"dropPercent": 12.0},
        )
        db_session.add(insight)
        db_session.commit()
        return insight

    return _make


class TestDispatch:
    def test_one_alert_per_linked_profile(self, db_session, make_profile, make_fingerprint, make_insight):
        alice = make_profile(user_id="alice")
        bob = make_profile(user_id="bob")
        fingerprint = make_fingerprint(profiles=[alice, bob])
        insight = make_insight(fingerprint.id)

        alerts = AlertDispatcher(db_session).dispatch([insight])

        assert len(alerts) == 2
        assert {alert.user_id for alert in alerts} == {"alice", "bob"}
        assert all(alert.status == AlertStatus.UNREAD for alert in alerts)

    def test_dispatch_twice_does_not_duplicate(self, db_session, make_profile, make_fingerprint, make_insight):
        profile = make_profile()
        fingerprint = make_fingerprint(profiles=[profile])
        insight = make_insight(fingerprint.id)
        dispatcher = AlertDispatcher(db_session)

        dispatcher.dispatch([insight])
        assert dispatcher.dispatch([insight]) == []
        assert db_session.query(Alert).count() == 1

    def test_unlinked_fingerprint_produces_nothing(self, db_session, make_fingerprint, make_insight):
        fingerprint = make_fingerprint()
        insight = make_insight(fingerprint.id)

        assert AlertDispatcher(db_session).dispatch([insight]) == []


class TestLifecycle:
    @pytest.fixture
    def alerts(self, db_session, make_profile, make_fingerprint, make_insight):
        profile = make_profile(user_id="alice")
        fingerprint = make_fingerprint(profiles=[profile])
        first = make_insight(fingerprint.id, InsightType.LOWEST_IN_X_DAYS, "Lowest price in 180 days")
        second = make_insight(fingerprint.id, InsightType.VOUCHER_SPOTTED, "Voucher code spotted: SAVE10")
        return AlertDispatcher(db_session).dispatch([first, second])

    def test_dismissed_alert_leaves_unread_list(self, db_session, alerts):
        dispatcher = AlertDispatcher(db_session)

        dismissed = dispatcher.dismiss(alerts[0].id, "alice")

        assert dismissed.status == AlertStatus.DISMISSED
        assert dismissed.dismissed_at is not None
        unread = dispatcher.recent_alerts("alice", unread_only=True)
        assert [alert.id for alert in unread] == [alerts[1].id]
        assert dispatcher.unread_count("alice") == 1
        assert len(dispatcher.recent_alerts("alice")) == 2

    def test_read_then_dismiss(self, db_session, alerts):
        dispatcher = AlertDispatcher(db_session)

        read = dispatcher.mark_read(alerts[0].id, "alice")
        assert read.status == AlertStatus.READ
        assert read.read_at is not None
        assert dispatcher.unread_count("alice") == 1

        dismissed = dispatcher.dismiss(alerts[0].id, "alice")
        assert dismissed.status == AlertStatus.DISMISSED

        # Reading a dismissed alert does not resurrect it
        again = dispatcher.mark_read(alerts[0].id, "alice")
        assert again.status == AlertStatus.DISMISSED

    def test_other_users_alert_is_invisible(self, db_session, alerts):
        dispatcher = AlertDispatcher(db_session)

        assert dispatcher.dismiss(alerts[0].id, "mallory") is None
        assert dispatcher.mark_read(alerts[0].id, "mallory") is None
        assert dispatcher.recent_alerts("mallory") == []
        assert dispatcher.get_alert(alerts[0].id, "alice").status == AlertStatus.UNREAD

    def test_recent_alerts_carry_insight(self, db_session, alerts):
        recent = AlertDispatcher(db_session).recent_alerts("alice", limit=1)

        assert len(recent) == 1
        assert recent[0].insight.type in (InsightType.LOWEST_IN_X_DAYS, InsightType.VOUCHER_SPOTTED)
