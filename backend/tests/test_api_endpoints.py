"""Tests for API endpoints."""
import pytest
from datetime import datetime, timedelta

from staywatch.models import (
    Alert,
    AlertStatus,
    Deal,
    DealSource,
    DiscountType,
    FetchRun,
    Insight,
    InsightType,
    RunStatus,
)
from staywatch.utils.clock import utcnow


USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


@pytest.fixture
def make_alert(db_session):
    def _make(profile, fingerprint, summary="Lowest price in 180 days: £850.00", user_id="user-1"):
        insight = Insight(
            fingerprint_id=fingerprint.id,
            type=InsightType.LOWEST_IN_X_DAYS,
            summary=summary,
            details={"windowDays": 180},
        )
        db_session.add(insight)
        db_session.commit()
        alert = Alert(insight_id=insight.id, profile_id=profile.id, user_id=user_id)
        db_session.add(alert)
        db_session.commit()
        return alert

    return _make


class TestIdentity:
    @pytest.mark.parametrize("path", [
        "/search/fingerprints?profileId=p",
        "/insights/recent",
        "/alerts/recent",
        "/deals/active",
    ])
    async def test_missing_user_header(self, client, db_session, path):
        response = await client.get(path)
        assert response.status_code == 401

    async def test_blank_user_header(self, client, db_session):
        response = await client.get("/alerts/recent", headers={"X-User-Id": "  "})
        assert response.status_code == 401


class TestSearchAPI:
    async def test_list_fingerprints(self, client, db_session, make_profile, make_fingerprint, make_observation):
        profile = make_profile()
        fingerprint = make_fingerprint(profiles=[profile])
        make_observation(fingerprint.id, 899, datetime(2026, 3, 1, 9, 0))
        make_observation(fingerprint.id, 849, datetime(2026, 3, 3, 9, 0))

        response = await client.get(f"/search/fingerprints?profileId={profile.id}", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["profileId"] == profile.id
        assert len(data["fingerprints"]) == 1
        entry = data["fingerprints"][0]
        assert entry["id"] == fingerprint.id
        assert entry["providerCode"] == "hoseasons"
        assert entry["latestPrice"] == "849.00"
        assert entry["observationCount"] == 2

    async def test_profile_without_fingerprints(self, client, db_session, make_profile):
        profile = make_profile()

        response = await client.get(f"/search/fingerprints?profileId={profile.id}", headers=USER)

        assert response.status_code == 200
        assert response.json()["fingerprints"] == []

    async def test_other_users_profile_is_not_found(self, client, db_session, make_profile):
        profile = make_profile()

        response = await client.get(f"/search/fingerprints?profileId={profile.id}", headers=OTHER_USER)

        assert response.status_code == 404

    async def test_profile_id_required(self, client, db_session):
        response = await client.get("/search/fingerprints", headers=USER)
        assert response.status_code == 422

    async def test_profile_status_with_runs(self, client, db_session, make_profile):
        checked_at = datetime(2026, 3, 1, 9, 0)
        profile = make_profile(
            last_checked_at=checked_at,
            last_check_status="ChallengeUnresolved",
            last_check_message="No content marker within 30s",
        )
        db_session.add(FetchRun(
            profile_id=profile.id,
            provider_code="hoseasons",
            status=RunStatus.OK,
            strategy="INTERCEPT",
            record_count=12,
            finished_at=checked_at - timedelta(days=2),
        ))
        db_session.add(FetchRun(
            profile_id=profile.id,
            provider_code="hoseasons",
            status=RunStatus.BLOCKED,
            error_kind="ChallengeUnresolved",
            finished_at=checked_at,
        ))
        db_session.commit()

        response = await client.get(f"/search/profiles/{profile.id}/status", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["lastCheckStatus"] == "ChallengeUnresolved"
        assert data["nextCheckDue"] == "2026-03-03T09:00:00"
        assert [run["status"] for run in data["recentRuns"]] == ["BLOCKED", "OK"]
        assert data["recentRuns"][1]["recordCount"] == 12

    async def test_profile_status_not_found(self, client, db_session):
        response = await client.get("/search/profiles/missing/status", headers=USER)
        assert response.status_code == 404


class TestInsightsAPI:
    async def test_recent_insights_only_for_linked_fingerprints(
        self, client, db_session, make_profile, make_fingerprint
    ):
        mine = make_fingerprint(profiles=[make_profile()])
        theirs = make_fingerprint(profiles=[make_profile(user_id="user-2")])
        db_session.add(Insight(fingerprint_id=mine.id, type=InsightType.PRICE_DROP_PERCENT, summary="Down 12%"))
        db_session.add(Insight(fingerprint_id=theirs.id, type=InsightType.RISK_RISING, summary="Rising"))
        db_session.commit()

        response = await client.get("/insights/recent", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["type"] == "PRICE_DROP_PERCENT"
        assert data[0]["fingerprintId"] == mine.id

    async def test_recent_insights_without_profiles(self, client, db_session):
        response = await client.get("/insights/recent", headers=USER)

        assert response.status_code == 200
        assert response.json() == []

    async def test_price_history(self, client, db_session, make_profile, make_fingerprint, make_observation):
        fingerprint = make_fingerprint(profiles=[make_profile()])
        now = utcnow()
        make_observation(fingerprint.id, 1100, now - timedelta(days=40))
        make_observation(fingerprint.id, 950, now - timedelta(days=5))
        make_observation(fingerprint.id, 999, now - timedelta(days=1))

        response = await client.get(f"/insights/{fingerprint.id}/price-history?days=30", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [point["lowestPrice"] for point in data["series"]] == ["950.00", "999.00"]
        assert data["minPrice"] == "950.00"
        assert data["maxPrice"] == "999.00"
        assert data["latestPrice"] == "999.00"

    async def test_price_history_of_unlinked_fingerprint(self, client, db_session, make_profile, make_fingerprint):
        fingerprint = make_fingerprint(profiles=[make_profile(user_id="user-2")])

        response = await client.get(f"/insights/{fingerprint.id}/price-history", headers=USER)

        assert response.status_code == 404

    async def test_price_history_days_bounds(self, client, db_session):
        response = await client.get("/insights/abc/price-history?days=0", headers=USER)
        assert response.status_code == 422


class TestAlertsAPI:
    async def test_recent_alerts(self, client, db_session, make_profile, make_fingerprint, make_alert):
        profile = make_profile()
        fingerprint = make_fingerprint(profiles=[profile])
        make_alert(profile, fingerprint)

        response = await client.get("/alerts/recent", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["unreadCount"] == 1
        assert len(data["alerts"]) == 1
        alert = data["alerts"][0]
        assert alert["status"] == "UNREAD"
        assert alert["profileId"] == profile.id
        assert alert["insight"]["type"] == "LOWEST_IN_X_DAYS"
        assert alert["insight"]["summary"] == "Lowest price in 180 days: £850.00"

    async def test_unread_only(self, client, db_session, make_profile, make_fingerprint, make_alert):
        profile = make_profile()
        fingerprint = make_fingerprint(profiles=[profile])
        first = make_alert(profile, fingerprint, summary="First")
        make_alert(profile, fingerprint, summary="Second")
        await client.patch(f"/alerts/{first.id}/read", headers=USER)

        response = await client.get("/alerts/recent?unreadOnly=true", headers=USER)

        data = response.json()
        assert [alert["insight"]["summary"] for alert in data["alerts"]] == ["Second"]
        assert data["unreadCount"] == 1

    async def test_dismiss(self, client, db_session, make_profile, make_fingerprint, make_alert):
        profile = make_profile()
        alert = make_alert(profile, make_fingerprint(profiles=[profile]))

        response = await client.patch(f"/alerts/{alert.id}/dismiss", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "DISMISSED"
        assert data["dismissedAt"] is not None
        db_session.refresh(alert)
        assert alert.status == AlertStatus.DISMISSED

    async def test_read_after_dismiss_stays_dismissed(
        self, client, db_session, make_profile, make_fingerprint, make_alert
    ):
        profile = make_profile()
        alert = make_alert(profile, make_fingerprint(profiles=[profile]))
        await client.patch(f"/alerts/{alert.id}/dismiss", headers=USER)

        response = await client.patch(f"/alerts/{alert.id}/read", headers=USER)

        assert response.status_code == 200
        assert response.json()["status"] == "DISMISSED"

    async def test_other_users_alert_is_not_found(
        self, client, db_session, make_profile, make_fingerprint, make_alert
    ):
        profile = make_profile()
        alert = make_alert(profile, make_fingerprint(profiles=[profile]))

        assert (await client.patch(f"/alerts/{alert.id}/dismiss", headers=OTHER_USER)).status_code == 404
        assert (await client.patch(f"/alerts/{alert.id}/read", headers=OTHER_USER)).status_code == 404
        assert (await client.patch("/alerts/9999/read", headers=USER)).status_code == 404


class TestProviderStatusAPI:
    async def test_lists_every_provider_closed(self, client, db_session):
        response = await client.get("/providers/status")

        assert response.status_code == 200
        data = response.json()
        codes = {provider["code"] for provider in data["providers"]}
        assert codes == {"hoseasons", "haven", "centerparcs", "butlins", "parkdean", "awayresorts"}
        assert all(provider["circuitState"] == "CLOSED" for provider in data["providers"])
        assert "running" in data["scheduler"]


class TestDealsAPI:
    def _deal(self, db_session, provider_code, title, ends_at=None):
        deal = Deal(
            provider_code=provider_code,
            source=DealSource.PROVIDER_OFFERS,
            source_ref=title.lower().replace(" ", "-"),
            title=title,
            discount_type=DiscountType.PERCENT_OFF,
            voucher_code="SPRING25",
            ends_at=ends_at,
            confidence=0.8,
        )
        db_session.add(deal)
        db_session.commit()
        return deal

    async def test_active_deals_skip_expired(self, client, db_session):
        self._deal(db_session, "haven", "Spring sale", ends_at=utcnow() + timedelta(days=7))
        self._deal(db_session, "haven", "Winter sale", ends_at=utcnow() - timedelta(days=1))
        self._deal(db_session, "hoseasons", "Lodge week")

        response = await client.get("/deals/active", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert {deal["title"] for deal in data} == {"Spring sale", "Lodge week"}
        assert data[0]["discountType"] == "PERCENT_OFF"
        assert data[0]["voucherCode"] == "SPRING25"

    async def test_filter_by_provider(self, client, db_session):
        self._deal(db_session, "haven", "Spring sale")
        self._deal(db_session, "hoseasons", "Lodge week")

        response = await client.get("/deals/active?provider=Haven", headers=USER)

        assert [deal["title"] for deal in response.json()] == ["Spring sale"]

    async def test_unknown_provider(self, client, db_session):
        response = await client.get("/deals/active?provider=pontins", headers=USER)
        assert response.status_code == 400
