"""
Tests for app/services/reservation_service.py
Covers: commit (capacity, pricing snapshot, promotions, idempotency, stale quotes,
        store failures), cancel, confirm, complete, list_for_requester
"""
import json
import logging
import pytest
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from conftest import make_location, make_promotion, make_rule
from app.config import settings
from app.models.ontology import AuditLog, LocationStatus, Promotion, Reservation, ReservationStatus
from app.services.availability_service import AvailabilityService
from app.services.errors import (
    InvalidTransitionError, NotFoundError, PermissionDeniedError, PromotionError,
    PromotionRejection, SoldOutError, StoreUnavailableError, ValidationFailedError
)
from app.services.pricing_service import PricingService
from app.services.reservation_service import ReservationService
from core.notification import INotificationChannel, NotificationDispatcher

START = datetime(2025, 3, 7)
END = datetime(2025, 3, 9)


class _RecordingChannel(INotificationChannel):
    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)
        return True

    def get_channel_type(self):
        return "recording"


@pytest.fixture
def channel():
    return _RecordingChannel()


@pytest.fixture
def service(db_session, tax_free, channel):
    return ReservationService(
        db_session,
        pricing=PricingService(db_session, jurisdictions=tax_free),
        notifier=NotificationDispatcher([channel]),
    )


class TestCommit:

    def test_commit_creates_confirmed_reservation(self, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        assert r.id is not None
        assert r.status == ReservationStatus.CONFIRMED
        assert r.confirmation_code.startswith("PK")
        assert r.subtotal == Decimal("50.00")
        assert r.total_price == Decimal("50.00")
        assert r.promotion_id is None

    def test_price_snapshot_records_rules(self, db_session, service, sample_location):
        rule = make_rule(db_session, sample_location, weekdays="4,5", value=Decimal("40"))
        r = service.commit(sample_location.id, START, END, "user-1")
        assert r.subtotal == Decimal("80.00")
        assert json.loads(r.applied_rule_ids) == [rule.id]

    def test_commit_consumes_capacity(self, db_session, service, single_spot_location):
        service.commit(single_spot_location.id, START, END, "user-1")
        assert AvailabilityService(db_session).available_spots(single_spot_location.id, START, END) == 0

    def test_sold_out(self, db_session, service, single_spot_location):
        service.commit(single_spot_location.id, START, END, "user-1")
        with pytest.raises(SoldOutError) as exc:
            service.commit(single_spot_location.id, datetime(2025, 3, 8), datetime(2025, 3, 10), "user-2")
        assert exc.value.code == "SOLD_OUT"
        assert db_session.query(Reservation).count() == 1

    def test_adjacent_interval_not_sold_out(self, service, single_spot_location):
        service.commit(single_spot_location.id, START, END, "user-1")
        r = service.commit(single_spot_location.id, END, datetime(2025, 3, 10), "user-2")
        assert r.id is not None

    def test_sold_out_does_not_redeem_promotion(self, db_session, service, single_spot_location):
        promo = make_promotion(db_session, usage_limit=5)
        service.commit(single_spot_location.id, START, END, "user-1")
        with pytest.raises(SoldOutError):
            service.commit(single_spot_location.id, START, END, "user-2", promo_code="SAVE20")
        db_session.refresh(promo)
        assert promo.used_count == 0

    def test_commit_with_promotion(self, db_session, service, sample_location):
        promo = make_promotion(db_session, code="SAVE20", value=Decimal("20"), usage_limit=10)
        r = service.commit(sample_location.id, START, END, "user-1", promo_code="save20")
        assert r.discount == Decimal("10.00")
        assert r.total_price == Decimal("40.00")
        assert r.promotion_id == promo.id
        db_session.refresh(promo)
        assert promo.used_count == 1

    def test_invalid_promotion_rejects_commit(self, db_session, service, sample_location):
        with pytest.raises(PromotionError) as exc:
            service.commit(sample_location.id, START, END, "user-1", promo_code="NOPE")
        assert exc.value.reason == PromotionRejection.INVALID_CODE
        assert db_session.query(Reservation).count() == 0

    def test_exhausted_promotion_rolls_back(self, db_session, service, sample_location):
        promo = make_promotion(db_session, usage_limit=1)
        service.commit(sample_location.id, START, END, "user-1", promo_code="SAVE20")
        with pytest.raises(PromotionError) as exc:
            service.commit(sample_location.id, START, END, "user-2", promo_code="SAVE20")
        assert exc.value.reason == PromotionRejection.USAGE_EXHAUSTED
        db_session.refresh(promo)
        assert promo.used_count == 1
        assert db_session.query(Reservation).count() == 1

    def test_invalid_interval_rejected(self, db_session, service, sample_location):
        with pytest.raises(ValidationFailedError):
            service.commit(sample_location.id, END, START, "user-1")
        assert db_session.query(Reservation).count() == 0

    def test_inactive_location_rejected(self, db_session, service):
        location = make_location(db_session, status=LocationStatus.INACTIVE)
        with pytest.raises(ValidationFailedError):
            service.commit(location.id, START, END, "user-1")

    def test_unknown_location(self, service):
        with pytest.raises(NotFoundError):
            service.commit(999, START, END, "user-1")

    def test_missing_requester(self, service, sample_location):
        with pytest.raises(ValidationFailedError):
            service.commit(sample_location.id, START, END, "")

    def test_initial_status_from_settings(self, service, sample_location, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_INITIAL_STATUS", "pending")
        r = service.commit(sample_location.id, START, END, "user-1")
        assert r.status == ReservationStatus.PENDING

    def test_lock_counter_bumped(self, db_session, service, sample_location):
        service.commit(sample_location.id, START, END, "user-1")
        db_session.refresh(sample_location)
        assert sample_location.capacity_version == 1


class TestIdempotency:

    def test_same_key_returns_existing(self, db_session, service, sample_location):
        first = service.commit(sample_location.id, START, END, "user-1", idempotency_key="k-1")
        second = service.commit(sample_location.id, START, END, "user-1", idempotency_key="k-1")
        assert first.id == second.id
        assert db_session.query(Reservation).count() == 1

    def test_replay_does_not_redeem_again(self, db_session, service, sample_location):
        promo = make_promotion(db_session, usage_limit=5)
        service.commit(sample_location.id, START, END, "user-1", promo_code="SAVE20", idempotency_key="k-1")
        service.commit(sample_location.id, START, END, "user-1", promo_code="SAVE20", idempotency_key="k-1")
        db_session.refresh(promo)
        assert promo.used_count == 1

    def test_key_scoped_per_requester(self, db_session, service, sample_location):
        a = service.commit(sample_location.id, START, END, "user-1", idempotency_key="k-1")
        b = service.commit(sample_location.id, START, END, "user-2", idempotency_key="k-1")
        assert a.id != b.id


class TestStaleQuote:

    def test_stale_displayed_total_logged_and_ignored(self, service, sample_location, caplog):
        with caplog.at_level(logging.WARNING, logger="app.services.reservation_service"):
            r = service.commit(sample_location.id, START, END, "user-1", displayed_total=Decimal("45.00"))
        assert r.total_price == Decimal("50.00")
        assert "Stale quote" in caplog.text

    def test_matching_total_not_logged(self, service, sample_location, caplog):
        with caplog.at_level(logging.WARNING, logger="app.services.reservation_service"):
            service.commit(sample_location.id, START, END, "user-1", displayed_total=Decimal("50.00"))
        assert "Stale quote" not in caplog.text


class TestStoreFailure:

    def test_store_error_is_retryable(self, db_session, service, sample_location, monkeypatch):
        promo = make_promotion(db_session, usage_limit=5)

        def boom():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "commit", boom)
        with pytest.raises(StoreUnavailableError) as exc:
            service.commit(sample_location.id, START, END, "user-1", promo_code="SAVE20")
        assert exc.value.retryable is True
        assert "locked" not in exc.value.message
        assert exc.value.to_dict()["retryable"] is True

        monkeypatch.undo()
        db_session.refresh(promo)
        assert promo.used_count == 0
        assert db_session.query(Reservation).count() == 0


class TestAfterCommit:

    def test_audit_written(self, db_session, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        logs = db_session.query(AuditLog).filter(AuditLog.entity_type == "reservation").all()
        assert [log.action for log in logs] == ["reservation.create"]
        assert logs[0].entity_id == r.id

    def test_notification_sent(self, service, sample_location, channel):
        service.commit(sample_location.id, START, END, "user-1")
        assert len(channel.sent) == 1
        assert channel.sent[0].recipient == "user-1"
        assert channel.sent[0].kind == "reservation.confirmed"

    def test_notification_failure_does_not_fail_commit(self, db_session, tax_free, sample_location):
        broken = MagicMock(spec=INotificationChannel)
        broken.get_channel_type.return_value = "broken"
        broken.send.side_effect = RuntimeError("smtp down")
        svc = ReservationService(db_session, pricing=PricingService(db_session, jurisdictions=tax_free),
                                 notifier=NotificationDispatcher([broken]))
        r = svc.commit(sample_location.id, START, END, "user-1")
        assert r.id is not None


class TestCancelAndComplete:

    def test_cancel_releases_capacity(self, db_session, service, single_spot_location):
        r = service.commit(single_spot_location.id, START, END, "user-1")
        service.cancel(r.id, "user-1", "行程变更")
        assert r.status == ReservationStatus.CANCELLED
        assert r.cancel_reason == "行程变更"
        assert AvailabilityService(db_session).available_spots(single_spot_location.id, START, END) == 1
        again = service.commit(single_spot_location.id, START, END, "user-2")
        assert again.id != r.id

    def test_cancel_takes_capacity_lock(self, db_session, service, sample_location):
        """提交与取消都递增 capacity_version"""
        r = service.commit(sample_location.id, START, END, "user-1")
        db_session.refresh(sample_location)
        assert sample_location.capacity_version == 1

        service.cancel(r.id, "user-1", "行程变更")
        db_session.refresh(sample_location)
        assert sample_location.capacity_version == 2

    def test_failed_cancel_rolls_back_lock(self, db_session, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        service.complete(r.id, "support-1")
        with pytest.raises(InvalidTransitionError):
            service.cancel(r.id, "user-1", "太晚了")
        db_session.refresh(sample_location)
        assert sample_location.capacity_version == 1

    def test_cancel_twice_rejected(self, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        service.cancel(r.id, "user-1", "行程变更")
        with pytest.raises(InvalidTransitionError):
            service.cancel(r.id, "user-1", "再次取消")

    def test_cancel_other_users_reservation(self, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        with pytest.raises(PermissionDeniedError):
            service.cancel(r.id, "user-2", "不是我的")

    def test_staff_can_cancel(self, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        service.cancel(r.id, "support-1", "客服取消", is_staff=True)
        assert r.status == ReservationStatus.CANCELLED

    def test_cancel_missing(self, service):
        with pytest.raises(NotFoundError):
            service.cancel(999, "user-1", "x")

    def test_cancel_audited(self, db_session, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        service.cancel(r.id, "user-1", "行程变更")
        actions = [log.action for log in service.audit.audit_trail("reservation", r.id)]
        assert actions == ["reservation.create", "reservation.cancel"]

    def test_complete(self, service, sample_location):
        r = service.commit(sample_location.id, START, END, "user-1")
        service.complete(r.id, "support-1")
        assert r.status == ReservationStatus.COMPLETED
        with pytest.raises(InvalidTransitionError):
            service.cancel(r.id, "user-1", "太晚了")

    def test_confirm_pending(self, service, sample_location, monkeypatch):
        monkeypatch.setattr(settings, "RESERVATION_INITIAL_STATUS", "pending")
        r = service.commit(sample_location.id, START, END, "user-1")
        with pytest.raises(InvalidTransitionError):
            service.complete(r.id, "support-1")
        service.confirm(r.id, "support-1")
        assert r.status == ReservationStatus.CONFIRMED

    def test_list_for_requester(self, service, sample_location):
        service.commit(sample_location.id, START, END, "user-1")
        service.commit(sample_location.id, END, datetime(2025, 3, 10), "user-1")
        service.commit(sample_location.id, START, END, "user-2")
        mine = service.list_for_requester("user-1")
        assert len(mine) == 2
        assert mine[0].check_in > mine[1].check_in
        assert service.list_for_requester("user-1", ReservationStatus.CANCELLED) == []
