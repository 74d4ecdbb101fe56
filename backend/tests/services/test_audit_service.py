"""
Tests for app/services/audit_service.py
"""
from datetime import date, datetime
from decimal import Decimal

from app.models.ontology import ReservationStatus
from app.services.audit_service import AuditService, to_json


class TestToJson:

    def test_none(self):
        assert to_json(None) is None

    def test_special_types(self):
        text = to_json({
            "amount": Decimal("10.50"),
            "day": date(2025, 3, 7),
            "at": datetime(2025, 3, 7, 8, 30),
            "status": ReservationStatus.CONFIRMED,
        })
        assert '"amount": "10.50"' in text
        assert '"day": "2025-03-07"' in text
        assert '"status": "confirmed"' in text


class TestRecord:

    def test_record_and_trail(self, db_session):
        svc = AuditService(db_session)
        first = svc.record("dispute.submit", "dispute", 1, "user-1", new_value={"status": "open"})
        svc.record("dispute.start_review", "dispute", 1, "support-1",
                   old_value={"status": "open"}, new_value={"status": "in_progress"})
        svc.record("dispute.submit", "dispute", 2, "user-2")
        db_session.commit()

        assert first.ok is True
        assert first.log_id is not None
        trail = svc.audit_trail("dispute", 1)
        assert [log.action for log in trail] == ["dispute.submit", "dispute.start_review"]
        assert trail[1].old_value == '{"status": "open"}'

    def test_get_logs_filters(self, db_session):
        svc = AuditService(db_session)
        svc.record("refund.request", "refund", 1, "user-1")
        svc.record("refund.approve", "refund", 1, "admin-1")
        svc.record("dispute.submit", "dispute", 1, "user-1")
        db_session.commit()

        assert len(svc.get_logs()) == 3
        assert len(svc.get_logs(entity_type="refund")) == 2
        assert [log.action for log in svc.get_logs(actor_id="admin-1")] == ["refund.approve"]
        assert len(svc.get_logs(limit=1)) == 1
