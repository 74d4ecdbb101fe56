# Ontology Models
from app.models.ontology import (
    Location, PricingRule, Promotion, Reservation,
    Dispute, RefundRequest, AuditLog
)

__all__ = [
    'Location', 'PricingRule', 'Promotion', 'Reservation',
    'Dispute', 'RefundRequest', 'AuditLog'
]
