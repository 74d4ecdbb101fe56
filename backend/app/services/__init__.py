# Business Services
from app.services.availability_service import AvailabilityService
from app.services.pricing_service import PricingService, JurisdictionResolver
from app.services.promotion_service import PromotionService
from app.services.quote_service import QuoteService
from app.services.reservation_service import ReservationService
from app.services.ledger_service import LedgerService
from app.services.audit_service import AuditService
from app.services.location_service import LocationService

__all__ = [
    'AvailabilityService', 'PricingService', 'JurisdictionResolver',
    'PromotionService', 'QuoteService', 'ReservationService',
    'LedgerService', 'AuditService', 'LocationService'
]
