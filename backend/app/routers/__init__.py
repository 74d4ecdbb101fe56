# API Routers
from app.routers import locations, prices, promotions, quotes, reservations, disputes, refunds, audit_logs

__all__ = ['locations', 'prices', 'promotions', 'quotes', 'reservations', 'disputes', 'refunds', 'audit_logs']
