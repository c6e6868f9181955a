# API routes
from backoffice.api.routes import admin
from backoffice.api.routes import billing_events
from backoffice.api.routes import subscriptions

__all__ = ["admin", "billing_events", "subscriptions"]
