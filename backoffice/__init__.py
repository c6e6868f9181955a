"""
Restaurant back-office engine.

Feature entitlements, plan tiers and subscription lifecycle for the
multi-tenant restaurant platform.
"""

__version__ = "0.1.0"
