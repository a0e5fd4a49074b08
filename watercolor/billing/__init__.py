"""Billing profile collaborator."""

from .profiles import BillingProfile, BillingStore

__all__ = ["BillingProfile", "BillingStore"]
