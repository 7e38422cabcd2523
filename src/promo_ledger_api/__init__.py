"""Promo ledger API: visit approvals, loyalty points and reward redemptions."""

from . import models  # noqa: F401
