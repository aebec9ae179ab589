"""API routes package."""

from . import revenue, payouts, fees, system, webhooks

__all__ = ["revenue", "payouts", "fees", "system", "webhooks"]
