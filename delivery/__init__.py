"""Delivery - the per-cycle document delivery loop and its helpers."""

from delivery.orchestrator import DeliveryOrchestrator
from delivery.messages import MessageComposer, format_amount, delivery_status_line
from delivery.missed import MissedDeliveryLog
from delivery.phone import normalize_phone, is_plausible_mobile
from delivery.retention import ArtifactRetention, SweepResult

__all__ = [
    "DeliveryOrchestrator",
    "MessageComposer",
    "format_amount",
    "delivery_status_line",
    "MissedDeliveryLog",
    "normalize_phone",
    "is_plausible_mobile",
    "ArtifactRetention",
    "SweepResult",
]
