"""Quotation delivery: idempotent send pipeline and outbound gateways."""

from quotation.delivery.gateway import (
    DeliveryGateway,
    DocumentGenerator,
    HttpDeliveryGateway,
    HttpDocumentGenerator,
)
from quotation.delivery.pipeline import SendPipeline

__all__ = [
    "DeliveryGateway",
    "DocumentGenerator",
    "HttpDeliveryGateway",
    "HttpDocumentGenerator",
    "SendPipeline",
]
