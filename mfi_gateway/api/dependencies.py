"""Dependency injection for FastAPI endpoints"""

from fastapi import Request

from mfi_gateway.infrastructure.clients.gateway import GatewayClient
from mfi_gateway.infrastructure.database.repositories import NotificationRepository, TransactionLedger
from mfi_gateway.services.scheduler import TaskScheduler
from mfi_gateway.services.webhooks import WebhookProcessor


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_gateway_client(request: Request) -> GatewayClient:
    return request.app.state.gateway_client


def get_ledger(request: Request) -> TransactionLedger:
    return request.app.state.ledger


def get_webhook_processor(request: Request) -> WebhookProcessor:
    return request.app.state.webhook_processor


def get_notification_repository(request: Request) -> NotificationRepository:
    return request.app.state.notification_repository


def get_scheduler(request: Request) -> TaskScheduler:
    return request.app.state.scheduler
