"""Shared request dependencies"""
from dataclasses import dataclass
from typing import Dict

from fastapi import Header, HTTPException

from tasksync.services.notifier import BufferedNotifier, notifier
from tasksync.services.ticket_services import Platform, TicketService, build_ticket_services


@dataclass(frozen=True)
class CurrentUser:
    user_id: int
    email: str


def get_current_user(
    x_user_id: int = Header(..., description="Authenticated user id set by the gateway"),
    x_user_email: str = Header("", description="Authenticated user email"),
) -> CurrentUser:
    """Caller identity; authentication itself happens upstream."""
    return CurrentUser(user_id=x_user_id, email=x_user_email)


def get_notifier() -> BufferedNotifier:
    return notifier


def get_ticket_services() -> Dict[Platform, TicketService]:
    services = build_ticket_services()
    if services is None:
        raise HTTPException(status_code=503, detail="Remote ticket services are not configured")
    return services
