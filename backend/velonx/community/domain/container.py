"""Process-wide service wiring for the community and security services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import asyncpg

from velonx.community.domain.moderation_service import ModerationService
from velonx.community.domain.notifications_service import NotificationService
from velonx.community.domain.preferences import NotificationPreferenceGate
from velonx.community.domain.repositories import (
    InMemoryCommunityDirectory,
    InMemoryModerationRepository,
    InMemoryNotificationRepository,
    MembershipDirectory,
    ModerationRepository,
    NotificationRepository,
    UserRepository,
)
from velonx.security.alerts import AlertService, build_alert_service
from velonx.security.audit import AuditLogger, AuditRepository, InMemoryAuditRepository
from velonx.security.error_logger import ErrorLogger
from velonx.settings import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ServiceContainer:
    users: UserRepository
    directory: MembershipDirectory
    moderation_repository: ModerationRepository
    notification_repository: NotificationRepository
    audit_repository: AuditRepository
    preferences: NotificationPreferenceGate
    notifications: NotificationService
    moderation: ModerationService
    audit: AuditLogger
    alerts: AlertService
    errors: ErrorLogger


def build_container(
    *,
    users: UserRepository,
    directory: MembershipDirectory,
    moderation_repository: ModerationRepository,
    notification_repository: NotificationRepository,
    audit_repository: AuditRepository,
    alerts: Optional[AlertService] = None,
    fail_open: Optional[bool] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> ServiceContainer:
    gate = NotificationPreferenceGate(
        users,
        fail_open=settings.notification_preference_fail_open if fail_open is None else fail_open,
    )
    notifications = NotificationService(
        repository=notification_repository,
        users=users,
        gate=gate,
        clock=clock,
    )
    moderation = ModerationService(
        repository=moderation_repository,
        users=users,
        directory=directory,
        notifications=notifications,
        clock=clock,
    )
    audit = AuditLogger(audit_repository, clock=clock)
    alerts = alerts or build_alert_service(settings)
    errors = ErrorLogger(alerts=alerts, audit=audit, clock=clock)
    return ServiceContainer(
        users=users,
        directory=directory,
        moderation_repository=moderation_repository,
        notification_repository=notification_repository,
        audit_repository=audit_repository,
        preferences=gate,
        notifications=notifications,
        moderation=moderation,
        audit=audit,
        alerts=alerts,
        errors=errors,
    )


def build_memory_container(
    *,
    directory: Optional[InMemoryCommunityDirectory] = None,
    alerts: Optional[AlertService] = None,
    fail_open: Optional[bool] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> ServiceContainer:
    directory = directory or InMemoryCommunityDirectory()
    return build_container(
        users=directory,
        directory=directory,
        moderation_repository=InMemoryModerationRepository(),
        notification_repository=InMemoryNotificationRepository(),
        audit_repository=InMemoryAuditRepository(),
        alerts=alerts,
        fail_open=fail_open,
        clock=clock,
    )


_container: Optional[ServiceContainer] = None


def configure(container: ServiceContainer) -> ServiceContainer:
    global _container
    _container = container
    return container


def configure_postgres(pool: asyncpg.Pool) -> ServiceContainer:
    from velonx.community.infra.postgres_repo import (
        PostgresCommunityDirectory,
        PostgresModerationRepository,
        PostgresNotificationRepository,
    )
    from velonx.security.audit_repo import PostgresAuditRepository

    directory = PostgresCommunityDirectory(pool)
    return configure(
        build_container(
            users=directory,
            directory=directory,
            moderation_repository=PostgresModerationRepository(pool),
            notification_repository=PostgresNotificationRepository(pool),
            audit_repository=PostgresAuditRepository(pool),
        )
    )


def reset() -> None:
    global _container
    _container = None


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = build_memory_container()
    return _container


def get_moderation_service() -> ModerationService:
    return get_container().moderation


def get_notification_service() -> NotificationService:
    return get_container().notifications


def get_preference_gate() -> NotificationPreferenceGate:
    return get_container().preferences


def get_audit_logger() -> AuditLogger:
    return get_container().audit


def get_error_logger() -> ErrorLogger:
    return get_container().errors
