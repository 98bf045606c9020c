"""Dependency injection container for the workflow engine.

No module-level instance: the bootstrap builds one container per process and
tests build their own, overriding stores and collaborators as needed.
"""

from dependency_injector import containers, providers
from redis.asyncio import Redis

from core.config import Settings
from services.clients import HttpContentGenerator, HttpEmailAnalyzer, HttpEmailSender
from services.execution.delay import create_delay_scheduler
from services.execution.redis_store import RedisActionLog, RedisExecutionStateStore, RedisGraphStore
from services.execution.store import (
    InMemoryActionLog,
    InMemoryEmailStore,
    InMemoryExecutionStateStore,
    InMemoryGraphStore,
    InMemoryLeadStore,
    InMemoryRecordStore,
)
from services.workflow import WorkflowService


def _storage_backend(settings: Settings) -> str:
    return settings.storage_backend


class Container(containers.DeclarativeContainer):
    """Engine dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    storage_backend = providers.Callable(_storage_backend, settings)

    # Redis (only created when the redis backend is selected)
    redis_client = providers.Singleton(
        Redis.from_url,
        settings.provided.redis_url,
        decode_responses=True,
    )

    # Engine-owned stores
    graph_store = providers.Selector(
        storage_backend,
        memory=providers.Singleton(InMemoryGraphStore),
        redis=providers.Singleton(RedisGraphStore, redis=redis_client),
    )

    state_store = providers.Selector(
        storage_backend,
        memory=providers.Singleton(InMemoryExecutionStateStore),
        redis=providers.Singleton(
            RedisExecutionStateStore,
            redis=redis_client,
            max_retries=settings.provided.state_update_retries,
        ),
    )

    action_log = providers.Selector(
        storage_backend,
        memory=providers.Singleton(InMemoryActionLog),
        redis=providers.Singleton(RedisActionLog, redis=redis_client),
    )

    # CRM stores (owned by the host application; override to plug in real ones)
    lead_store = providers.Singleton(InMemoryLeadStore)
    email_store = providers.Singleton(InMemoryEmailStore)
    record_store = providers.Singleton(InMemoryRecordStore)

    # Collaborators
    email_sender = providers.Singleton(
        HttpEmailSender,
        base_url=settings.provided.email_service_url,
        timeout=settings.provided.collaborator_timeout,
    )

    content_generator = providers.Singleton(
        HttpContentGenerator,
        base_url=settings.provided.ai_service_url,
        timeout=settings.provided.collaborator_timeout,
        default_model=settings.provided.default_ai_model,
    )

    email_analyzer = providers.Singleton(
        HttpEmailAnalyzer,
        base_url=settings.provided.ai_service_url,
        timeout=settings.provided.collaborator_timeout,
    )

    # Delay scheduling
    delay_scheduler = providers.Singleton(
        create_delay_scheduler,
        settings=settings,
    )

    # Services
    workflow_service = providers.Singleton(
        WorkflowService,
        graph_store=graph_store,
        state_store=state_store,
        action_log=action_log,
        lead_store=lead_store,
        email_store=email_store,
        record_store=record_store,
        email_sender=email_sender,
        content_generator=content_generator,
        email_analyzer=email_analyzer,
        delay_scheduler=delay_scheduler,
        settings=settings,
    )
