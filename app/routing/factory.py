"""
Factory for wiring routing components from settings.
"""

from __future__ import annotations

from typing import Iterable, Optional

from loguru import logger

from app.routing.intent.cascade import IntentCascade
from app.routing.orchestration.fallback import FallbackManager
from app.routing.orchestration.task_orchestrator import TaskOrchestrator
from app.routing.orchestration.tools import AutoTaskExecutor, RagQueryTool, ToolRegistry
from app.routing.planning.cache import TaskPlanCache
from app.routing.planning.planner import TaskPlanner
from app.routing.processors.variants import DEFAULT_PROCESSORS
from app.routing.protocols import (
    AnswerEvaluator,
    DecisionPublisher,
    Embedder,
    Generator,
    IntentRuleRepository,
    QueryRepository,
)
from app.routing.repositories.memory import InMemoryIntentRuleRepository, InMemoryQueryRepository
from app.routing.repositories.postgres import PostgresIntentRuleRepository, PostgresQueryRepository
from app.routing.retrieval.aggregator import RetrievalAggregator
from app.routing.retrieval.qdrant_store import QdrantChunkStore, QdrantVectorSearch
from app.routing.router import QueryRouter
from app.routing.services.clarification import ClarificationService
from app.routing.services.embedding import EmbeddingService
from app.routing.services.evaluation import HeuristicEvaluator, OpenAIJudge
from app.routing.services.generation import OpenAIGenerator
from app.routing.services.intent_classifier import OpenAIIntentClassifier, OpenAITaskPlanner
from app.routing.services.orchestration import RagOrchestrationService
from app.routing.services.query_rewriter import QueryRewriteService
from app.routing.tracking import LogDecisionPublisher, MetricsDecisionPublisher, RoutingDecisionTracker
from ragroute_core.config import settings
from ragroute_core.infrastructure.telemetry import TelemetryService
from ragroute_core.logging import setup_logging
from ragroute_core.runtime import CapabilityRunner


def configure_runtime() -> None:
    """Install process-wide logging and telemetry. Call once at startup."""
    setup_logging()
    TelemetryService().setup()


def get_query_repository(backend: str | None = None) -> QueryRepository:
    """
    Get a QueryRepository for the specified backend.

    Args:
        backend: "postgres" or "memory" (defaults to REPOSITORY_BACKEND)
    """
    backend = (backend or settings.REPOSITORY_BACKEND).lower()
    if backend == "memory":
        return InMemoryQueryRepository()
    return PostgresQueryRepository(settings.POSTGRES_DSN)


def get_rule_repository(backend: str | None = None) -> IntentRuleRepository:
    backend = (backend or settings.REPOSITORY_BACKEND).lower()
    if backend == "memory":
        return InMemoryIntentRuleRepository()
    return PostgresIntentRuleRepository(settings.POSTGRES_DSN)


def get_evaluator(backend: str | None = None) -> Optional[AnswerEvaluator]:
    """
    Get the answer evaluator.

    Args:
        backend: "openai", "heuristic" or "none" (defaults to EVALUATOR_BACKEND)
    """
    backend = (backend or settings.EVALUATOR_BACKEND).lower()
    if backend == "none":
        return None
    if backend == "heuristic":
        return HeuristicEvaluator()
    return OpenAIJudge()


def get_tracker(publishers: Iterable[DecisionPublisher] | None = None) -> RoutingDecisionTracker:
    if publishers is None:
        publishers = [LogDecisionPublisher()]
        if settings.ROUTING_METRICS_ENABLED:
            publishers.append(MetricsDecisionPublisher())
    return RoutingDecisionTracker(publishers)


def build_orchestration_service(
    runner: CapabilityRunner | None = None,
    embedder: Embedder | None = None,
    generator: Generator | None = None,
    evaluator: AnswerEvaluator | None = None,
    query_repository: QueryRepository | None = None,
    rule_repository: IntentRuleRepository | None = None,
    tracker: RoutingDecisionTracker | None = None,
) -> RagOrchestrationService:
    """
    Create a fully configured RagOrchestrationService.

    Any component passed in replaces the one built from settings, which
    keeps tests and alternate deployments on the same wiring.
    """
    runner = runner or CapabilityRunner()
    embedder = embedder or EmbeddingService()
    generator = generator or OpenAIGenerator()
    evaluator = evaluator if evaluator is not None else get_evaluator()
    query_repository = query_repository or get_query_repository()
    rule_repository = rule_repository or get_rule_repository()
    tracker = tracker or get_tracker()

    cascade = IntentCascade(rule_repository, embedder, OpenAIIntentClassifier(), runner, tracker=tracker)
    task_planner = TaskPlanner(OpenAITaskPlanner(), embedder, TaskPlanCache(), runner)

    aggregator = RetrievalAggregator(embedder, QdrantVectorSearch(), QdrantChunkStore(), runner)
    router = QueryRouter(
        processor_cls(aggregator, generator, evaluator, query_repository, runner)
        for processor_cls in DEFAULT_PROCESSORS
    )

    registry = ToolRegistry([RagQueryTool(router)])
    fallback_manager = FallbackManager(registry)
    task_orchestrator = TaskOrchestrator(registry, fallback_manager, AutoTaskExecutor(runner))

    logger.info(
        f"Routing pipeline wired: repository={type(query_repository).__name__}, "
        f"evaluator={type(evaluator).__name__ if evaluator else None}, "
        f"processors={len(router.registered_types)}, tools={registry.names()}"
    )
    return RagOrchestrationService(
        cascade=cascade,
        task_planner=task_planner,
        router=router,
        repository=query_repository,
        runner=runner,
        rewriter=QueryRewriteService(runner, mock=settings.QUERY_REWRITE_MOCK),
        clarification=ClarificationService(),
        task_orchestrator=task_orchestrator,
        fallback_manager=fallback_manager,
    )
