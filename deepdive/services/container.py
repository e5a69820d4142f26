from __future__ import annotations

from dataclasses import dataclass

from deepdive.agents.orchestrator import ResearchOrchestrator
from deepdive.agents.planner import RoundPlanner
from deepdive.agents.reflector import RoundReflector
from deepdive.agents.router import TierRouter
from deepdive.agents.stopping import StoppingEvaluator
from deepdive.agents.synthesizer import Synthesizer
from deepdive.config import settings
from deepdive.llm_client import TextGenerator, generator as default_generator, get_text_generator
from deepdive.models.research import SourceType
from deepdive.services.cancellation import CancellationRegistry
from deepdive.services.conversation import ConversationService
from deepdive.services.embeddings import EmbeddingService, get_embedding_service
from deepdive.services.fetcher import ParallelFetcher, default_source_clients
from deepdive.services.lifecycle import LifecycleMonitor
from deepdive.services.metadata import MetadataGenerator
from deepdive.services.ranker import RelevanceRanker
from deepdive.services.recall import RecallResponder, RecallSearch
from deepdive.services.session_store import SessionStore, get_session_store
from deepdive.services.streaming import ProgressBus, StreamEmitter
from deepdive.tools.base import SourceClient


@dataclass
class Engine:
    """Every long-lived collaborator the API and CLI need, wired once."""

    store: SessionStore
    registry: CancellationRegistry
    bus: ProgressBus
    emitter: StreamEmitter
    orchestrator: ResearchOrchestrator
    lifecycle: LifecycleMonitor
    recall_search: RecallSearch
    recall: RecallResponder
    conversation: ConversationService

    async def aclose(self) -> None:
        await self.lifecycle.shutdown()
        await self.store.close()


def build_engine(
    *,
    generator: TextGenerator | None = None,
    synthesis_generator: TextGenerator | None = None,
    embedder: EmbeddingService | None = None,
    clients: dict[SourceType, SourceClient] | None = None,
    store: SessionStore | None = None,
) -> Engine:
    generator = generator or default_generator()
    if synthesis_generator is None:
        synthesis_generator = (
            get_text_generator(settings.synthesis_model) if settings.synthesis_model else generator
        )
    store = store or get_session_store()
    registry = CancellationRegistry()
    bus = ProgressBus()

    orchestrator = ResearchOrchestrator(
        fetcher=ParallelFetcher(clients if clients is not None else default_source_clients()),
        ranker=RelevanceRanker(embedder or get_embedding_service()),
        planner=RoundPlanner(),
        reflector=RoundReflector(generator),
        stopping=StoppingEvaluator(),
        synthesizer=Synthesizer(synthesis_generator),
        registry=registry,
        store=store,
    )
    lifecycle = LifecycleMonitor(store, MetadataGenerator(generator), registry)
    recall_search = RecallSearch(store)
    recall = RecallResponder(recall_search, store, generator)
    conversation = ConversationService(
        router=TierRouter(),
        orchestrator=orchestrator,
        lifecycle=lifecycle,
        recall=recall,
        store=store,
        generator=generator,
    )
    return Engine(
        store=store,
        registry=registry,
        bus=bus,
        emitter=StreamEmitter(bus),
        orchestrator=orchestrator,
        lifecycle=lifecycle,
        recall_search=recall_search,
        recall=recall,
        conversation=conversation,
    )
