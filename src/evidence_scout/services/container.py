"""Wiring of the process-wide service graph."""

from dataclasses import dataclass

from evidence_scout.config import Settings
from evidence_scout.services.analysis import AnalysisPipeline
from evidence_scout.services.coordinator import QueryCoordinator
from evidence_scout.services.executor import ExecutorConfig, RateLimitedExecutor
from evidence_scout.services.literature import LiteratureGateway
from evidence_scout.services.llm_gateway import LLMGateway
from evidence_scout.services.progress import ProgressBroker
from evidence_scout.services.synthesis import SynthesisEngine


@dataclass
class Services:
    settings: Settings
    executor: RateLimitedExecutor
    llm: LLMGateway
    literature: LiteratureGateway
    pipeline: AnalysisPipeline
    synthesis: SynthesisEngine
    progress: ProgressBroker
    coordinator: QueryCoordinator

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        llm: LLMGateway | None = None,
        literature: LiteratureGateway | None = None,
        executor: RateLimitedExecutor | None = None,
    ) -> "Services":
        executor = executor or RateLimitedExecutor(ExecutorConfig.from_settings(settings))
        llm = llm or LLMGateway.from_settings(settings, executor)
        literature = literature or LiteratureGateway.from_settings(settings)
        pipeline = AnalysisPipeline(llm, executor)
        synthesis = SynthesisEngine(llm)
        progress = ProgressBroker()
        coordinator = QueryCoordinator(llm, literature, pipeline, synthesis, progress)
        return cls(
            settings=settings,
            executor=executor,
            llm=llm,
            literature=literature,
            pipeline=pipeline,
            synthesis=synthesis,
            progress=progress,
            coordinator=coordinator,
        )

    async def close(self) -> None:
        await self.literature.close()
        if self.llm.batch_client is not None:
            await self.llm.batch_client.close()
        await self.executor.close()
