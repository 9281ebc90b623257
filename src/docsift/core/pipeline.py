"""End-to-end enrichment run: parse, enrich, propagate, chunk, publish."""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from .chunking import regenerate_chunks
from .figures import extract_figures
from .config import PipelineConfig
from .llm import ExtractionService
from .logging_config import get_audit_logger
from .metadata import MetadataStrategy, extract_metadata
from .parse import ParseMode, parse_staged_documents
from .propagate import propagate_metadata
from .publish import IndexPublisher, PublishResult
from .signatures import extract_signatures
from .stage import StageResult
from .store import DocumentStore
from .summarize import summarize_documents

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("pipeline")


@dataclass
class PipelineReport:
    """Stage results of one run, in execution order."""
    stages: List[StageResult] = field(default_factory=list)
    publish: Optional[PublishResult] = None
    elapsed_ms: float = 0.0

    def stage(self, name: str) -> Optional[StageResult]:
        for result in self.stages:
            if result.stage == name:
                return result
        return None

    @property
    def failed(self) -> int:
        return sum(result.failed for result in self.stages)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stages": [result.as_dict() for result in self.stages],
            "publish": self.publish.as_dict() if self.publish else None,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


class EnrichmentPipeline:
    """
    Runs the stages in dependency order over one store.

    Each stage selects only the documents lacking its output, so a run can be
    interrupted and repeated at any point. Propagation runs after every
    enrichment stage has written, and chunks are regenerated from the result.
    """

    def __init__(
        self,
        store: DocumentStore,
        service: ExtractionService,
        config: PipelineConfig,
        metadata_strategies: Optional[List[MetadataStrategy]] = None,
    ):
        self.store = store
        self.service = service
        self.config = config
        self.metadata_strategies = metadata_strategies

    def parse(self, ocr_fallback: bool = True) -> StageResult:
        return parse_staged_documents(
            self.store,
            Path(self.config.stage_dir),
            self.config.folder_filter,
            ParseMode(self.config.parse_mode),
            ocr_fallback,
        )

    def metadata(self) -> StageResult:
        return extract_metadata(self.store, self.service, self.config, self.metadata_strategies)

    def summarize(self) -> StageResult:
        return summarize_documents(self.store, self.service, self.config)

    def signatures(self) -> StageResult:
        return extract_signatures(self.store, self.service, self.config)

    def figures(self) -> StageResult:
        return extract_figures(self.store, self.service, self.config)

    def propagate(self) -> StageResult:
        return propagate_metadata(self.store, self.config.folder_filter)

    def chunk(self) -> StageResult:
        return regenerate_chunks(self.store, self.config)

    def run(
        self,
        publisher: Optional[IndexPublisher] = None,
        parse: bool = False,
        force_publish: bool = False,
    ) -> PipelineReport:
        """
        Run every stage once.

        Args:
            publisher: Index publisher; when None the chunk set is left unpublished
            parse: Whether to parse newly staged files first
            force_publish: Publish even if the chunk set is unchanged

        Returns:
            PipelineReport with one StageResult per stage
        """
        start_time = time.time()
        report = PipelineReport()

        if parse:
            report.stages.append(self.parse())

        report.stages.append(self.metadata())
        report.stages.append(self.summarize())
        report.stages.append(self.signatures())
        report.stages.append(self.figures())
        report.stages.append(self.propagate())
        report.stages.append(self.chunk())

        if publisher is not None:
            report.publish = publisher.publish(self.store.chunks(), force=force_publish)

        report.elapsed_ms = (time.time() - start_time) * 1000
        audit_logger.info(
            "pipeline_completed",
            stages={result.stage: result.as_dict() for result in report.stages},
            published=bool(report.publish and report.publish.published),
            failed=report.failed,
            execution_time_ms=report.elapsed_ms,
            event_type="pipeline_run"
        )
        logger.info(f"Pipeline finished in {report.elapsed_ms:.0f}ms with {report.failed} failed documents")
        return report
