"""
RiskScope — Pipeline Controller

One request, one attempt:

    Init → Triaging → Collecting → Validating → Scoring → Narrating → Done
                                                             Failed ←┘ (from any state)

Failure policy:
    ConfigurationError       → Failed, re-raised (the pipeline never starts)
    ConnectorQuotaExhausted  → Failed, re-raised (the only abort-everything case)
    collection crash         → continue with no evidence, confidence capped at 30
    anything else            → minimal fallback AnalysisResult (evidenceQuality=minimal)
"""
import dataclasses
import time
from typing import Optional, List

import structlog

from riskscope.compute.orchestrator import CollectionReport, EvidenceCollector, OrchestratorContext
from riskscope.config import Settings, get_settings
from riskscope.errors import ConfigurationError, ConnectorQuotaExhausted, UnknownError
from riskscope.trust.engine import EvidenceSignals, compute_analysis, score_summary
from riskscope.trust.models import (
    AnalysisResult, EvidenceQuality, PipelineState, RecommendedAction, StrategyName,
    STRATEGIES, SubjectProfile, TriageResult, risk_level_for,
)
from riskscope.trust.narrative import NarrativeSynthesizer
from riskscope.trust.search_terms import generate_search_terms
from riskscope.trust.triage import TriageClassifier, keyword_analysis, keyword_triage
from riskscope.trust.validator import validate_evidence

logger = structlog.get_logger()

TRANSITIONS = {
    PipelineState.INIT: {PipelineState.TRIAGING},
    PipelineState.TRIAGING: {PipelineState.COLLECTING},
    PipelineState.COLLECTING: {PipelineState.VALIDATING},
    PipelineState.VALIDATING: {PipelineState.SCORING},
    PipelineState.SCORING: {PipelineState.NARRATING, PipelineState.DONE},
    PipelineState.NARRATING: {PipelineState.DONE},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}

FAILED_COLLECTION_CONFIDENCE = 30
MINIMAL_CONFIDENCE = 25


class AnalysisPipeline:
    """
    Usage:
        pipeline = AnalysisPipeline(settings)
        result = await pipeline.run(profile)

    One instance per request. Pass a pre-built OrchestratorContext to swap
    in other connectors or reasoning clients.
    """

    def __init__(self, settings: Optional[Settings] = None, context: Optional[OrchestratorContext] = None):
        self.settings = settings or get_settings()
        self.ctx = context or OrchestratorContext(self.settings)
        self.state = PipelineState.INIT
        self.history: List[str] = [PipelineState.INIT.value]
        self.log = self.ctx.log

    def _transition(self, new_state: PipelineState) -> None:
        if new_state != PipelineState.FAILED and new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal pipeline transition {self.state.value} → {new_state.value}")
        self.state = new_state
        self.history.append(new_state.value)
        self.log.debug("pipeline_state", state=new_state.value)

    async def run(self, profile: SubjectProfile, *, enhanced: bool = False, narrate: bool = True) -> AnalysisResult:
        start = time.monotonic()
        try:
            async with self.ctx:
                return await self._run(profile, enhanced, narrate, start)
        except (ConfigurationError, ConnectorQuotaExhausted) as e:
            self._transition(PipelineState.FAILED)
            self.log.error("pipeline_failed", subject=profile.name[:50], state_history=self.history,
                           error=str(e), type=type(e).__name__)
            raise

    async def _run(self, profile: SubjectProfile, enhanced: bool, narrate: bool, start: float) -> AnalysisResult:
        triage: Optional[TriageResult] = None
        try:
            self._transition(PipelineState.TRIAGING)
            triage = await TriageClassifier(self.ctx.reasoning, self.ctx.triage_cache).classify(profile)
            if enhanced and triage.strategy != StrategyName.DEEP:
                triage = dataclasses.replace(triage, strategy=StrategyName.DEEP)

            self._transition(PipelineState.COLLECTING)
            report = await self._collect(profile, triage)

            self._transition(PipelineState.VALIDATING)
            validation = validate_evidence(report.raw_records, report.sources_used)

            self._transition(PipelineState.SCORING)
            signals = EvidenceSignals(
                subject=profile.name,
                profile_text=profile.text,
                red_flags=list(triage.red_flags),
                concerns=list(triage.concerns),
                fraud_hits=report.fraud_hits,
                legitimacy_hits=report.legitimacy_hits,
                regulator_warning_found=report.regulator_warning_found,
                regulatory_texts=list(report.regulatory_texts),
                atoms=validation.atoms,
                domains=list(report.domains),
                sources_used=report.sources_used,
                sources_scraped=report.sources_scraped,
                fallback_checks=len(report.fallback_checks),
                conclusive=report.conclusive,
                collection_failed=report.failed,
            )
            result = compute_analysis(signals)
            result.triage = triage
            result.data_quality_warnings = validation.warnings + self._collection_warnings(report)
            result.validation_issues = [i.to_dict() for i in validation.issues]
            result.processing["collection"] = report.to_dict()
            result.processing["enhanced"] = enhanced

            if narrate:
                self._transition(PipelineState.NARRATING)
                result.narrative = await NarrativeSynthesizer(self.ctx.reasoning).synthesize(profile, result)

            self._transition(PipelineState.DONE)
        except (ConfigurationError, ConnectorQuotaExhausted):
            raise
        except Exception as e:
            error = UnknownError(self.state.value, e)
            self.log.error("pipeline_degraded", subject=profile.name[:50], stage=self.state.value,
                           error=str(e), type=type(e).__name__)
            result = self._minimal_result(profile, triage, error)
            self.state = PipelineState.DONE
            self.history.append(PipelineState.DONE.value)

        result.processing["stateHistory"] = list(self.history)
        result.processing["requestId"] = self.ctx.request_id
        result.processing["totalMs"] = round((time.monotonic() - start) * 1000, 2)
        self.log.info("analysis_complete", subject=profile.name[:50], **score_summary(result))
        return result

    async def _collect(self, profile: SubjectProfile, triage: TriageResult) -> CollectionReport:
        strategy = triage.strategy_config
        queries = generate_search_terms(profile, triage)
        try:
            return await EvidenceCollector(self.ctx).collect(profile, strategy, queries)
        except ConnectorQuotaExhausted:
            raise
        except Exception as e:
            # Research fallback: score on the profile alone
            self.log.error("collection_failed", subject=profile.name[:50], error=str(e), type=type(e).__name__)
            return CollectionReport(strategy=strategy, queries=queries, failed=True,
                                    failure=f"{type(e).__name__}: {e}")

    @staticmethod
    def _collection_warnings(report: CollectionReport) -> List[str]:
        warnings = []
        if report.failed:
            warnings.append(f"evidence collection failed ({report.failure}); score is based on the profile only")
        if report.unavailable:
            warnings.append(f"{len(report.unavailable)} evidence source query(ies) unavailable")
        if report.timed_out:
            warnings.append(f"collection deadline of {report.strategy.timeout_ms}ms reached; evidence is partial")
        return warnings

    def _minimal_result(self, profile: SubjectProfile, triage: Optional[TriageResult],
                        error: UnknownError) -> AnalysisResult:
        if triage is None:
            triage = keyword_triage(keyword_analysis(profile))
        score = int(round(triage.initial_score))
        return AnalysisResult(
            subject=profile.name,
            fraud_score=score,
            risk_level=risk_level_for(score),
            confidence=MINIMAL_CONFIDENCE,
            recommended_action=RecommendedAction.MANUAL_REVIEW,
            evidence_quality=EvidenceQuality.MINIMAL,
            triage=triage,
            data_quality_warnings=[f"analysis degraded at stage '{error.stage}': {type(error.cause).__name__}"],
            processing={"strategy": STRATEGIES[triage.strategy].to_dict(), "error": str(error)},
            degraded=True,
        )


async def analyze_subject(profile: SubjectProfile, *, enhanced: bool = False,
                          settings: Optional[Settings] = None,
                          context: Optional[OrchestratorContext] = None) -> AnalysisResult:
    """Run one full analysis. Raises ConfigurationError / ConnectorQuotaExhausted."""
    pipeline = AnalysisPipeline(settings, context)
    return await pipeline.run(profile, enhanced=enhanced, narrate=True)
