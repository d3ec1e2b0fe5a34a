"""Stage controller for the adaptation pipeline.

The controller is the only writer of pipeline state. It runs the automatic
span (analysis, then planning) as a LangGraph workflow that either commits
both results or rewinds to ``IDLE``, and it exposes per-episode script
generation whose failures stay local to the episode.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, Sequence, TypedDict

from langgraph.graph import END, START, StateGraph
from pydantic import ValidationError as PydanticValidationError

from ..config import PipelineConfig
from .capabilities import AnalysisCapability, PlanningCapability, ScriptCapability
from .errors import CapabilityError, ControllerBusyError, SchemaViolation, ValidationError
from .events import EventLog, Messages
from .planning_engine import enforce_unique_episodes
from .result import CapabilityResult, call_capability
from .schema import AnalysisResult, EpisodePlanEntry
from .state import ErrorRecord, PipelineSession, PipelineStage, PipelineState
from .store import ArtifactStore, ScriptArtifact

logger = logging.getLogger(__name__)

__all__ = ["StageController", "AdaptationGraphState"]


class AdaptationGraphState(TypedDict, total=False):
    """State propagated through the analysis/planning graph."""

    text: str
    analysis: AnalysisResult
    raw_plan: list[EpisodePlanEntry]
    plan: tuple[EpisodePlanEntry, ...]


class StageController:
    """Single authority over stage, busy flag, event log and artifacts."""

    def __init__(
        self,
        analysis_engine: AnalysisCapability,
        planning_engine: PlanningCapability,
        script_engine: ScriptCapability,
        *,
        config: Optional[PipelineConfig] = None,
        session: Optional[PipelineSession] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self._analysis_engine = analysis_engine
        self._planning_engine = planning_engine
        self._script_engine = script_engine
        self._session = session or PipelineSession(log=EventLog(max_entries=self.config.max_log_entries))

        self._guard = threading.RLock()
        self._starting = False
        self._batch_active = False
        self._in_flight: set[int] = set()
        self._graph = self._build_graph()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def session(self) -> PipelineSession:
        return self._session

    @property
    def state(self) -> PipelineState:
        return self._session.state

    @property
    def stage(self) -> PipelineStage:
        return self._session.state.stage

    @property
    def busy(self) -> bool:
        return self._session.state.busy

    @property
    def log(self) -> EventLog:
        return self._session.log

    @property
    def artifacts(self) -> ArtifactStore:
        return self._session.artifacts

    @property
    def analysis(self) -> Optional[AnalysisResult]:
        return self._session.analysis

    @property
    def plan(self) -> tuple[EpisodePlanEntry, ...]:
        return self._session.plan

    @property
    def text(self) -> str:
        return self._session.text

    @property
    def last_error(self) -> Optional[ErrorRecord]:
        return self._session.state.last_error

    def pending_episodes(self) -> list[int]:
        return [entry.episode_number for entry in self._session.plan if entry.episode_number not in self._session.artifacts]

    def snapshot(self) -> dict[str, Any]:
        with self._guard:
            return self._session.to_dict()

    # ------------------------------------------------------------------
    # Automatic span: analysis -> planning
    # ------------------------------------------------------------------
    def start(self, text: str) -> CapabilityResult[tuple[EpisodePlanEntry, ...]]:
        """Analyse ``text`` and plan its episodes, all or nothing.

        Raises :class:`ValidationError` for empty text and
        :class:`ControllerBusyError` while another operation is running;
        no capability is contacted in either case. Capability failures do
        not raise: they are logged, recorded as ``last_error`` and returned.
        """

        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Source text is empty; nothing to adapt.")

        self._claim_start()
        try:
            self._enter(PipelineStage.ANALYZING)
            self._log(Messages.QUEUE_INITIALISED)
            try:
                final_state = self._graph.invoke({"text": text})
            except CapabilityError as exc:
                self._abort_run(exc)
                return CapabilityResult.failure(exc)
            self._commit_run(text, final_state["analysis"], final_state["plan"])
            return CapabilityResult.success(self._session.plan)
        finally:
            self._release_start()

    def _build_graph(self):
        graph = StateGraph(AdaptationGraphState)
        graph.add_node("analyze", self._node_analyze)
        graph.add_node("plan_episodes", self._node_plan)
        graph.add_node("validate_plan", self._node_validate_plan)

        graph.add_edge(START, "analyze")
        graph.add_edge("analyze", "plan_episodes")
        graph.add_edge("plan_episodes", "validate_plan")
        graph.add_edge("validate_plan", END)
        return graph.compile()

    def _node_analyze(self, state: AdaptationGraphState) -> AdaptationGraphState:
        self._log(Messages.SENDING_TO_ANALYSIS)
        raw = call_capability("analysis", self._analysis_engine.analyze, state["text"]).unwrap()
        analysis = _coerce_analysis(raw)
        self._log(Messages.ANALYSIS_DONE.format(genre=analysis.genre.value))
        self._log(Messages.THEMES_EXTRACTED.format(themes=", ".join(analysis.themes)))

        self._enter(PipelineStage.PLANNING)
        self._log(Messages.BUILDING_STRUCTURE)
        updated = dict(state)
        updated["analysis"] = analysis
        return updated  # type: ignore[return-value]

    def _node_plan(self, state: AdaptationGraphState) -> AdaptationGraphState:
        raw = call_capability("planning", self._planning_engine.plan, state["analysis"], state["text"]).unwrap()
        updated = dict(state)
        updated["raw_plan"] = _coerce_plan(raw)
        return updated  # type: ignore[return-value]

    def _node_validate_plan(self, state: AdaptationGraphState) -> AdaptationGraphState:
        plan, duplicates = enforce_unique_episodes(state["raw_plan"], self.config.duplicate_policy)
        if duplicates:
            self._log(
                Messages.DUPLICATES_RENUMBERED.format(numbers=", ".join(map(str, duplicates))),
                level=logging.WARNING,
            )
        self._log(Messages.PLAN_DONE.format(count=len(plan)))
        updated = dict(state)
        updated["plan"] = plan
        return updated  # type: ignore[return-value]

    def _commit_run(self, text: str, analysis: AnalysisResult, plan: tuple[EpisodePlanEntry, ...]) -> None:
        with self._guard:
            self._session.with_plan(text=text, analysis=analysis, plan=plan)
            dropped = self._apply_artifact_policy(plan)
            if dropped:
                self._log(Messages.ARTIFACTS_PURGED.format(count=len(dropped)))
            self._session.state.last_error = None
            self._enter(PipelineStage.WRITING)
            self._maybe_complete()

    def _abort_run(self, exc: CapabilityError) -> None:
        with self._guard:
            failed_stage = self._session.state.stage
            logger.warning("Adaptation run failed during %s: %s", failed_stage.value, exc)
            self._log(Messages.RUN_FAILED.format(reason=exc), level=logging.ERROR)
            self._session.state.last_error = ErrorRecord.from_exception(exc, stage=failed_stage)
            self._session.discard_run()
            self._enter(PipelineStage.IDLE)

    def _apply_artifact_policy(self, plan: Sequence[EpisodePlanEntry]) -> list[int]:
        policy = self.config.artifact_policy
        if policy == "purge":
            return self._session.artifacts.clear()
        if policy == "reconcile":
            return self._session.artifacts.retain(entry.episode_number for entry in plan)
        if policy == "keep":
            return []
        raise ValueError(f"Unsupported artifact policy '{policy}'")

    # ------------------------------------------------------------------
    # Per-episode scripts
    # ------------------------------------------------------------------
    def generate_script(self, episode_number: int) -> CapabilityResult[ScriptArtifact]:
        """Generate and store the script for one planned episode.

        Already scripted episodes are returned as-is without a capability
        call. A failure is logged and returned; it never changes the stage
        or any other episode's artifact. Raises :class:`ControllerBusyError`
        while ``start`` or a ``generate_all`` batch is running, even for an
        episode that is already scripted.
        """

        return self._generate_episode(episode_number, in_batch=False)

    def _generate_episode(self, episode_number: int, *, in_batch: bool) -> CapabilityResult[ScriptArtifact]:
        with self._guard:
            self._reject_if_locked(in_batch=in_batch)
            self._require_episode(episode_number)
            existing = self._session.artifacts.get(episode_number)
        if existing is not None:
            logger.debug("Episode %s already scripted; skipping", episode_number)
            return CapabilityResult.success(existing)

        self._claim_episode(episode_number, in_batch=in_batch)
        try:
            episode, analysis, text = self._require_episode(episode_number)
            existing = self._session.artifacts.get(episode_number)
            if existing is not None:
                return CapabilityResult.success(existing)

            self._log(Messages.SCRIPT_STARTED.format(episode=episode_number))
            result = call_capability("script", self._script_engine.generate_script, episode, analysis, text)
            error = result.error
            if error is None and not isinstance(result.value, str):
                error = SchemaViolation("Script capability must return text", capability="script")
            if error is not None:
                self._record_script_failure(episode_number, error)
                return CapabilityResult.failure(error)

            with self._guard:
                artifact = self._session.artifacts.add(ScriptArtifact(episode_number, result.value))  # type: ignore[arg-type]
                self._log(Messages.SCRIPT_DONE.format(episode=episode_number))
                self._maybe_complete()
            return CapabilityResult.success(artifact)
        finally:
            self._release_episode(episode_number)

    def generate_all(
        self,
        episode_numbers: Optional[Iterable[int]] = None,
        *,
        max_workers: Optional[int] = None,
    ) -> dict[int, CapabilityResult[ScriptArtifact]]:
        """Script several episodes; defaults to every planned episode.

        The batch holds the controller for its whole duration, so no other
        operation can interleave and every requested episode gets a result.
        In ``serial`` mode episodes run one after another in the order given.
        In ``per_episode`` mode they fan out over a thread pool.
        """

        with self._guard:
            self._reject_if_locked(in_batch=False)
            if self._session.analysis is None or not self._session.plan:
                raise ValidationError("No episode plan is loaded; run start() first.")
            if episode_numbers is None:
                numbers = [entry.episode_number for entry in self._session.plan]
            else:
                numbers = list(dict.fromkeys(episode_numbers))
            for number in numbers:
                self._require_episode(number)

        self._claim_batch()
        try:
            pending = [number for number in numbers if number not in self._session.artifacts]
            results: dict[int, CapabilityResult[ScriptArtifact]] = {}
            if self.config.script_concurrency == "per_episode" and len(pending) > 1:
                workers = min(max_workers or self.config.max_workers, len(pending))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="manju-script") as pool:
                    futures = {
                        number: pool.submit(self._generate_episode, number, in_batch=True) for number in pending
                    }
                    for number, future in futures.items():
                        results[number] = future.result()
            else:
                for number in pending:
                    results[number] = self._generate_episode(number, in_batch=True)
        finally:
            self._release_batch()

        ordered: dict[int, CapabilityResult[ScriptArtifact]] = {}
        for number in numbers:
            if number in results:
                ordered[number] = results[number]
            else:
                ordered[number] = CapabilityResult.success(self._session.artifacts.get(number))
        return ordered

    def _require_episode(self, episode_number: int) -> tuple[EpisodePlanEntry, AnalysisResult, str]:
        session = self._session
        if session.analysis is None or not session.plan:
            raise ValidationError("No episode plan is loaded; run start() first.")
        episode = session.find_episode(episode_number)
        if episode is None:
            raise ValidationError(f"Episode {episode_number} is not part of the current plan.")
        return episode, session.analysis, session.text

    def _record_script_failure(self, episode_number: int, error: CapabilityError) -> None:
        with self._guard:
            logger.warning("Script generation failed for episode %s: %s", episode_number, error)
            self._log(Messages.SCRIPT_FAILED.format(episode=episode_number), level=logging.ERROR)
            self._session.state.last_error = ErrorRecord.from_exception(
                error,
                stage=self._session.state.stage,
                episode_number=episode_number,
            )

    def _maybe_complete(self) -> None:
        if not self.config.complete_when_all_scripted:
            return
        if self._session.state.stage is not PipelineStage.WRITING or not self._session.plan:
            return
        if self.pending_episodes():
            return
        self._enter(PipelineStage.COMPLETE)
        self._log(Messages.ALL_SCRIPTED.format(count=len(self._session.plan)))

    # ------------------------------------------------------------------
    # Busy bookkeeping
    # ------------------------------------------------------------------
    # ------------------------------------------------------------------
    # Busy bookkeeping
    # ------------------------------------------------------------------
    def _reject_if_locked(self, *, in_batch: bool) -> None:
        with self._guard:
            if self._starting:
                raise ControllerBusyError("The adaptation run is still in progress.")
            if self._batch_active and not in_batch:
                raise ControllerBusyError("A batch of scripts is being generated.")

    def _claim_start(self) -> None:
        with self._guard:
            if self._starting or self._batch_active or self._in_flight:
                raise ControllerBusyError("Another operation is in progress.")
            self._starting = True
            self._sync_busy()

    def _release_start(self) -> None:
        with self._guard:
            self._starting = False
            self._sync_busy()

    def _claim_batch(self) -> None:
        with self._guard:
            if self._starting or self._batch_active or self._in_flight:
                raise ControllerBusyError("Another operation is in progress.")
            self._batch_active = True
            self._sync_busy()

    def _release_batch(self) -> None:
        with self._guard:
            self._batch_active = False
            self._sync_busy()

    def _claim_episode(self, episode_number: int, *, in_batch: bool) -> None:
        with self._guard:
            self._reject_if_locked(in_batch=in_batch)
            if episode_number in self._in_flight:
                raise ControllerBusyError(f"Episode {episode_number} is already being generated.")
            if self.config.script_concurrency == "serial" and self._in_flight:
                raise ControllerBusyError("Another script is being generated.")
            self._in_flight.add(episode_number)
            self._sync_busy()

    def _release_episode(self, episode_number: int) -> None:
        with self._guard:
            self._in_flight.discard(episode_number)
            self._sync_busy()

    def _sync_busy(self) -> None:
        self._session.state.busy = self._starting or self._batch_active or bool(self._in_flight)


    def _enter(self, stage: PipelineStage) -> None:
        with self._guard:
            self._session.state.enter(stage)

    def _log(self, message: str, *, level: int = logging.INFO) -> None:
        with self._guard:
            self._session.log.append(message, level=level)


def _coerce_analysis(raw: Any) -> AnalysisResult:
    if isinstance(raw, AnalysisResult):
        return raw
    try:
        return AnalysisResult.model_validate(raw)
    except PydanticValidationError as exc:
        raise SchemaViolation(f"Analysis does not match schema: {exc}", capability="analysis") from exc


def _coerce_plan(raw: Any) -> list[EpisodePlanEntry]:
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
        raise SchemaViolation("Plan must be a sequence of episodes", capability="planning")
    try:
        return [
            entry if isinstance(entry, EpisodePlanEntry) else EpisodePlanEntry.model_validate(entry)
            for entry in raw
        ]
    except PydanticValidationError as exc:
        raise SchemaViolation(f"Plan does not match schema: {exc}", capability="planning") from exc
