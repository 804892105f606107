"""The task agent: runs tasks and turns recurring learnings into guidelines.

Guidelines: coding.md, testing.md, learnings.md
Criteria: quality.md, security.md
"""

from __future__ import annotations

from ophan.agents.base import AgentAnalysisResult, AgentGuidance, BaseAgent
from ophan.agents.utils import ContentLoader
from ophan.backends.base import Executor
from ophan.backends.factory import create_executor
from ophan.core.errors import ProposalApplyError
from ophan.core.logging import get_logger
from ophan.execution.fast_loop import FastLoop, FastLoopOptions, FastLoopResult
from ophan.learning.analyzer import LogAnalysis, LogAnalyzer
from ophan.learning.guidance import apply_proposal
from ophan.learning.history import TaskHistory
from ophan.learning.manager import LEARNINGS_FILENAME, LearningManager
from ophan.models import AgentMetric, Proposal, ProposalStatus
from ophan.utils.ids import generate_proposal_id
from ophan.utils.time import utc_now

_logger = get_logger("task_agent")

TARGET_SUCCESS_RATE = 80.0
TARGET_AVERAGE_ITERATIONS = 3.0
DEFAULT_COST_TARGET = 1.0
PROMOTION_CONFIDENCE = 0.8


class TaskAgent(BaseAgent):
    """Executes tasks through the fast loop and consolidates what they teach."""

    id = "task-agent"
    name = "Task Execution Agent"
    description = "Executes coding tasks through iterative refinement with evaluation-driven convergence"
    guidance = AgentGuidance(
        guideline_files=("coding.md", "testing.md", LEARNINGS_FILENAME),
        criteria_files=("quality.md", "security.md"),
    )
    can_execute_tasks = True

    @property
    def learning_manager(self) -> LearningManager:
        return LearningManager(self.ophan_dir, self.config.outer_loop.learnings)

    def _executor(self) -> Executor:
        if self.options.executor_factory is not None:
            return self.options.executor_factory()
        return create_executor(self.config, progress_callback=self.options.on_progress)

    async def execute_task(self, description: str, budget: float | None = None) -> FastLoopResult:
        """Run one task and fold its outcome into the run-state.

        ``budget`` overrides the configured cost limit for this task.
        """
        guideline_names = [f for f in self.guidance.guideline_files if f != LEARNINGS_FILENAME]
        guidelines = ContentLoader.load_guidelines(self.ophan_dir, guideline_names)
        criteria = ContentLoader.load_criteria(self.ophan_dir, self.guidance.criteria_files)

        manager = self.learning_manager
        guideline_files = list(guidelines.files)
        learnings_text = ""
        if manager.learnings_file.exists():
            learnings_text = manager.learnings_file.read_text(encoding="utf-8")
            guideline_files.append(str(manager.learnings_file))

        loop = FastLoop(
            FastLoopOptions(
                project_root=self.project_root,
                ophan_dir=self.ophan_dir,
                config=self.config,
                executor=self._executor(),
                guidelines=guidelines.content,
                criteria=criteria.content,
                learnings=learnings_text,
                guideline_files=guideline_files,
                criteria_files=criteria.files,
                cost_limit=budget,
                notifier=self.options.notifier,
                on_progress=self.options.on_progress,
            )
        )
        result = await loop.execute(description)

        state = self.state
        state.learnings = manager.record(state.learnings, result.learnings)
        state.tasks_since_review += 1
        state.metrics = TaskHistory(self.ophan_dir).calculate_metrics(self.config.outer_loop.lookback_days)
        _logger.info(
            "task_recorded",
            task_id=result.task.id,
            status=result.task.status.value,
            learnings=len(result.learnings),
            tasks_since_review=state.tasks_since_review,
        )
        return result

    async def run_analysis(self, lookback_days: int, auto_apply_guidelines: bool) -> AgentAnalysisResult:
        """Consolidate the learning pool and propose guideline changes.

        Proposals come from promoted learnings and, when ``log_analysis`` is
        on and there is history to read, from the executor's analysis of
        recent task logs. Guideline-kind proposals are applied directly when
        ``auto_apply_guidelines`` is set; criteria proposals always wait for
        a human.
        """
        manager = self.learning_manager
        state = self.state
        already_promoted = {l.id for l in state.learnings if l.promoted}

        analysis = await self._analyze_logs(lookback_days)

        consolidation = manager.consolidate(state.learnings)
        self.log(
            f"Learnings: {len(consolidation.kept)} kept, {len(consolidation.promoted)} promoted, "
            f"{len(consolidation.removed)} removed"
        )

        newly_promoted = [l for l in consolidation.promoted if l.id not in already_promoted]
        proposals: list[Proposal] = []
        guidelines_updated: list[str] = []
        for guideline in manager.generate_guideline_proposals(newly_promoted):
            proposal = Proposal(
                id=generate_proposal_id(),
                type="guideline",
                source=self.id,
                target_file=f"guidelines/{guideline.file}",
                change=guideline.content,
                reason=f'Promoted from learning: "{guideline.learning_content[:100]}..."',
                confidence=PROMOTION_CONFIDENCE,
            )
            if auto_apply_guidelines:
                try:
                    manager.apply_guideline_update(guideline.file, guideline.content)
                except ProposalApplyError as e:
                    _logger.warning("auto_apply_failed", proposal_id=proposal.id, error=str(e))
                    self.log(f"Failed to update {guideline.file}: {e}")
                else:
                    self._mark_applied(proposal, guidelines_updated)
                    self.log(f"Auto-applied guideline: {guideline.file}")
                    continue
            proposals.append(proposal)

        for proposal in analysis.proposals:
            if auto_apply_guidelines and proposal.type == "guideline":
                try:
                    apply_proposal(proposal, self.ophan_dir)
                except ProposalApplyError as e:
                    _logger.warning("auto_apply_failed", proposal_id=proposal.id, error=str(e))
                    self.log(f"Failed to apply recommendation: {e}")
                else:
                    self._mark_applied(proposal, guidelines_updated)
                    self.log(f"Auto-applied recommendation: {proposal.target_file}")
                    continue
            proposals.append(proposal)

        state.learnings = [*consolidation.kept, *consolidation.promoted]
        manager.rewrite_learnings_file(consolidation.kept)

        return AgentAnalysisResult(
            proposals=proposals,
            metrics=await self.get_metrics(),
            summary=f"{len(analysis.patterns)} patterns, {len(newly_promoted)} learnings promoted, "
            f"{len(proposals)} proposals, {len(guidelines_updated)} auto-applied",
            consolidation=consolidation,
            guidelines_updated=guidelines_updated,
        )

    async def _analyze_logs(self, lookback_days: int) -> LogAnalysis:
        if not self.config.outer_loop.log_analysis:
            return LogAnalysis()
        entries = TaskHistory(self.ophan_dir).load_entries(lookback_days)
        if not entries:
            return LogAnalysis()

        self.log(f"Analyzing {len(entries)} task logs...")
        analysis = await LogAnalyzer(self._executor(), source=self.id).analyze(entries, self.project_root)
        self.log(f"Analysis: {len(analysis.patterns)} patterns, {len(analysis.proposals)} recommendations")
        for pattern in analysis.patterns:
            actionable = "actionable" if pattern.actionable else "not actionable"
            self.log(f"  - [{pattern.category}] {pattern.description} ({actionable})")
        return analysis

    @staticmethod
    def _mark_applied(proposal: Proposal, guidelines_updated: list[str]) -> None:
        proposal.status = ProposalStatus.APPROVED
        proposal.reviewed_at = utc_now()
        if proposal.target_file not in guidelines_updated:
            guidelines_updated.append(proposal.target_file)

    async def get_metrics(self) -> list[AgentMetric]:
        metrics = self.state.metrics
        cost_target = self.config.inner_loop.cost_limit or DEFAULT_COST_TARGET
        return [
            AgentMetric(
                name="Success Rate",
                value=metrics.success_rate,
                target=TARGET_SUCCESS_RATE,
                passed=metrics.success_rate >= TARGET_SUCCESS_RATE,
            ),
            AgentMetric(
                name="Average Iterations",
                value=metrics.average_iterations,
                target=TARGET_AVERAGE_ITERATIONS,
                passed=metrics.average_iterations <= TARGET_AVERAGE_ITERATIONS,
            ),
            AgentMetric(
                name="Average Cost per Task",
                value=metrics.average_cost_per_task,
                target=cost_target,
                passed=metrics.average_cost_per_task <= cost_target,
            ),
        ]
