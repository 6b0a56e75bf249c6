"""
resolver.py - Conflict resolution after a failed upgrade.

Parses the failed upgrade's stderr, runs the strategy cascade once per
conflicting package, then re-runs the upgrade exactly once. A failure of
that retry is terminal for the session; there is no second round.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from errors import EssentialPackageError
from executor import AttemptResult, UpgradeExecutor

from .parser import extract_packages, has_file_conflict, required_libraries
from .strategies import Resolution, Strategy, StrategyContext, default_strategies, is_essential

ERROR_TAIL_LINES = 30


class ConflictOutcome(Enum):
    RESOLVED = "resolved"
    REMOVED = "removed"
    SKIPPED = "skipped"
    FATAL = "fatal"


_OUTCOMES = {
    Resolution.RESOLVED: ConflictOutcome.RESOLVED,
    Resolution.REMOVED: ConflictOutcome.REMOVED,
    Resolution.FATAL: ConflictOutcome.FATAL,
}


@dataclass
class ConflictRecord:
    """One conflicting package and what was done about it."""

    package: str
    required: list[str] = field(default_factory=list)
    strategy: str | None = None
    outcome: ConflictOutcome = ConflictOutcome.SKIPPED


@dataclass
class ResolutionReport:
    message: str
    records: list[ConflictRecord] = field(default_factory=list)
    retry: AttemptResult | None = None

    @property
    def removed(self) -> list[str]:
        return [r.package for r in self.records if r.outcome is ConflictOutcome.REMOVED]

    @property
    def succeeded(self) -> bool:
        return self.retry is not None and self.retry.ok


class ConflictResolver:
    def __init__(
        self,
        ctx: StrategyContext,
        executor: UpgradeExecutor,
        strategies: list[Strategy] | None = None,
    ):
        self.ctx = ctx
        self.log = ctx.log
        self.executor = executor
        self.strategies = strategies if strategies is not None else default_strategies()

    def resolve(self, failure: AttemptResult) -> ResolutionReport:
        """Analyze a failed upgrade and retry it once.

        Raises:
            EssentialPackageError: If any conflicting package is essential.
                Raised before any per-package action runs.
        """
        self.log.step("Analyzing package conflicts...")
        text = failure.error_text
        if not text.strip():
            self.log.info("No errors to analyze")
            return ResolutionReport("no error to analyze")

        self.log.warn("Errors detected during upgrade:")
        self.log.output("\n".join(text.splitlines()[-ERROR_TAIL_LINES:]))

        packages = extract_packages(text)
        if not packages:
            return self._handle_unparsed(text)

        self.log.items("Conflicting packages found:", packages)

        essential = [name for name in packages if is_essential(name)]
        if essential:
            for name in essential:
                self.log.error(f"CRITICAL: Cannot remove essential package '{name}'")
            self.log.error("This would break your system. Manual intervention required.")
            raise EssentialPackageError(essential)

        records = []
        for name in packages:
            try:
                records.append(self.resolve_package(name, text))
            except OSError as e:
                self.log.warn(f"Resolution of {name} aborted: {e}")
                records.append(ConflictRecord(name, outcome=ConflictOutcome.SKIPPED))

        self.log.step("Retrying system upgrade after conflict resolution...")
        retry = self.executor.upgrade()
        if not retry.ok:
            self.log.error("Upgrade still failing after conflict resolution")
        return ResolutionReport("conflicts processed", records, retry)

    def _handle_unparsed(self, text: str) -> ResolutionReport:
        self.log.warn("No explicit package conflicts found in error output")
        if not has_file_conflict(text):
            self.log.info("No conflicts found")
            return ResolutionReport("no conflicts found")

        self.log.warn("File conflicts detected")
        if self.ctx.caps.has("pacman") and self.ctx.decider.decide(
            "Try to resolve file conflicts with --overwrite?", False
        ):
            return ResolutionReport("file conflicts", retry=self.executor.upgrade_with_overwrite())
        return ResolutionReport("file conflicts")

    def resolve_package(self, package: str, text: str) -> ConflictRecord:
        """Run the strategy cascade for one package."""
        self.log.info(f"Handling conflict: {package}")
        record = ConflictRecord(package, required=required_libraries(text, package))
        if record.required:
            self.log.items(f"Required libraries for {package}:", record.required)

        for strategy in self.strategies:
            result = strategy.apply(package, self.ctx)
            if result is Resolution.NOT_APPLICABLE:
                continue
            record.strategy = strategy.name
            if result.final:
                record.outcome = _OUTCOMES[result]
                return record

        self.log.warn(f"Conflict for {package} left unresolved")
        return record
