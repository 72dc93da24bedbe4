"""Issue catalog primitives: detection rules, fix strategies and the registry.

The catalog is immutable once built.  Callers that want extra rules or
strategies build a new catalog with :meth:`IssueCatalog.extend`; the default
catalog is shared read-only between concurrent runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal, Optional

from pwa_validator.models import Finding, FindingCategory, IssueKind, ProjectMetadata, ProjectTree


class CatalogError(Exception):
    """Raised when a catalog is built from inconsistent rules or strategies."""


@dataclass(frozen=True)
class RuleHit:
    """A raw match reported by a rule check, before it becomes a ``Finding``."""

    file: str
    message: str
    key: Optional[str] = None
    suggested_fix: Optional[str] = None
    line: Optional[int] = None


FileCheck = Callable[[str, str, ProjectTree], list[RuleHit]]
ProjectCheck = Callable[[ProjectTree], list[RuleHit]]


@dataclass(frozen=True)
class IssueRule:
    """A known problem pattern.

    File-scoped rules are called as ``check(path, content, tree)`` for every
    path accepted by ``applies_to``.  Project-scoped rules are called once as
    ``check(tree)``.
    """

    rule_id: str
    kind: IssueKind
    category: FindingCategory
    check: Callable[..., list[RuleHit]]
    scope: Literal["file", "project"] = "file"
    applies_to: Optional[Callable[[str, ProjectMetadata], bool]] = None
    description: str = ""

    def matches(self, path: str, metadata: ProjectMetadata) -> bool:
        if self.scope != "file":
            return False
        return self.applies_to is None or self.applies_to(path, metadata)


def _always(finding: Finding, tree: ProjectTree) -> bool:
    return True


def _finding_file(finding: Finding, tree: ProjectTree) -> list[str]:
    return [finding.file]


@dataclass(frozen=True)
class FixStrategy:
    """A deterministic transformation that resolves findings of one rule.

    ``apply`` mutates the tree and returns a human-readable description of
    the change.  ``targets`` lists every path the strategy reads or writes so
    the auto-fix engine can lock them.
    """

    name: str
    rule_id: str
    confidence: float
    apply: Callable[[Finding, ProjectTree], str]
    precondition: Callable[[Finding, ProjectTree], bool] = field(default=_always)
    targets: Callable[[Finding, ProjectTree], list[str]] = field(default=_finding_file)


class IssueCatalog:
    """Read-only registry of rules and the strategies that fix them."""

    def __init__(
        self,
        rules: Iterable[IssueRule] = (),
        strategies: Iterable[FixStrategy] = (),
    ) -> None:
        self._rules: dict[str, IssueRule] = {}
        for rule in rules:
            if rule.rule_id in self._rules:
                raise CatalogError(f"Duplicate rule id: {rule.rule_id}")
            if rule.scope not in ("file", "project"):
                raise CatalogError(f"Rule {rule.rule_id} has unknown scope {rule.scope!r}")
            self._rules[rule.rule_id] = rule

        self._strategies: dict[str, FixStrategy] = {}
        by_rule: dict[str, list[FixStrategy]] = {}
        for strategy in strategies:
            if strategy.name in self._strategies:
                raise CatalogError(f"Duplicate strategy name: {strategy.name}")
            if strategy.rule_id not in self._rules:
                raise CatalogError(
                    f"Strategy {strategy.name} references unknown rule {strategy.rule_id}"
                )
            if not 0.0 <= strategy.confidence <= 1.0:
                raise CatalogError(
                    f"Strategy {strategy.name} has confidence {strategy.confidence} outside [0, 1]"
                )
            self._strategies[strategy.name] = strategy
            by_rule.setdefault(strategy.rule_id, []).append(strategy)

        # Highest confidence first, ties broken by name.
        self._by_rule: dict[str, tuple[FixStrategy, ...]] = {
            rule_id: tuple(sorted(group, key=lambda s: (-s.confidence, s.name)))
            for rule_id, group in by_rule.items()
        }

    # -- Lookup ------------------------------------------------------------

    @property
    def rules(self) -> tuple[IssueRule, ...]:
        return tuple(self._rules[rule_id] for rule_id in sorted(self._rules))

    @property
    def strategies(self) -> tuple[FixStrategy, ...]:
        return tuple(self._strategies[name] for name in sorted(self._strategies))

    def rule(self, rule_id: str) -> IssueRule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise CatalogError(f"Unknown rule id: {rule_id}") from None

    def strategies_for(self, rule_id: str) -> tuple[FixStrategy, ...]:
        """Strategies registered for *rule_id*, best first."""
        return self._by_rule.get(rule_id, ())

    def select_strategy(self, finding: Finding, tree: ProjectTree) -> Optional[FixStrategy]:
        """Return the highest-confidence strategy whose precondition holds."""
        for strategy in self.strategies_for(finding.rule_id):
            if strategy.precondition(finding, tree):
                return strategy
        return None

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    # -- Extension ---------------------------------------------------------

    def extend(
        self,
        rules: Iterable[IssueRule] = (),
        strategies: Iterable[FixStrategy] = (),
    ) -> "IssueCatalog":
        """Return a new catalog with extra rules and strategies added."""
        return IssueCatalog(
            rules=[*self._rules.values(), *rules],
            strategies=[*self._strategies.values(), *strategies],
        )
