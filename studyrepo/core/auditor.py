"""
Content auditor: normalizes raw submissions into an item list, folds the
rule registry over every item and scores the result.

Content problems are always reported as issues. Only an input that cannot
be read as an item list at all raises InvalidInputError.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .audit_rules import RuleContext, RuleRegistry, default_registry
from .config import CONTENT_TYPES
from .errors import InvalidInputError
from .schema import AuditIssue, AuditReport
from ..util.logging import logger

WRAPPER_KEYS = ("cards", "questions", "problems")

PROTOCOL_PENALTIES = {"Blocker": 25, "Major": 10, "Minor": 3}
TEACHING_PENALTIES = {"Blocker": 20, "Major": 8, "Minor": 2}
# Teaching-module issues hit the teaching score harder than the protocol score
TEACHING_MODULE_PROTOCOL_PENALTIES = {"Blocker": 10, "Major": 4, "Minor": 1}
TEACHING_MODULE_TEACHING_PENALTIES = {"Blocker": 30, "Major": 12, "Minor": 5}
TEACHING_MODULES = {"pedagogy", "logic", "flow"}

# One remediation hint per rule family, in display order
FAMILY_SUGGESTIONS = [
    ("input", "Submit a non-empty list of items; a single object or a cards/questions wrapper is also accepted."),
    ("structure", "Keep only the allowed fields and fill in every required field with a non-empty value."),
    ("segments", "Complete every has_info segment and copy highlight_text verbatim from the original question."),
    ("traps", "Add at least one realistic student misconception and describe the wrong reasoning path."),
    ("solution", "Attribute every solution step to its source (prompt_info or external_knowledge)."),
    ("pedagogy", "Deepen the explanation: decode the question, list conditions, use at least two steps and end with a clear conclusion."),
    ("logic", "Make the decision rule explicit (next-best alternative, sunk costs ignored, MB compared with MC)."),
    ("flow", "Keep segments short, distinct and in reading order."),
    ("latex", "Clean up LaTeX: escape backslashes and keep percent signs outside $...$."),
    ("currency", "Do not mix currency amounts like $120 with $...$ formulas in the same string."),
    ("json_safety", "Remove authoring artifacts such as Markdown headings, comments and citation markers."),
]
PASS_SUGGESTION = "Content passed the audit and is ready to publish."


@dataclass
class NormalizedInput:
    """Raw input resolved to an item list.

    shape is 'array' for a bare list, 'wrapped' for {cards|questions|problems: [...]}
    and 'single' for one bare item.
    """
    shape: str
    items: List[Any] = field(default_factory=list)
    wrapper_key: Optional[str] = None


def normalize_items(raw: Any) -> NormalizedInput:
    """Resolve the accepted input shapes into one item list."""
    if isinstance(raw, list):
        return NormalizedInput("array", list(raw))
    if isinstance(raw, dict):
        for key in WRAPPER_KEYS:
            if key in raw:
                value = raw[key]
                return NormalizedInput("wrapped", list(value) if isinstance(value, list) else [], key)
        return NormalizedInput("single", [raw])
    raise InvalidInputError(
        f"Input must be a JSON array or object, got {type(raw).__name__ if raw is not None else 'null'}"
    )


def score_issues(issues: List[AuditIssue]) -> Tuple[int, int]:
    """Return (protocol_score, teaching_score), each clamped to [0, 100]."""
    protocol_score = 100
    teaching_score = 100
    for issue in issues:
        if issue.module in TEACHING_MODULES:
            protocol_score -= TEACHING_MODULE_PROTOCOL_PENALTIES.get(issue.severity, 1)
            teaching_score -= TEACHING_MODULE_TEACHING_PENALTIES.get(issue.severity, 5)
        else:
            protocol_score -= PROTOCOL_PENALTIES.get(issue.severity, 3)
            teaching_score -= TEACHING_PENALTIES.get(issue.severity, 2)
    return max(0, min(100, protocol_score)), max(0, min(100, teaching_score))


def build_suggestions(issues: List[AuditIssue]) -> List[str]:
    """Deduplicated remediation hints keyed by which rule families fired."""
    fired = {issue.module for issue in issues}
    suggestions = [hint for module, hint in FAMILY_SUGGESTIONS if module in fired]
    if not suggestions:
        suggestions.append(PASS_SUGGESTION)
    return suggestions


class ContentAuditor:
    """Runs a rule registry over normalized content items."""

    def __init__(self, registry: RuleRegistry = None):
        self.registry = registry if registry is not None else default_registry

    def inspect(self, content_type: str, raw: Any) -> Tuple[NormalizedInput, AuditReport]:
        """Normalize and audit, returning both the items and the report."""
        if content_type not in CONTENT_TYPES:
            raise InvalidInputError(f"Unknown content type: {content_type}")

        normalized = normalize_items(raw)
        issues: List[AuditIssue] = []

        if not normalized.items:
            issues.append(AuditIssue(
                severity="Blocker",
                module="input",
                rule_id="input.empty",
                location="input",
                description="no content items found",
                fix_suggestion="Submit at least one item."
            ))
        else:
            rules = self.registry.rules_for(content_type)
            for index, item in enumerate(normalized.items):
                ctx = RuleContext(content_type=content_type, index=index)
                for rule in rules:
                    issues.extend(rule.evaluate(item, ctx))

        protocol_score, teaching_score = score_issues(issues)
        report = AuditReport(
            overall_pass=not any(i.severity == "Blocker" for i in issues),
            protocol_score=protocol_score,
            teaching_score=teaching_score,
            issues=issues,
            suggestions=build_suggestions(issues),
            item_count=len(normalized.items)
        )
        logger.log_audit_result(content_type, report)
        return normalized, report

    def audit(self, content_type: str, raw: Any) -> AuditReport:
        """Audit raw content of the given type."""
        return self.inspect(content_type, raw)[1]


# Global auditor using the default rule registry
content_auditor = ContentAuditor()


def audit(content_type: str, raw: Any) -> AuditReport:
    """Audit raw content with the default rules."""
    return content_auditor.audit(content_type, raw)


def summarize_issues(report: AuditReport, limit: int) -> List[Dict[str, Any]]:
    """Blockers first, capped, for error bodies."""
    ordered = sorted(report.issues, key=lambda i: {"Blocker": 0, "Major": 1, "Minor": 2}.get(i.severity, 3))
    return [i.to_dict() for i in ordered[:limit]]
