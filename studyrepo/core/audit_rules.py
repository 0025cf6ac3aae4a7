"""
Rule registry for the content auditor.

Every check is a Rule with an id, a default severity, the module (rule
family) it belongs to and a tier:

    structural  required fields and shapes per content type
    technical   string-level checks that protect the math renderer
    heuristic   keyword co-occurrence checks; approximate by nature

Rules yield Findings; the registry turns them into AuditIssues. Domain
keyword checks are data (KeywordRule) so new subjects can add their own
without touching the auditor.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from .schema import AuditIssue

ALL_TYPES = ("flashcard", "decoder", "practice")

# Item list key per content type, used for issue locations
LOCATION_ROOTS = {
    "flashcard": "cards",
    "decoder": "problems",
    "practice": "questions",
}

DECODER_REQUIRED_KEYS = ["id", "title", "original_question", "segments", "traps", "solution"]
DECODER_ALLOWED_KEYS = DECODER_REQUIRED_KEYS + ["question_table"]
SEGMENT_INFO_FIELDS = ["highlight_text", "condition", "knowledge", "explanation", "highlight_color"]
HIGHLIGHT_COLORS = ["green", "yellow", "red", "blue"]
GOAL_COLOR = "blue"
TRAP_COLOR = "red"
SOLUTION_STEP_FIELDS = ["step_desc", "content", "source_type", "source_label"]
SOURCE_TYPES = ["prompt_info", "external_knowledge"]
PRACTICE_TYPES = ["choice", "bool", "essay"]

MAX_SEGMENT_CHARS = 220
NARRATIVE_PREFIX_CHARS = 12
MIN_TRAP_DESCRIPTION_CHARS = 18

GOAL_WORDS = ["goal", "decision", "target", "what", "should", "结论", "目标", "应", "多少"]
TRAP_GOAL_WORDS = ["goal", "decision", "target", "结论", "目标"]
STRUCTURE_WORDS = ["sample", "population", "structure", "design", "option", "alternative", "样本", "总体", "结构", "设计"]
CONCLUSION_WORDS = ["final", "answer", "therefore", "thus", "should", "=", "结果", "结论", "应"]

_UNSAFE_BACKSLASH = re.compile(r"(^|[^\\])\\(?![a-zA-Z0-9_{}()\[\]\\])")
# Pairs each $ with the next one, so "$x$ 10% $y$" also counts as percent inside math.
_PERCENT_IN_MATH = re.compile(r"\$[^$]*%[^$]*\$")
_CURRENCY_DOLLAR = re.compile(r"\$\d")
_MATH_DOLLAR_PAIR = re.compile(r"\$[^$]*\$")
_MATH_COMMAND = re.compile(r"\\(times|cdot|sum|frac|sqrt|left|right|hat|sigma|mu|in|le|ge)\b")
_FORBIDDEN_TOKEN = re.compile(r"(^|\n)\s*#\s|/\*|\*/|(^|\s)//|\[\^\d+\]")
_SHORT_TERM = re.compile(r"^[a-z0-9]{1,3}$")


class Finding(NamedTuple):
    location: str
    description: str
    severity: Optional[str] = None
    fix_suggestion: Optional[str] = None


@dataclass
class RuleContext:
    """Per-item evaluation context."""
    content_type: str
    index: int

    @property
    def location(self) -> str:
        return f"{LOCATION_ROOTS.get(self.content_type, 'items')}[{self.index}]"


@dataclass
class Rule:
    rule_id: str
    severity: str
    module: str
    tier: str
    applies_to: Tuple[str, ...]
    check: Callable[[Any, RuleContext], Optional[Iterable[Finding]]]
    fix_suggestion: str = ""

    def applies(self, content_type: str) -> bool:
        return content_type in self.applies_to

    def evaluate(self, item: Any, ctx: RuleContext) -> List[AuditIssue]:
        """Run the check and convert its findings to issues."""
        issues = []
        for finding in self.check(item, ctx) or ():
            issues.append(AuditIssue(
                severity=finding.severity or self.severity,
                module=self.module,
                rule_id=self.rule_id,
                location=finding.location,
                description=finding.description,
                fix_suggestion=finding.fix_suggestion or self.fix_suggestion
            ))
        return issues


class RuleRegistry:
    """Ordered collection of rules; the auditor folds it over every item."""

    def __init__(self, rules: Sequence[Rule] = ()):
        self._rules: List[Rule] = []
        for rule in rules:
            self.register(rule)

    def register(self, rule: Rule) -> Rule:
        if self.get(rule.rule_id) is not None:
            raise ValueError(f"Duplicate rule id: {rule.rule_id}")
        self._rules.append(rule)
        return rule

    def rule(self, rule_id: str, severity: str, module: str, tier: str = "structural",
             applies_to: Tuple[str, ...] = ALL_TYPES, fix_suggestion: str = ""):
        """Decorator registering a check function as a rule."""
        def decorator(check):
            self.register(Rule(rule_id, severity, module, tier, tuple(applies_to), check, fix_suggestion))
            return check
        return decorator

    def get(self, rule_id: str) -> Optional[Rule]:
        for rule in self._rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    def rules_for(self, content_type: str) -> List[Rule]:
        return [r for r in self._rules if r.applies(content_type)]

    def copy(self) -> 'RuleRegistry':
        return RuleRegistry(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(list(self._rules))

    def __len__(self) -> int:
        return len(self._rules)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_non_empty_string(value) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_blank(value) -> bool:
    """Missing for required-field purposes: None or a whitespace-only string."""
    return value is None or (isinstance(value, str) and value.strip() == "")


def mentions_any(text: str, terms: Iterable[str]) -> bool:
    """Case-insensitive keyword test. Short ASCII terms must match whole words."""
    target = str(text or "").lower()
    for term in terms:
        term = term.lower()
        if _SHORT_TERM.match(term):
            if re.search(rf"\b{re.escape(term)}\b", target):
                return True
        elif term in target:
            return True
    return False


def iter_strings(value: Any, path: str = "") -> Iterator[Tuple[str, str]]:
    """Yield (json_path, string) for every string nested in value."""
    if isinstance(value, str):
        yield path, value
    elif isinstance(value, dict):
        for key, child in value.items():
            yield from iter_strings(child, f"{path}.{key}")
    elif isinstance(value, list):
        for idx, child in enumerate(value):
            yield from iter_strings(child, f"{path}[{idx}]")


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def heuristic_text(item: Any, content_type: str) -> str:
    """Lower-cased text the keyword heuristics scan."""
    if content_type == "decoder" and isinstance(item, dict):
        return f"{item.get('original_question') or ''} {_dumps(item.get('solution') or [])}".lower()
    return _dumps(item).lower()


def _segments(item) -> List[Tuple[int, Dict[str, Any]]]:
    """Indexed segment objects of a decoder item, skipping malformed entries."""
    segments = item.get("segments") if isinstance(item, dict) else None
    if not isinstance(segments, list):
        return []
    return [(idx, seg) for idx, seg in enumerate(segments) if isinstance(seg, dict)]


def _info_segments(item) -> List[Tuple[int, Dict[str, Any]]]:
    return [(idx, seg) for idx, seg in _segments(item) if seg.get("has_info") is True]


def _analysis(item) -> Dict[str, Any]:
    analysis = item.get("analysis") if isinstance(item, dict) else None
    return analysis if isinstance(analysis, dict) else {}


def _non_empty_list(value) -> bool:
    return isinstance(value, list) and len(value) > 0


# ---------------------------------------------------------------------------
# Default rules
# ---------------------------------------------------------------------------

default_registry = RuleRegistry()


@default_registry.rule("structure.item-object", "Blocker", "structure",
                       fix_suggestion="Make every item a JSON object.")
def check_item_object(item, ctx):
    if not isinstance(item, dict):
        yield Finding(ctx.location, f"{ctx.content_type} item must be an object")


# Flashcard structure

@default_registry.rule("flashcard.question", "Blocker", "structure", applies_to=("flashcard",),
                       fix_suggestion="Give every card a non-empty question string.")
def check_flashcard_question(item, ctx):
    if isinstance(item, dict) and not is_non_empty_string(item.get("question")):
        yield Finding(f"{ctx.location}.question", "question must be a non-empty string")


@default_registry.rule("flashcard.answer", "Blocker", "structure", applies_to=("flashcard",),
                       fix_suggestion="Provide the answer as a string or an object.")
def check_flashcard_answer(item, ctx):
    if not isinstance(item, dict):
        return
    answer = item.get("answer")
    if not isinstance(answer, (str, dict, list)):
        yield Finding(f"{ctx.location}.answer", "answer must be a string or an object")


# Decoder structure

@default_registry.rule("decoder.required-field", "Blocker", "structure", applies_to=("decoder",),
                       fix_suggestion="Fill in every required top-level field with a non-empty value.")
def check_decoder_required(item, ctx):
    if not isinstance(item, dict):
        return
    for key in DECODER_REQUIRED_KEYS:
        if is_blank(item.get(key)):
            yield Finding(f"{ctx.location}.{key}", f"missing required field: {key}")


@default_registry.rule("decoder.unknown-field", "Blocker", "structure", applies_to=("decoder",),
                       fix_suggestion="Keep only the allowed top-level fields.")
def check_decoder_unknown_fields(item, ctx):
    if not isinstance(item, dict):
        return
    extra = [k for k in item if k not in DECODER_ALLOWED_KEYS]
    if extra:
        yield Finding(ctx.location, f"unknown top-level fields: {', '.join(extra)}")


@default_registry.rule("decoder.question-table", "Blocker", "structure", applies_to=("decoder",),
                       fix_suggestion="Use {columns: [...], rows: [[...], ...]} with one cell per column.")
def check_question_table(item, ctx):
    if not isinstance(item, dict) or "question_table" not in item:
        return
    table = item["question_table"]
    loc = f"{ctx.location}.question_table"
    if not isinstance(table, dict):
        yield Finding(loc, "question_table must be an object")
        return
    columns = table.get("columns")
    if not _non_empty_list(columns):
        yield Finding(f"{loc}.columns", "columns must be a non-empty list")
    rows = table.get("rows")
    if not isinstance(rows, list):
        yield Finding(f"{loc}.rows", "rows must be a list of rows")
        return
    expected = len(columns) if isinstance(columns, list) else 0
    for idx, row in enumerate(rows):
        if not isinstance(row, list):
            yield Finding(f"{loc}.rows[{idx}]", "each row must be a list")
        elif expected and len(row) != expected:
            yield Finding(f"{loc}.rows[{idx}]", f"row has {len(row)} cells but there are {expected} columns")


# Decoder segments

@default_registry.rule("decoder.segments-list", "Blocker", "segments", applies_to=("decoder",),
                       fix_suggestion="Provide segments as a non-empty list in reading order.")
def check_segments_list(item, ctx):
    if not isinstance(item, dict) or item.get("segments") is None:
        return
    if not _non_empty_list(item["segments"]):
        yield Finding(f"{ctx.location}.segments", "segments must be a non-empty list")


@default_registry.rule("decoder.segment-shape", "Blocker", "segments", applies_to=("decoder",),
                       fix_suggestion="Each segment needs a text string and an explicit has_info boolean.")
def check_segment_shape(item, ctx):
    segments = item.get("segments") if isinstance(item, dict) else None
    if not isinstance(segments, list):
        return
    for idx, seg in enumerate(segments):
        seg_loc = f"{ctx.location}.segments[{idx}]"
        if not isinstance(seg, dict):
            yield Finding(seg_loc, "segment must be an object")
            continue
        if not is_non_empty_string(seg.get("text")):
            yield Finding(f"{seg_loc}.text", "text must be a non-empty string")
        if not isinstance(seg.get("has_info"), bool):
            yield Finding(f"{seg_loc}.has_info", "has_info must be a boolean")


@default_registry.rule("decoder.segment-fields", "Blocker", "segments", applies_to=("decoder",),
                       fix_suggestion="Segments with has_info=true need highlight_text, condition, knowledge, explanation and highlight_color.")
def check_segment_fields(item, ctx):
    for idx, seg in _info_segments(item):
        for field_name in SEGMENT_INFO_FIELDS:
            if not is_non_empty_string(seg.get(field_name)):
                yield Finding(f"{ctx.location}.segments[{idx}].{field_name}",
                              f"has_info=true but {field_name} is missing")


@default_registry.rule("decoder.highlight-substring", "Blocker", "segments", applies_to=("decoder",),
                       fix_suggestion="Copy highlight_text verbatim from a contiguous span of original_question.")
def check_highlight_substring(item, ctx):
    question = item.get("original_question") if isinstance(item, dict) else None
    if not is_non_empty_string(question):
        return
    for idx, seg in _info_segments(item):
        highlight = seg.get("highlight_text")
        if is_non_empty_string(highlight) and highlight not in question:
            yield Finding(f"{ctx.location}.segments[{idx}].highlight_text",
                          "highlight_text not a substring of original_question")


@default_registry.rule("decoder.highlight-color", "Blocker", "segments", applies_to=("decoder",),
                       fix_suggestion=f"Use one of: {', '.join(HIGHLIGHT_COLORS)}.")
def check_highlight_color(item, ctx):
    for idx, seg in _info_segments(item):
        color = seg.get("highlight_color")
        if is_non_empty_string(color) and color not in HIGHLIGHT_COLORS:
            yield Finding(f"{ctx.location}.segments[{idx}].highlight_color",
                          f"highlight_color must be one of: {', '.join(HIGHLIGHT_COLORS)}")


@default_registry.rule("decoder.goal-segment", "Blocker", "segments", applies_to=("decoder",),
                       fix_suggestion="Mark the segment that states the decision goal with highlight_color blue.")
def check_goal_segment(item, ctx):
    if not _segments(item):
        return
    if not any(seg.get("highlight_color") == GOAL_COLOR for _, seg in _info_segments(item)):
        yield Finding(f"{ctx.location}.segments", "no segment is marked as the decision goal (blue)")


@default_registry.rule("decoder.narrative-coverage", "Blocker", "segments", applies_to=("decoder",),
                       fix_suggestion="Add the scenario or setup sentences of the question as segments.")
def check_narrative_coverage(item, ctx):
    question = item.get("original_question") if isinstance(item, dict) else None
    segments = _segments(item)
    if not segments or not is_non_empty_string(question):
        return
    for _, seg in segments:
        text = seg.get("text")
        if is_non_empty_string(text) and text[:NARRATIVE_PREFIX_CHARS] in question:
            return
    yield Finding(f"{ctx.location}.segments", "segments do not cover the narrative of original_question")


@default_registry.rule("decoder.trap-color", "Major", "segments", applies_to=("decoder",),
                       fix_suggestion="Colour trap segments red and keep blue for the decision goal.")
def check_trap_color(item, ctx):
    for idx, seg in _info_segments(item):
        if seg.get("is_trap") is not True:
            continue
        seg_loc = f"{ctx.location}.segments[{idx}]"
        color = seg.get("highlight_color")
        if color == GOAL_COLOR:
            yield Finding(seg_loc, "trap segment uses the decision goal colour (blue)")
        elif color != TRAP_COLOR:
            yield Finding(f"{seg_loc}.highlight_color", "is_trap=true segments should be red")


@default_registry.rule("decoder.trap-goal", "Major", "segments", applies_to=("decoder",),
                       fix_suggestion="Only mark misleading or irrelevant information as a trap.")
def check_trap_goal(item, ctx):
    for idx, seg in _info_segments(item):
        if seg.get("is_trap") is True and mentions_any(f"{seg.get('condition')} {seg.get('knowledge')}", TRAP_GOAL_WORDS):
            yield Finding(f"{ctx.location}.segments[{idx}]", "trap segment reads like the decision goal")


@default_registry.rule("decoder.segment-length", "Minor", "flow", applies_to=("decoder",),
                       fix_suggestion="Split long segments into smaller reading steps.")
def check_segment_length(item, ctx):
    for idx, seg in _info_segments(item):
        text = seg.get("text")
        if isinstance(text, str) and len(text) > MAX_SEGMENT_CHARS:
            yield Finding(f"{ctx.location}.segments[{idx}]", f"segment longer than {MAX_SEGMENT_CHARS} characters")


@default_registry.rule("decoder.adjacent-duplicate", "Major", "flow", applies_to=("decoder",),
                       fix_suggestion="Remove repeated segments so the reading flow advances.")
def check_adjacent_duplicate(item, ctx):
    segments = item.get("segments") if isinstance(item, dict) else None
    if not isinstance(segments, list):
        return
    for idx in range(1, len(segments)):
        prev, cur = segments[idx - 1], segments[idx]
        if not isinstance(prev, dict) or not isinstance(cur, dict):
            continue
        if is_non_empty_string(cur.get("text")) and cur.get("text") == prev.get("text"):
            yield Finding(f"{ctx.location}.segments[{idx}]", "segment repeats the previous segment's text")


# Decoder traps

@default_registry.rule("decoder.traps-list", "Blocker", "traps", applies_to=("decoder",),
                       fix_suggestion="Add at least one realistic student misconception.")
def check_traps_list(item, ctx):
    if not isinstance(item, dict) or item.get("traps") is None:
        return
    if not _non_empty_list(item["traps"]):
        yield Finding(f"{ctx.location}.traps", "traps must contain at least one entry")


@default_registry.rule("decoder.trap-shape", "Blocker", "traps", applies_to=("decoder",),
                       fix_suggestion="Write each trap as {title, description}.")
def check_trap_shape(item, ctx):
    traps = item.get("traps") if isinstance(item, dict) else None
    if not isinstance(traps, list):
        return
    for idx, trap in enumerate(traps):
        if not isinstance(trap, dict):
            yield Finding(f"{ctx.location}.traps[{idx}]", "trap must be an object")


@default_registry.rule("decoder.trap-content", "Major", "traps", applies_to=("decoder",),
                       fix_suggestion="Describe the wrong reasoning path a student would take.")
def check_trap_content(item, ctx):
    traps = item.get("traps") if isinstance(item, dict) else None
    if not isinstance(traps, list):
        return
    for idx, trap in enumerate(traps):
        if not isinstance(trap, dict):
            continue
        trap_loc = f"{ctx.location}.traps[{idx}]"
        description = trap.get("description")
        if not is_non_empty_string(trap.get("title")) or not is_non_empty_string(description):
            yield Finding(trap_loc, "trap needs a title and a description")
        elif len(description.strip()) < MIN_TRAP_DESCRIPTION_CHARS:
            yield Finding(trap_loc, "trap description is too short to describe a real misconception")


# Decoder solution

@default_registry.rule("decoder.solution-shape", "Blocker", "solution", applies_to=("decoder",),
                       fix_suggestion="Write the solution as a list of steps.")
def check_solution_shape(item, ctx):
    if not isinstance(item, dict) or item.get("solution") is None:
        return
    solution = item["solution"]
    if isinstance(solution, str):
        # legacy single-string solutions are accepted
        return
    if not _non_empty_list(solution):
        yield Finding(f"{ctx.location}.solution", "solution must be a list of at least one step")


@default_registry.rule("decoder.solution-step", "Blocker", "solution", applies_to=("decoder",),
                       fix_suggestion="Give every step step_desc, content, source_type and source_label.")
def check_solution_steps(item, ctx):
    solution = item.get("solution") if isinstance(item, dict) else None
    if not isinstance(solution, list):
        return
    for idx, step in enumerate(solution):
        step_loc = f"{ctx.location}.solution[{idx}]"
        if not isinstance(step, dict):
            yield Finding(step_loc, "solution step must be an object")
            continue
        for field_name in SOLUTION_STEP_FIELDS:
            if not is_non_empty_string(step.get(field_name)):
                yield Finding(f"{step_loc}.{field_name}", f"missing {field_name}")


@default_registry.rule("decoder.solution-source", "Blocker", "solution", applies_to=("decoder",),
                       fix_suggestion=f"Use source_type {' or '.join(SOURCE_TYPES)}.")
def check_solution_source(item, ctx):
    solution = item.get("solution") if isinstance(item, dict) else None
    if not isinstance(solution, list):
        return
    for idx, step in enumerate(solution):
        if not isinstance(step, dict):
            continue
        source_type = step.get("source_type")
        if is_non_empty_string(source_type) and source_type not in SOURCE_TYPES:
            yield Finding(f"{ctx.location}.solution[{idx}].source_type",
                          f"source_type must be one of: {', '.join(SOURCE_TYPES)}")


@default_registry.rule("decoder.solution-depth", "Major", "pedagogy", applies_to=("decoder",),
                       fix_suggestion="Add intermediate reasoning and a final conclusion step.")
def check_solution_depth(item, ctx):
    solution = item.get("solution") if isinstance(item, dict) else None
    if isinstance(solution, list) and len(solution) == 1:
        yield Finding(f"{ctx.location}.solution", "solution should have at least 2 steps")


@default_registry.rule("decoder.solution-conclusion", "Major", "pedagogy", applies_to=("decoder",),
                       fix_suggestion="State the final answer or decision in the last step.")
def check_solution_conclusion(item, ctx):
    solution = item.get("solution") if isinstance(item, dict) else None
    if not _non_empty_list(solution) or not isinstance(solution[-1], dict):
        return
    last = solution[-1]
    if not mentions_any(f"{last.get('step_desc') or ''} {last.get('content') or ''}", CONCLUSION_WORDS):
        yield Finding(f"{ctx.location}.solution[{len(solution) - 1}]", "last step does not state a conclusion")


# Practice structure and pedagogy

@default_registry.rule("practice.required-field", "Blocker", "structure", applies_to=("practice",),
                       fix_suggestion="Fill in id, type, question, answer and analysis.")
def check_practice_required(item, ctx):
    if not isinstance(item, dict):
        return
    for key in ["id", "type", "question", "analysis"]:
        if is_blank(item.get(key)):
            yield Finding(f"{ctx.location}.{key}", f"missing required field: {key}")
    answer = item.get("answer")
    if answer is None or answer == "" or answer == []:
        yield Finding(f"{ctx.location}.answer", "answer is missing or empty")


@default_registry.rule("practice.type", "Blocker", "structure", applies_to=("practice",),
                       fix_suggestion=f"Use type {', '.join(PRACTICE_TYPES)}.")
def check_practice_type(item, ctx):
    if not isinstance(item, dict) or is_blank(item.get("type")):
        return
    if item["type"] not in PRACTICE_TYPES:
        yield Finding(f"{ctx.location}.type", f"type must be one of: {', '.join(PRACTICE_TYPES)}")


@default_registry.rule("practice.options", "Blocker", "structure", applies_to=("practice",),
                       fix_suggestion="Give choice questions at least two options.")
def check_practice_options(item, ctx):
    if not isinstance(item, dict) or item.get("type") != "choice":
        return
    options = item.get("options")
    if not isinstance(options, list) or len(options) < 2:
        yield Finding(f"{ctx.location}.options", "choice questions need at least 2 options")


@default_registry.rule("practice.decoding", "Major", "pedagogy", applies_to=("practice",),
                       fix_suggestion="Break the question stem into a short decoding.")
def check_practice_decoding(item, ctx):
    if isinstance(item, dict) and not _non_empty_list(_analysis(item).get("decoding")):
        yield Finding(f"{ctx.location}.analysis.decoding", "analysis has no decoding of the question")


@default_registry.rule("practice.conditions", "Major", "pedagogy", applies_to=("practice",),
                       fix_suggestion="List the given conditions or the formulas the solution relies on.")
def check_practice_conditions(item, ctx):
    if isinstance(item, dict) and not _non_empty_list(_analysis(item).get("conditions")):
        severity = "Major" if item.get("type") == "essay" else "Minor"
        yield Finding(f"{ctx.location}.analysis.conditions", "analysis lists no conditions or key knowledge", severity)


@default_registry.rule("practice.traps", "Major", "pedagogy", applies_to=("practice",),
                       fix_suggestion="Point out the mistakes students commonly make.")
def check_practice_traps(item, ctx):
    if isinstance(item, dict) and item.get("type") == "essay" and not _non_empty_list(_analysis(item).get("traps")):
        yield Finding(f"{ctx.location}.analysis.traps", "essay question has no trap analysis")


@default_registry.rule("practice.steps", "Major", "pedagogy", applies_to=("practice",),
                       fix_suggestion="Split the derivation into at least two steps.")
def check_practice_steps(item, ctx):
    if not isinstance(item, dict):
        return
    steps = _analysis(item).get("steps")
    if not isinstance(steps, list) or len(steps) < 2:
        severity = "Major" if item.get("type") == "essay" else "Minor"
        yield Finding(f"{ctx.location}.analysis.steps", "analysis has fewer than 2 steps", severity)


@default_registry.rule("practice.option-analysis", "Major", "pedagogy", applies_to=("practice",),
                       fix_suggestion="Explain why each wrong option is wrong.")
def check_practice_option_analysis(item, ctx):
    if isinstance(item, dict) and item.get("type") == "choice" and not _non_empty_list(_analysis(item).get("option_analysis")):
        yield Finding(f"{ctx.location}.analysis.option_analysis", "choice question has no option analysis")


# Technical rules, run on every string of the item

def _string_findings(item, ctx, predicate, description) -> Iterator[Finding]:
    for idx, (path, text) in enumerate(iter_strings(item)):
        if text.strip() and predicate(text):
            where = path.lstrip(".") or "(item)"
            yield Finding(f"{ctx.location}.strings[{idx}]", f"{description} at {where}")


@default_registry.rule("technical.unsafe-escape", "Blocker", "latex", tier="technical",
                       fix_suggestion="Escape backslashes and keep only valid LaTeX commands such as \\\\frac or \\\\{.")
def check_unsafe_escape(item, ctx):
    return _string_findings(item, ctx, lambda s: bool(_UNSAFE_BACKSLASH.search(s)), "unsafe backslash escape")


@default_registry.rule("technical.percent-in-math", "Minor", "latex", tier="technical",
                       fix_suggestion="Move percent signs outside $...$ (write 98% instead of $98%$).")
def check_percent_in_math(item, ctx):
    return _string_findings(item, ctx, lambda s: bool(_PERCENT_IN_MATH.search(s)), "percent sign inside math delimiters")


def has_currency_math_mix(text: str) -> bool:
    return bool(_CURRENCY_DOLLAR.search(text) and _MATH_DOLLAR_PAIR.search(text) and _MATH_COMMAND.search(text))


@default_registry.rule("technical.currency-math-mix", "Major", "currency", tier="technical",
                       fix_suggestion="Write amounts as text (120 dollars) and put formulas in \\(...\\).")
def check_currency_math_mix(item, ctx):
    return _string_findings(item, ctx, has_currency_math_mix, "currency $ mixed with $...$ math")


@default_registry.rule("technical.forbidden-token", "Blocker", "json_safety", tier="technical", applies_to=("decoder",),
                       fix_suggestion="Remove Markdown headings, comment markers and citation tokens.")
def check_forbidden_token(item, ctx):
    return _string_findings(item, ctx, lambda s: bool(_FORBIDDEN_TOKEN.search(s)), "authoring token (heading, comment or citation)")


# Heuristic tier

@dataclass
class KeywordRule:
    """A concept that must be accompanied by explanatory wording.

    Fires when every group in concept_groups has at least one term in the
    text and none of companion_terms do. Lexical only; no semantics.
    """
    rule_id: str
    concept_groups: List[List[str]]
    companion_terms: List[str]
    description: str
    fix_suggestion: str
    severity: str = "Major"
    module: str = "logic"
    applies_to: Tuple[str, ...] = ("decoder", "practice")
    text_of: Callable[[Any, str], str] = field(default=heuristic_text)

    def matches(self, text: str) -> bool:
        if not all(mentions_any(text, group) for group in self.concept_groups):
            return False
        return not mentions_any(text, self.companion_terms)

    def to_rule(self) -> Rule:
        def check(item, ctx):
            if isinstance(item, dict) and self.matches(self.text_of(item, ctx.content_type)):
                yield Finding(ctx.location, self.description)
        return Rule(self.rule_id, self.severity, self.module, "heuristic", self.applies_to, check, self.fix_suggestion)


def register_keyword_rule(registry: RuleRegistry, keyword_rule: KeywordRule) -> Rule:
    """Add a keyword heuristic to a registry."""
    return registry.register(keyword_rule.to_rule())


DOMAIN_KEYWORD_RULES = [
    KeywordRule(
        rule_id="logic.opportunity-cost",
        concept_groups=[["opportunity cost", "机会成本"]],
        companion_terms=["next best", "next-best", "alternative", "forgone", "次优", "下一个最佳"],
        description="opportunity cost used without naming the next-best alternative",
        fix_suggestion="State that only the next-best alternative counts as the opportunity cost."
    ),
    KeywordRule(
        rule_id="logic.sunk-cost",
        concept_groups=[["sunk cost", "cannot be refunded", "沉没成本"]],
        companion_terms=["ignore", "excluded", "exclude", "irrelevant", "不计入", "忽略"],
        description="sunk cost mentioned without saying it is excluded from the decision",
        fix_suggestion="Say explicitly that sunk costs are ignored in the current decision."
    ),
    KeywordRule(
        rule_id="logic.marginal-analysis",
        concept_groups=[["marginal benefit", "mb"], ["marginal cost", "mc"]],
        companion_terms=["mb >= mc", "mb > mc", "mb=mc", "mb = mc", "mb ≥ mc", "边际收益", "边际成本"],
        description="marginal benefit and marginal cost used without a comparison rule",
        fix_suggestion="Write the MB versus MC comparison rule the decision follows."
    ),
]

for _keyword_rule in DOMAIN_KEYWORD_RULES:
    register_keyword_rule(default_registry, _keyword_rule)


@default_registry.rule("logic.goal-wording", "Major", "logic", tier="heuristic", applies_to=("decoder",),
                       fix_suggestion="Reserve blue for the segment that states what must be decided.")
def check_goal_wording(item, ctx):
    for idx, seg in _info_segments(item):
        if seg.get("highlight_color") != GOAL_COLOR:
            continue
        if not mentions_any(f"{seg.get('text')} {seg.get('condition')} {seg.get('knowledge')}", GOAL_WORDS):
            yield Finding(f"{ctx.location}.segments[{idx}].highlight_color",
                          "blue segment does not read like a decision goal")


@default_registry.rule("logic.structure-wording", "Major", "logic", tier="heuristic", applies_to=("decoder",),
                       fix_suggestion="Use yellow for plain conditions; green is for sample, population or design information.")
def check_structure_wording(item, ctx):
    for idx, seg in _info_segments(item):
        if seg.get("highlight_color") != "green":
            continue
        if not mentions_any(f"{seg.get('text')} {seg.get('knowledge')}", STRUCTURE_WORDS):
            yield Finding(f"{ctx.location}.segments[{idx}].highlight_color",
                          "green segment carries no structure, sample or design information")
