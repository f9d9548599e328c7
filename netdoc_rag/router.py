"""Heuristic intent classification for technical-documentation queries.

Defines:
- PRIORITY: fixed category priority, highest first.
- Rule: one (category, predicate, weight) entry of the declared rule list.
- RULES: the ordered rule list (keyword and anchored-phrase predicates, Chinese and English).
- IntentClassifier.detect: score a query (optionally with recent history) into an IntentResult.
- IntentClassifier.retrieval_params: per-intent retrieval knobs.
- detect: module-level convenience using a shared classifier.

Scoring: each matching rule adds its fixed weight to its category. The winner is
the highest-priority category whose score exceeds zero, not the highest score;
confidence is the winner's score relative to the best score of the query.
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from netdoc_rag.config import settings
from netdoc_rag.lexicon import Lexicon, content_terms, is_cjk
from netdoc_rag.schemas import Intent, IntentContext, IntentResult


PRIORITY: Tuple[Intent, ...] = (
    Intent.TROUBLESHOOT,
    Intent.PERFORMANCE,
    Intent.BEST_PRACTICE,
    Intent.VERIFICATION,
    Intent.CONFIGURATION,
    Intent.EXPLANATION,
    Intent.COMPARISON,
    Intent.COMMAND,
    Intent.QUESTION,
    Intent.GENERAL,
)

KEYWORD_WEIGHT = 0.3
PATTERN_WEIGHT = 0.5


@dataclass(frozen=True)
class Rule:
    """A scoring rule.

    Attributes:
        category: Intent credited when the predicate matches.
        predicate: Callable over the lowercased query.
        weight: Score added on match.
        label: Human-readable reason recorded in IntentResult.reasons.
    """
    category: Intent
    predicate: Callable[[str], bool]
    weight: float
    label: str


def _keyword(category: Intent, word: str, scale: float) -> Rule:
    if is_cjk(word):
        pred = lambda q, w=word: w in q
    else:
        rx = re.compile(rf"(?<![a-z0-9-]){re.escape(word)}(?![a-z0-9-])")
        pred = lambda q, rx=rx: bool(rx.search(q))
    return Rule(category, pred, round(KEYWORD_WEIGHT * scale, 4), f"keyword: {word}")


def _pattern(category: Intent, source: str, scale: float) -> Rule:
    rx = re.compile(source, re.IGNORECASE)
    return Rule(category, lambda q, rx=rx: bool(rx.search(q)), round(PATTERN_WEIGHT * scale, 4), f"pattern: {source}")


# category -> (scale, keywords, anchored phrase patterns); expanded below in this order.
_RULE_TABLE: Sequence[Tuple[Intent, float, Sequence[str], Sequence[str]]] = (
    (
        Intent.TROUBLESHOOT, 1.3,
        ("问题", "错误", "失败", "不工作", "无法", "异常", "调试", "排查", "诊断", "起不来", "启不动",
         "启动失败", "报错", "故障", "error", "fail", "failed", "failure", "issue", "problem",
         "not working", "debug", "troubleshoot", "broken"),
        (r"^(为什么|为啥).*(不|无法|失败|错误)", r"(出错|报错|异常|故障|起不来|启不动|无法启动|启动失败)",
         r"^(debug|troubleshoot|diagnose)", r"(报错|出错|异常).*(如何|怎么|怎样|调试)",
         r"^why\b.*\b(not|fail\w*|error|down|drop\w*)\b"),
    ),
    (
        Intent.PERFORMANCE, 0.9,
        ("优化", "性能", "调优", "提升", "加速", "改进", "效率", "optimize", "performance", "tune",
         "tuning", "improve", "latency", "throughput"),
        (r"^(如何|怎么|怎样).*(优化|提升|改进|加速)", r"^(optimi[sz]e|performance|tune)",
         r"(提升|优化|改进|加速).*(如何|怎么|怎样)"),
    ),
    (
        Intent.BEST_PRACTICE, 0.85,
        ("推荐", "建议", "标准", "最佳", "最好", "通常", "best practice", "best practices",
         "recommend", "recommended", "suggest"),
        (r"^(推荐|建议|最佳|标准)", r"^(best practice|recommended)"),
    ),
    (
        Intent.VERIFICATION, 0.95,
        ("检查", "验证", "查看", "显示", "查询", "check", "verify", "show", "display", "list", "nv show"),
        (r"^(检查|验证|查看|查询).*(状态|配置|结果|设置)", r"^(nv show|show|display|list)\b", r"^(查看|显示)"),
    ),
    (
        Intent.CONFIGURATION, 1.0,
        ("配置", "设置", "启用", "禁用", "修改", "更改", "configure", "setup", "set up", "enable",
         "disable", "set", "modify", "nv set", "nv config"),
        (r"^(配置|设置|启用|禁用|修改|更改)\s*\S+", r"^(nv set|nv config)", r"^(enable|disable|configure)\s",
         r"(启用|禁用).*(如何|怎么|怎样)", r"(如何|怎么|怎样).*(启用|禁用|配置|设置)",
         r"^how (do i|to|can i) (configure|set ?up|enable|disable)\b"),
    ),
    (
        Intent.EXPLANATION, 0.9,
        ("什么是", "定义", "说明", "原理", "解释", "介绍", "详解", "what is", "definition", "explain",
         "describe", "overview"),
        (r"^(什么是|什么叫|定义)", r"^(explain|describe|define)", r"(的原理|的概念|的含义)"),
    ),
    (
        Intent.COMPARISON, 0.8,
        ("对比", "区别", "差异", "优缺点", "比较", "相比", "不同", "vs", "versus", "difference", "compare"),
        (r"^(对比|比较|区别).*(和|与|vs)", r"(vs\.?|versus|和.*的区别)"),
    ),
    (
        Intent.COMMAND, 1.2,
        ("执行", "运行", "命令", "how to", "how do", "run", "execute", "command"),
        (r"^(如何|怎么|怎样).*(查询|执行|运行|操作|显示|查看|配置|设置)", r"^(nv show|show|display|list|get)\s"),
    ),
    (
        Intent.QUESTION, 0.8,
        ("为什么", "是否", "能否", "可以", "会不会", "why", "whether", "can", "could"),
        (r"^(为什么|为啥)", r"^(是否|能否|可以)", r"[吗？?]$"),
    ),
)


def _expand(table) -> List[Rule]:
    rules: List[Rule] = []
    for category, scale, keywords, patterns in table:
        rules.extend(_keyword(category, kw, scale) for kw in keywords)
        rules.extend(_pattern(category, p, scale) for p in patterns)
    return rules


RULES: Tuple[Rule, ...] = tuple(_expand(_RULE_TABLE))

ERROR_PATTERN = re.compile(r"error|fail|problem|issue|异常|错误|问题|失败|故障|报错", re.IGNORECASE)
COMMAND_PATTERN = re.compile(
    r"(?<![a-z])(show|set|unset|config\w*|enable|disable|nv|netq|vtysh|command)(?![a-z])|命令", re.IGNORECASE
)
PARAMETER_PATTERN = re.compile(r"\d+|[a-f0-9]{2}:[a-f0-9]{2}|/\d+", re.IGNORECASE)
CONDITION_PATTERN = re.compile(r"和|或|同时|另外|此外|(?<![a-z])(and|or|also|both)(?![a-z])", re.IGNORECASE)
CONNECTIVE_PATTERN = re.compile(
    r"\s*(?:(?<![a-z])(?:and then|after that|then)(?![a-z])|然后|接着|之后|随后|；|;)\s*", re.IGNORECASE
)

# Base retrieval knobs and per-intent adjustments (limit, rerank candidates).
_BASE_PARAMS = {"limit": 20, "rerank_candidates": 60}
_PARAM_ADJUSTMENTS: Dict[Intent, Dict[str, int]] = {
    Intent.TROUBLESHOOT: {"limit": 25},
    Intent.EXPLANATION: {"limit": 15},
    Intent.COMPARISON: {"limit": 25},
}


def split_clauses(query: str) -> List[str]:
    """Split a query on connective markers ("then", "and then", "然后", "；", ...)."""
    return [c.strip() for c in CONNECTIVE_PATTERN.split(query) if c and c.strip()]


class IntentClassifier:
    """Rule-based intent classifier over a declared, ordered rule list."""

    def __init__(
        self,
        rules: Sequence[Rule] = RULES,
        confidence_floor: Optional[float] = None,
        history_turns: Optional[int] = None,
        lexicon: Optional[Lexicon] = None,
    ):
        self.rules = tuple(rules)
        self.confidence_floor = settings.INTENT_CONFIDENCE_FLOOR if confidence_floor is None else confidence_floor
        self.history_turns = settings.INTENT_HISTORY_TURNS if history_turns is None else history_turns
        self.lexicon = lexicon
        # the same clause is scored for sub_intents and again when the pipeline fans out
        self._winner = lru_cache(maxsize=512)(self._rank)

    def _score(self, text: str) -> Tuple[Dict[Intent, float], Dict[Intent, List[str]]]:
        q = text.strip().lower()
        scores: Dict[Intent, float] = {}
        reasons: Dict[Intent, List[str]] = {}
        for rule in self.rules:
            if rule.predicate(q):
                scores[rule.category] = scores.get(rule.category, 0.0) + rule.weight
                reasons.setdefault(rule.category, []).append(rule.label)
        return scores, reasons

    def _rank(self, text: str) -> Tuple[Intent, float, Tuple[str, ...]]:
        scores, reasons = self._score(text)
        for category in PRIORITY:
            if scores.get(category, 0.0) > 0:
                best = max(scores.values())
                return category, min(1.0, scores[category] / best), tuple(reasons[category])
        return Intent.GENERAL, 0.5, ("no rule matched",)

    def clause_intents(self, query: str) -> List[Tuple[str, Intent]]:
        """Each connective-separated clause of the query with its winning intent."""
        return [(clause, self._winner(clause)[0]) for clause in split_clauses(query)]

    def _context(self, query: str, clauses: List[str]) -> IntentContext:
        points = 0
        if len(query) > 50:
            points += 1
        if len(content_terms(query, self.lexicon)) > 8:
            points += 1
        if len(clauses) > 1 or CONDITION_PATTERN.search(query):
            points += 1
        has_parameter = bool(PARAMETER_PATTERN.search(query))
        if has_parameter:
            points += 1
        complexity = "complex" if points >= 3 else "medium" if points >= 1 else "simple"
        return IntentContext(
            has_error=bool(ERROR_PATTERN.search(query)),
            has_command=bool(COMMAND_PATTERN.search(query)),
            has_parameter=has_parameter,
            complexity=complexity,
        )

    def _classify(self, text: str) -> IntentResult:
        intent, confidence, reasons = self._winner(text)
        clauses = split_clauses(text)
        subs: List[Intent] = []
        if len(clauses) > 1:
            for _, sub in self.clause_intents(text):
                if sub not in (intent, Intent.GENERAL) and sub not in subs:
                    subs.append(sub)
        return IntentResult(
            intent=intent,
            confidence=round(confidence, 4),
            reasons=list(reasons),
            sub_intents=subs,
            context=self._context(text, clauses),
        )

    def detect(self, query: str, history: Optional[Sequence[str]] = None) -> IntentResult:
        """Classify a query into an intent with confidence, reasons, and sub-intents.

        Args:
            query: The raw user query.
            history: Previous conversation turns, oldest first.

        Returns:
            IntentResult: Classification of the bare query, or of the query joined
                with the most recent history turns when the bare result is general
                or below the confidence floor.
        """
        result = self._classify(query)
        weak = result.intent == Intent.GENERAL or result.confidence < self.confidence_floor
        recent = [h for h in (history or []) if h and h.strip()][-self.history_turns:] if self.history_turns > 0 else []
        if weak and recent:
            combined = " ".join([query.strip(), *[h.strip() for h in recent]])
            ctx_result = self._classify(combined)
            return ctx_result.model_copy(update={"reasons": [*ctx_result.reasons, "context: recent history"]})
        return result

    def retrieval_params(self, intent: Intent, confidence: float) -> Dict[str, float]:
        """Retrieval knobs for an intent.

        Args:
            intent: Classified intent.
            confidence: Classification confidence.

        Returns:
            Dict[str, float]: limit, rerank_candidates and min_score (fused RRF scale).
                Low-confidence classifications relax min_score by 20%.
        """
        params: Dict[str, float] = {**_BASE_PARAMS, **_PARAM_ADJUSTMENTS.get(intent, {})}
        min_score = settings.min_score_for(intent.value)
        if confidence < 0.5:
            min_score *= 0.8
        params["min_score"] = min_score
        return params


_default_classifier: Optional[IntentClassifier] = None


def detect(query: str, history: Optional[Sequence[str]] = None) -> IntentResult:
    """Classify with a shared default IntentClassifier."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = IntentClassifier()
    return _default_classifier.detect(query, history)
