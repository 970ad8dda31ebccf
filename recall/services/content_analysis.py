"""
Content analysis for memory ingestion.

Turns raw conversational text into keywords, concepts, an importance
baseline, a compressed representation and a memory type.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass

import recall.config as config
from recall.models import MemoryType, Sentiment

logger = config.logger

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "this", "that", "these", "those", "i", "you", "he", "she",
        "it", "we", "they", "me", "my", "your", "our", "their", "its", "from",
        "as", "if", "so", "than", "then", "there", "here", "what", "which",
        "who", "whom", "when", "where", "why", "how", "can", "about", "into",
        "also", "just", "some", "any", "all", "not", "no", "very", "more",
        "most", "such", "only", "own", "same", "too", "them", "him", "her",
        "his", "hers", "ours", "yours", "am", "shall", "may", "might", "must",
    }
)

CONCEPT_SIGNALS = (
    "strength", "workout", "exercise", "training", "muscle", "cardio",
    "nutrition", "protein", "endurance", "recover", "mobility", "flexib",
    "database", "perform", "architect", "security", "deploy", "algorithm",
    "program", "function", "network", "memory", "system", "design", "optim",
    "authent", "schema", "server",
)

IMPORTANCE_SIGNALS = ("key", "important", "critical", "essential", "must", "remember", "note")

POSITIVE_WORDS = frozenset(
    {
        "good", "great", "excellent", "amazing", "perfect", "love", "like",
        "helpful", "useful", "effective", "successful", "positive", "benefit",
        "enjoy", "happy", "thanks",
    }
)

NEGATIVE_WORDS = frozenset(
    {
        "bad", "terrible", "awful", "hate", "dislike", "problem", "issue",
        "error", "fail", "difficult", "hard", "negative", "concern", "worry",
        "pain", "injury", "tired",
    }
)

QUESTION_STARTERS = (
    "how", "what", "why", "when", "where", "who", "which", "can", "could",
    "would", "should", "is", "are", "do", "does", "did",
)

REQUEST_PHRASES = (
    "i want", "i need", "i would like", "i'd like", "can you", "could you",
    "please", "help me", "show me", "give me", "create a", "make me",
)

INTENT_PATTERNS = (
    ("problem_solving", ("solve", "fix", "debug", "troubleshoot")),
    ("learning", ("learn", "understand", "explain", "teach")),
    ("creative", ("create", "design", "build", "generate")),
    ("analysis", ("analyze", "analyse", "compare", "evaluate", "review")),
    ("task", ("do", "perform", "execute", "run")),
)

MAX_KEYWORDS = 10
MAX_CONCEPTS = 5
MIN_KEYWORD_LENGTH = 4
MIN_CONCEPT_LENGTH = 6
COMPRESSION_TOKEN_THRESHOLD = 200
TRUNCATION_CHAR_THRESHOLD = 200
TRUNCATION_HEAD_CHARS = 100
TRUNCATION_TAIL_CHARS = 80
WORKING_MEMORY_MAX_CHARS = 40

_WORD_RE = re.compile(r"[^\w\s]")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_REPEATED_PUNCT_RE = re.compile(r"([.!?,;:])(?:\s*[.!?,;:])+")
_SPACE_RE = re.compile(r"\s+")


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough token estimate shared by ingestion and context assembly."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def tokenize(text: str) -> list[str]:
    return _WORD_RE.sub(" ", text.lower()).split()


def compression_ratio(original_tokens: int, compressed_tokens: int) -> float:
    if original_tokens <= 0:
        return 1.0
    return compressed_tokens / original_tokens


@dataclass
class ContentAnalysis:
    keywords: list[str]
    concepts: list[str]
    sentiment: Sentiment
    importance: float
    inferred_intent: str
    is_question: bool
    is_request: bool
    complexity: float
    topic: str
    compressed: str
    token_count: int
    compressed_token_count: int

    @property
    def compression_ratio(self) -> float:
        return compression_ratio(self.token_count, self.compressed_token_count)


class ContentAnalyzer:
    def __init__(self, chars_per_token: int = 4):
        self.chars_per_token = chars_per_token

    def analyze(self, text: str, is_query: bool) -> ContentAnalysis:
        tokens = tokenize(text)
        keywords = self.extract_keywords(tokens)
        concepts = self.extract_concepts(tokens)
        compressed = self.compress(text)
        token_count = estimate_tokens(text, self.chars_per_token)
        compressed_token_count = estimate_tokens(compressed, self.chars_per_token)
        return ContentAnalysis(
            keywords=keywords,
            concepts=concepts,
            sentiment=self.sentiment(tokens),
            importance=self.importance(text, tokens, keywords, is_query),
            inferred_intent=self.detect_intent(text, is_query),
            is_question=self.is_question(text),
            is_request=self.is_request(text),
            complexity=self.complexity(text, concepts),
            topic=self.topic(text, concepts),
            compressed=compressed,
            token_count=token_count,
            compressed_token_count=compressed_token_count,
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_keywords(self, tokens: list[str]) -> list[str]:
        candidates = [
            token for token in tokens
            if len(token) >= MIN_KEYWORD_LENGTH and token not in STOP_WORDS
        ]
        # most_common keeps first-seen order for equal counts
        return [word for word, _ in Counter(candidates).most_common(MAX_KEYWORDS)]

    def extract_concepts(self, tokens: list[str]) -> list[str]:
        concepts: list[str] = []
        for token in tokens:
            if len(token) < MIN_CONCEPT_LENGTH or token in concepts:
                continue
            if any(signal in token for signal in CONCEPT_SIGNALS):
                concepts.append(token)
                if len(concepts) >= MAX_CONCEPTS:
                    break
        return concepts

    def importance(self, text: str, tokens: list[str], keywords: list[str], is_query: bool) -> float:
        length_score = min(len(text) / 1000, 1.0)
        density = len(set(keywords)) / len(tokens) if tokens else 0.0
        score = 0.3 * length_score + 0.3 * min(density, 1.0) + (0.3 if is_query else 0.1)
        return max(0.0, min(score, 1.0))

    def sentiment(self, tokens: list[str]) -> Sentiment:
        positive = sum(1 for token in tokens if token in POSITIVE_WORDS)
        negative = sum(1 for token in tokens if token in NEGATIVE_WORDS)
        if positive > negative:
            return Sentiment.positive
        if negative > positive:
            return Sentiment.negative
        return Sentiment.neutral

    def is_question(self, text: str) -> bool:
        stripped = text.strip().lower()
        if "?" in stripped:
            return True
        first = stripped.split(maxsplit=1)[0] if stripped else ""
        return first in QUESTION_STARTERS

    def is_request(self, text: str) -> bool:
        lowered = text.lower()
        return any(phrase in lowered for phrase in REQUEST_PHRASES)

    def detect_intent(self, text: str, is_query: bool) -> str:
        if not is_query:
            return "response"
        if self.is_question(text):
            return "question"
        if self.is_request(text):
            return "request"
        words = set(tokenize(text))
        for intent, markers in INTENT_PATTERNS:
            if words.intersection(markers):
                return intent
        return "conversation"

    def complexity(self, text: str, concepts: list[str]) -> float:
        score = min(len(text) / 2000, 0.3)
        sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
        if sentences:
            score += min((len(text) / len(sentences)) / 100, 0.2)
        score += min(len(concepts) / 10, 0.3)
        if "```" in text or "def " in text or "function" in text or "class " in text:
            score += 0.2
        return min(score, 1.0)

    def topic(self, text: str, concepts: list[str]) -> str:
        if concepts:
            return concepts[0]
        return " ".join(text.split()[:3]).lower()

    # ------------------------------------------------------------------
    # Compression
    # ------------------------------------------------------------------

    def compress(self, text: str) -> str:
        original_tokens = estimate_tokens(text, self.chars_per_token)
        if original_tokens < COMPRESSION_TOKEN_THRESHOLD:
            if len(text) <= TRUNCATION_CHAR_THRESHOLD:
                return text
            compressed = self._truncate_head_tail(text)
        else:
            compressed = self._aggressive(text)
            if estimate_tokens(compressed, self.chars_per_token) >= original_tokens:
                compressed = self._truncate_half(text)

        logger.debug(
            "Compressed memory content",
            extra={
                "original_tokens": original_tokens,
                "compression_ratio": compression_ratio(
                    original_tokens, estimate_tokens(compressed, self.chars_per_token)
                ),
            },
        )
        return compressed

    def _truncate_head_tail(self, text: str) -> str:
        head = text[:TRUNCATION_HEAD_CHARS].rstrip()
        tail = text[-TRUNCATION_TAIL_CHARS:].lstrip()
        return f"{head} ... {tail}"

    def _truncate_half(self, text: str) -> str:
        return text[: len(text) // 2].rstrip() + " ..."

    def _aggressive(self, text: str) -> str:
        sentences = [s.strip() for s in _SENTENCE_RE.split(text.strip()) if s.strip()]
        if not sentences:
            return text
        kept = [sentences[0]]
        for sentence in sentences[1:-1]:
            lowered = sentence.lower()
            if any(re.search(rf"\b{signal}\b", lowered) for signal in IMPORTANCE_SIGNALS):
                kept.append(sentence)
        if len(sentences) > 1 and sentences[-1] not in kept:
            kept.append(sentences[-1])

        words = " ".join(kept).split()
        stripped = [word for word in words if _WORD_RE.sub("", word.lower()) not in STOP_WORDS]
        result = " ".join(stripped)
        result = _REPEATED_PUNCT_RE.sub(r"\1", result)
        return _SPACE_RE.sub(" ", result).strip()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, analysis: ContentAnalysis, text: str, is_query: bool) -> MemoryType:
        """Rule order decides ties: request intent beats complexity beats concepts."""
        if analysis.is_question or analysis.is_request:
            return MemoryType.episodic
        if analysis.complexity > 0.6 or analysis.importance > 0.7:
            return MemoryType.long_term
        if len(analysis.concepts) >= 3:
            return MemoryType.semantic
        if not is_query and len(text.strip()) < WORKING_MEMORY_MAX_CHARS:
            return MemoryType.working
        return MemoryType.short_term

