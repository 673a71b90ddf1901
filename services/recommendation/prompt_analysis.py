from __future__ import annotations
import re
from typing import List

from models.recommendation import PromptAnalysis
from services.catalog import ToolSpec
from services.features.text_features import (
    NEGATIVE_WORDS,
    POSITIVE_WORDS,
    REQUIREMENT_WORDS,
    calculate_prompt_complexity,
)

MAX_PROMPT_KEYWORDS = 10

CATEGORY_KEYWORDS = {
    "creative": ("creative", "art", "artistic", "abstract", "imagination"),
    "professional": ("professional", "commercial", "business", "product", "showcase"),
    "style": ("style", "retro", "modern", "classic", "vintage"),
    "editor": ("edit", "modify", "adjust", "change", "fix"),
}

STYLE_KEYWORDS = {
    "realistic": ("realistic", "real", "photo"),
    "cartoon": ("cartoon", "animation", "anime", "cute"),
    "oil_painting": ("oil painting", "painting", "canvas"),
    "watercolor": ("watercolor", "pastel", "soft"),
    "sketch": ("sketch", "pencil", "line art"),
}

REQUIREMENT_PHRASES = REQUIREMENT_WORDS + ("should", "ensure", "include", "need")

_SUBJECT_PATTERN = re.compile(r"\b(?:a|an|one)\s+([a-z][a-z-]+)")
_NON_WORD = re.compile(r"[^\w\s]")


def prompt_keywords(prompt: str) -> List[str]:
    words = _NON_WORD.sub(" ", prompt.lower()).split()
    return [w for w in words if len(w) > 1][:MAX_PROMPT_KEYWORDS]


def analyze_sentiment_label(prompt: str) -> str:
    lowered = prompt.lower()
    positive = sum(1 for w in POSITIVE_WORDS if w in lowered)
    negative = sum(1 for w in NEGATIVE_WORDS if w in lowered)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def categorize_prompt(keywords: List[str]) -> str:
    for category, words in CATEGORY_KEYWORDS.items():
        if any(word in kw for word in words for kw in keywords):
            return category
    return "creative"


def detect_art_style(prompt: str) -> str:
    lowered = prompt.lower()
    for style, words in STYLE_KEYWORDS.items():
        if any(word in lowered for word in words):
            return style
    return "realistic"


def extract_subjects(prompt: str) -> List[str]:
    return _SUBJECT_PATTERN.findall(prompt.lower())[:3]


def analyze_prompt(prompt: str) -> PromptAnalysis:
    keywords = prompt_keywords(prompt)
    lowered = prompt.lower()
    return PromptAnalysis(
        keywords=keywords,
        sentiment=analyze_sentiment_label(prompt),
        complexity=calculate_prompt_complexity(prompt),
        category=categorize_prompt(keywords),
        style=detect_art_style(prompt),
        subjects=extract_subjects(prompt),
        length=len(prompt),
        is_detailed=len(prompt) > 100,
        has_specific_requirements=any(word in lowered for word in REQUIREMENT_PHRASES),
    )


def prompt_match_score(tool: ToolSpec, analysis: PromptAnalysis) -> float:
    score = 0.5
    if tool.category == analysis.category:
        score += 0.3
    matching = [
        kw for kw in analysis.keywords
        if any(tk in kw or kw in tk for tk in tool.keywords)
    ]
    score += len(matching) / max(len(analysis.keywords), 1) * 0.2
    return min(score, 1.0)
