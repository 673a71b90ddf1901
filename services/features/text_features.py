from __future__ import annotations
from typing import Any, Dict, List, Optional
import re

from utils.hashing import stable_hash64

# Scoring lexicons and weights. Changing any of these changes scores; bump
# SCORING_VERSION in services.recommendation when they move.

EMBEDDING_DIMENSIONS = 128
MAX_KEYWORDS = 20

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "is", "are", "was", "were", "be", "it", "this", "that",
    "as", "into", "my", "me", "its",
}

MODIFIER_WORDS = ("beautiful", "detailed", "intricate", "complex", "ornate", "elegant")
TECHNICAL_WORDS = ("resolution", "render", "rendering", "texture", "lighting", "composition")
REQUIREMENT_WORDS = ("must", "require", "required")

COMPLEXITY_WEIGHTS = {
    "length": 0.3,
    "punctuation": 0.2,
    "modifiers": 0.2,
    "technical": 0.2,
    "requirements": 0.1,
}

SEMANTIC_CATEGORIES: Dict[str, tuple] = {
    "portrait": ("portrait", "face", "person", "people", "headshot", "selfie"),
    "landscape": ("landscape", "mountain", "sea", "ocean", "forest", "sky", "lake", "nature"),
    "abstract": ("abstract", "geometric", "pattern", "shapes"),
    "realistic": ("realistic", "photorealistic", "real", "photo", "lifelike"),
    "fantasy": ("fantasy", "magic", "dragon", "fairy", "myth", "mythical"),
    "futuristic": ("futuristic", "sci-fi", "cyberpunk", "robot", "neon", "space"),
    "vintage": ("vintage", "retro", "old", "classic", "antique"),
}

POSITIVE_WORDS = ("beautiful", "elegant", "pretty", "exquisite", "gorgeous", "warm", "bright")
NEGATIVE_WORDS = ("dark", "scary", "sad", "cold", "shabby", "gloomy")
CREATIVE_WORDS = ("creative", "unique", "imagination", "imaginative", "dreamy", "surreal", "abstract")
SPECIFIC_WORDS = ("specific", "exact", "precisely", "exactly", "detailed")
COLOR_WORDS = (
    "red", "orange", "yellow", "green", "blue", "purple", "pink", "black",
    "white", "gray", "grey", "brown", "gold", "silver",
)
QUALITY_PARAMETERS = ("resolution", "quality", "style", "seed")

DEFAULT_PARAMETERS: Dict[str, Any] = {
    "number_of_images": 1,
    "quality": "medium",
    "size": "medium",
}

_PUNCTUATION = re.compile(r"[,.;:!?()\[\]\-\"']")
_NON_WORD = re.compile(r"[^\w\s]")
_NUMBER = re.compile(r"\d+")


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def _count_terms(text: str, terms) -> int:
    return sum(1 for term in terms if term in text)


def extract_keywords(prompt: str) -> List[str]:
    words = _NON_WORD.sub(" ", prompt.lower()).split()
    keywords = [w for w in words if len(w) > 1 and w not in STOP_WORDS]
    return keywords[:MAX_KEYWORDS]


def calculate_prompt_complexity(prompt: str) -> float:
    """
    Weighted sum of five capped factors, each in [0, 1]:

    - length: characters / 200
    - punctuation density: punctuation marks / 10
    - modifier words: matches / 5
    - technical vocabulary: matches / 3
    - explicit requirement: 1 when must/require/required appears
    """
    lowered = prompt.lower()
    length_factor = min(len(prompt) / 200.0, 1.0)
    punctuation_factor = min(len(_PUNCTUATION.findall(prompt)) / 10.0, 1.0)
    modifier_factor = min(_count_terms(lowered, MODIFIER_WORDS) / 5.0, 1.0)
    technical_factor = min(_count_terms(lowered, TECHNICAL_WORDS) / 3.0, 1.0)
    requirement_factor = 1.0 if any(w in lowered for w in REQUIREMENT_WORDS) else 0.0

    score = (
        length_factor * COMPLEXITY_WEIGHTS["length"]
        + punctuation_factor * COMPLEXITY_WEIGHTS["punctuation"]
        + modifier_factor * COMPLEXITY_WEIGHTS["modifiers"]
        + technical_factor * COMPLEXITY_WEIGHTS["technical"]
        + requirement_factor * COMPLEXITY_WEIGHTS["requirements"]
    )
    return clamp01(score)


def generate_prompt_embedding(keywords: List[str], seed: int) -> List[float]:
    """Fixed-length pseudo-embedding; slot i holds the hash of keyword i."""
    embedding = [0.0] * EMBEDDING_DIMENSIONS
    for i, keyword in enumerate(keywords[:EMBEDDING_DIMENSIONS]):
        embedding[i] = (stable_hash64(keyword, seed) % 1000) / 1000.0
    return embedding


def extract_semantic_categories(prompt: str) -> List[str]:
    lowered = prompt.lower()
    return [
        category for category, terms in SEMANTIC_CATEGORIES.items()
        if any(term in lowered for term in terms)
    ]


def calculate_sentiment(prompt: str) -> float:
    lowered = prompt.lower()
    positive = _count_terms(lowered, POSITIVE_WORDS)
    negative = _count_terms(lowered, NEGATIVE_WORDS)
    if positive + negative == 0:
        return 0.0
    return (positive - negative) / float(positive + negative)


def calculate_creativity(prompt: str) -> float:
    return min(_count_terms(prompt.lower(), CREATIVE_WORDS) / 3.0, 1.0)


def calculate_specificity(prompt: str) -> float:
    lowered = prompt.lower()
    specific = _count_terms(lowered, SPECIFIC_WORDS)
    numbers = len(_NUMBER.findall(lowered))
    colors = _count_terms(lowered, COLOR_WORDS)
    score = specific * 0.3 + min(numbers / 3.0, 1.0) * 0.4 + min(colors / 2.0, 1.0) * 0.3
    return clamp01(score)


def calculate_parameter_complexity(parameters: Optional[Dict[str, Any]]) -> float:
    if not parameters:
        return 0.0
    score = len(parameters) / 10.0
    if any(name in parameters for name in QUALITY_PARAMETERS):
        score += 0.3
    return min(score, 1.0)


def is_default_parameters(parameters: Optional[Dict[str, Any]]) -> bool:
    if not parameters:
        return True
    return all(DEFAULT_PARAMETERS.get(name) == value for name, value in parameters.items())


def calculate_trend(values: List[float], band: float = 0.1) -> str:
    """
    Compare the mean of the newest five values with the oldest five.

    Returns "increasing", "decreasing" or "stable"; fewer than three values or
    a zero baseline are "stable".
    """
    if len(values) < 3:
        return "stable"
    recent = values[-5:]
    older = values[:5]
    older_avg = sum(older) / len(older)
    if older_avg == 0:
        return "stable"
    recent_avg = sum(recent) / len(recent)
    change = (recent_avg - older_avg) / older_avg
    if change > band:
        return "increasing"
    if change < -band:
        return "decreasing"
    return "stable"
