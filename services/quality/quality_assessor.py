from __future__ import annotations
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, Union

from config.settings import settings
from models.quality import (
    ContentQuality,
    ImageQualityMetrics,
    QualityAssessmentRequest,
    QualityCategory,
    TechnicalQuality,
    ToolQualityStats,
)
from services.catalog import get_tool
from services.features.text_features import CREATIVE_WORDS
from services.quality.image_metrics import DecodedImage, analyze_technical_quality, decode_image
from services.storage.base import KeyValueStore
from utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from utils.errors import ComputationFailure
from utils.fallback import with_fallback
from utils.logger import setup_logger

logger = setup_logger(__name__)

QUALITY_NAMESPACE = "quality_history"

TECHNICAL_WEIGHT = 40
CONTENT_WEIGHT = 60
CATEGORY_THRESHOLDS = [
    (85, QualityCategory.EXCELLENT),
    (70, QualityCategory.GOOD),
    (50, QualityCategory.FAIR),
]
DEFAULT_SUGGESTION = "Image quality could not be analyzed, please retry"


def default_quality_metrics() -> ImageQualityMetrics:
    """Neutral answer for artifacts that cannot be analyzed."""
    return ImageQualityMetrics(
        technical_quality=TechnicalQuality(),
        content_quality=ContentQuality(),
        overall_score=50,
        category=QualityCategory.FAIR,
        suggestions=[DEFAULT_SUGGESTION],
        degraded=True,
    )


def _default_assessment(*args, **kwargs) -> ImageQualityMetrics:
    return default_quality_metrics()


def extract_prompt_keywords(prompt: str) -> List[str]:
    cleaned = "".join(ch if ch.isalnum() or ch.isspace() else " " for ch in prompt.lower())
    return [word for word in cleaned.split() if len(word) > 1]


def analyze_content_quality(prompt: str, tool_id: str) -> ContentQuality:
    tool = get_tool(tool_id)
    keywords = extract_prompt_keywords(prompt)
    expected = [kw.lower() for kw in tool.expected_keywords] if tool else []

    relevant = [kw for kw in keywords if any(exp in kw for exp in expected)]
    alignment = min(len(relevant) / max(len(keywords), 1), 1.0)

    completeness = 0.8
    if tool and tool.requires_detailed_prompt and len(prompt) < 50:
        completeness = 0.3
    elif tool and tool.prefers_concise_prompt and len(prompt) > 200:
        completeness = 0.7

    creativity = 0.8 if tool and tool.creative else 0.6
    lowered = prompt.lower()
    if any(word in lowered for word in CREATIVE_WORDS):
        creativity = min(creativity + 0.2, 1.0)

    coherence = 1.0 if len(keywords) <= 1 else max(0.5, 1 - len(keywords) * 0.1)

    return ContentQuality(
        prompt_alignment=alignment,
        completeness=completeness,
        creativity=creativity,
        aesthetics=tool.aesthetics if tool else 0.6,
        coherence=coherence,
    )


def calculate_overall_score(technical: TechnicalQuality, content: ContentQuality) -> int:
    technical_score = (
        technical.sharpness * 0.25
        + technical.contrast * 0.2
        + technical.brightness * 0.15
        + technical.color_balance * 0.15
        + (1 - technical.noise_level) * 0.15
        + technical.resolution * 0.1
    ) * TECHNICAL_WEIGHT
    content_score = (
        content.prompt_alignment * 0.3
        + content.completeness * 0.2
        + content.creativity * 0.2
        + content.aesthetics * 0.2
        + content.coherence * 0.1
    ) * CONTENT_WEIGHT
    return int(round(technical_score + content_score))


def categorize_quality(score: float) -> QualityCategory:
    for threshold, category in CATEGORY_THRESHOLDS:
        if score >= threshold:
            return category
    return QualityCategory.POOR


def generate_suggestions(technical: TechnicalQuality, content: ContentQuality, tool_id: str) -> List[str]:
    suggestions = []
    if technical.sharpness < 0.6:
        suggestions.append("Use a higher quality input image or adjust the image parameters")
    if technical.contrast < 0.5:
        suggestions.append("Add terms such as 'high contrast' or 'vivid' to the prompt")
    if technical.brightness < 0.5:
        suggestions.append("Adjust brightness or describe the lighting you want")
    if technical.noise_level > 0.7:
        suggestions.append("The image looks noisy; regenerate or apply denoising")
    if content.prompt_alignment < 0.6:
        suggestions.append("The prompt does not match the selected tool well; use more relevant terms")
    if content.completeness < 0.5:
        suggestions.append("The prompt is missing detail; describe the result more fully")
    if content.creativity < 0.5:
        suggestions.append("Use more imaginative wording for a more artistic result")

    if tool_id == "photo_to_figure" and content.completeness < 0.7:
        suggestions.append("For figure conversion, describe the desired style and details")
    elif tool_id == "film_noir" and content.aesthetics < 0.8:
        suggestions.append("Film noir benefits from dramatic lighting and composition")
    elif tool_id == "interior_design" and content.prompt_alignment < 0.7:
        suggestions.append("Name the interior style, colors and materials you prefer")
    return suggestions


class QualityAssessor:
    """
    Technical and content quality scoring for generated images.

    Decoding runs on a worker thread bounded by ``decode_timeout`` and behind
    a circuit breaker. Any decoding problem yields the neutral default metric
    set instead of an exception; defaults are not written to the per-tool
    statistics.
    """

    def __init__(
        self,
        store: KeyValueStore,
        metrics=None,
        decoder: Optional[Callable[[Union[bytes, str]], DecodedImage]] = None,
        decode_timeout: Optional[float] = None,
        breaker: Optional[CircuitBreaker] = None,
        history_limit: Optional[int] = None,
        max_side: Optional[int] = None,
    ):
        self.store = store
        self.metrics = metrics
        self.max_side = max_side or settings.ANALYSIS_MAX_SIDE
        self.decoder = decoder or (lambda data: decode_image(data, self.max_side))
        self.decode_timeout = decode_timeout or settings.DECODE_TIMEOUT_SECONDS
        self.breaker = breaker or CircuitBreaker(
            "image_decode",
            failure_threshold=5,
            recovery_timeout_seconds=60,
            expected_exception=ComputationFailure,
        )
        self.history_limit = history_limit or settings.QUALITY_HISTORY_LIMIT
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="quality-decode")

    @with_fallback(_default_assessment)
    def assess_image_quality(self, request: QualityAssessmentRequest, record: bool = True) -> ImageQualityMetrics:
        """
        Score one image.

        With ``record=False`` the result is only returned; the caller decides
        later whether it enters the tool statistics via ``record_assessment``.
        """
        try:
            image = self.breaker.call(self._decode_with_timeout, request.image_data)
        except CircuitBreakerOpenError:
            logger.warning("Image decoding suspended, returning default quality", extra={"tool_id": request.tool_id})
            return default_quality_metrics()
        except ComputationFailure as e:
            logger.warning(
                "Image quality assessment failed, returning default quality",
                extra={"tool_id": request.tool_id, "error": str(e)}
            )
            return default_quality_metrics()

        technical = analyze_technical_quality(image)
        content = analyze_content_quality(request.original_prompt, request.tool_id)
        overall = calculate_overall_score(technical, content)
        result = ImageQualityMetrics(
            technical_quality=technical,
            content_quality=content,
            overall_score=overall,
            category=categorize_quality(overall),
            suggestions=generate_suggestions(technical, content, request.tool_id),
            width=image.width,
            height=image.height,
        )

        if record:
            self.record_assessment(request.tool_id, result)

        if request.user_feedback is not None:
            logger.info(
                "Quality feedback received",
                extra={
                    "tool_id": request.tool_id,
                    "predicted_score": overall,
                    "user_score": request.user_feedback * 20,
                }
            )

        return result

    def record_assessment(self, tool_id: str, result: ImageQualityMetrics) -> None:
        if result.degraded:
            return
        self.store.append(
            QUALITY_NAMESPACE,
            tool_id,
            result.model_dump(mode="json"),
            max_length=self.history_limit,
        )
        if self.metrics:
            self.metrics.record_quality_assessment(result.category.value, result.overall_score)

    def _decode_with_timeout(self, image_data: Union[bytes, str]) -> DecodedImage:
        future = self._executor.submit(self.decoder, image_data)
        try:
            return future.result(timeout=self.decode_timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise ComputationFailure(f"image decoding exceeded {self.decode_timeout}s") from e

    def get_tool_quality_stats(self, tool_id: str) -> ToolQualityStats:
        history = [ImageQualityMetrics.model_validate(item) for item in self.store.get_list(QUALITY_NAMESPACE, tool_id)]
        if not history:
            return ToolQualityStats()

        categories = Counter(item.category.value for item in history)
        issues = Counter(suggestion for item in history for suggestion in item.suggestions)
        average = sum(item.overall_score for item in history) / len(history)
        return ToolQualityStats(
            average_score=round(average, 2),
            total_assessments=len(history),
            category_distribution=dict(categories),
            common_issues=[issue for issue, _ in issues.most_common(5)],
        )

    def close(self):
        self._executor.shutdown(wait=False)
