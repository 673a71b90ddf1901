import base64
import time

from models.quality import QualityAssessmentRequest, QualityCategory
from services.quality import QualityAssessor, decode_image
from services.quality.image_metrics import analyze_technical_quality, evaluate_resolution
from services.quality.quality_assessor import (
    DEFAULT_SUGGESTION,
    analyze_content_quality,
    categorize_quality,
)
from services.storage import InMemoryStore
from tests.helpers import make_gradient_png, make_png
from utils.circuit_breaker import CircuitBreaker, CircuitState
from utils.errors import ComputationFailure
from utils.prometheus_metrics import PrometheusMetrics


def assess(assessor, image_data, tool_id="text_to_image", prompt="a landscape painting at dawn"):
    return assessor.assess_image_quality(
        QualityAssessmentRequest(image_data=image_data, original_prompt=prompt, tool_id=tool_id)
    )


def test_assess_png_bytes():
    metrics = PrometheusMetrics(enabled=True)
    assessor = QualityAssessor(InMemoryStore(), metrics=metrics)

    result = assess(assessor, make_png(80, 60))

    assert result.degraded is False
    assert (result.width, result.height) == (80, 60)
    assert 0 <= result.overall_score <= 100
    assert result.category == categorize_quality(result.overall_score)
    assert b"quality_assessments_total" in metrics.generate_metrics()

    stats = assessor.get_tool_quality_stats("text_to_image")
    assert stats.total_assessments == 1
    assert stats.average_score == result.overall_score


def test_assess_base64_and_data_url():
    assessor = QualityAssessor(InMemoryStore())
    encoded = base64.b64encode(make_png(32, 32)).decode()

    plain = assess(assessor, encoded)
    data_url = assess(assessor, f"data:image/png;base64,{encoded}")

    assert plain.degraded is False
    assert plain.overall_score == data_url.overall_score


def test_undecodable_data_returns_default():
    assessor = QualityAssessor(InMemoryStore())

    for data in [b"definitely not an image", "%%% not base64 %%%", b""]:
        result = assess(assessor, data)
        assert result.degraded is True
        assert result.overall_score == 50
        assert result.category == QualityCategory.FAIR
        assert result.suggestions == [DEFAULT_SUGGESTION]

    assert assessor.get_tool_quality_stats("text_to_image").total_assessments == 0


def test_slow_decoding_times_out_to_default():
    def _slow_decoder(data):
        time.sleep(0.5)
        return decode_image(data)

    assessor = QualityAssessor(InMemoryStore(), decoder=_slow_decoder, decode_timeout=0.05)
    result = assess(assessor, make_png())

    assert result.degraded is True
    assert result.overall_score == 50
    assessor.close()


def test_open_breaker_skips_decoding():
    calls = []

    def _failing_decoder(data):
        calls.append(data)
        raise ComputationFailure("corrupt")

    breaker = CircuitBreaker(
        "test_decode",
        failure_threshold=2,
        recovery_timeout_seconds=60,
        expected_exception=ComputationFailure,
    )
    assessor = QualityAssessor(InMemoryStore(), decoder=_failing_decoder, breaker=breaker)

    for _ in range(4):
        assert assess(assessor, make_png()).degraded is True

    assert breaker.state == CircuitState.OPEN
    assert len(calls) == 2


def test_technical_metrics_follow_image_content():
    smooth = analyze_technical_quality(decode_image(make_gradient_png()))
    noisy = analyze_technical_quality(decode_image(make_png()))

    assert smooth.contrast > 0.9
    assert smooth.sharpness < 0.2
    assert smooth.noise_level < 0.1
    assert noisy.sharpness > smooth.sharpness
    assert noisy.noise_level > smooth.noise_level


def test_large_images_keep_original_dimensions():
    image = decode_image(make_png(1000, 200), max_side=256)
    assert (image.width, image.height) == (1000, 200)
    assert max(image.pixels.shape[:2]) == 256


def test_resolution_bands():
    assert evaluate_resolution(1920, 1080) == 1.0
    assert evaluate_resolution(1280, 720) == 0.8
    assert evaluate_resolution(640, 480) == 0.6
    assert evaluate_resolution(320, 240) == 0.4
    assert evaluate_resolution(64, 64) == 0.2


def test_content_quality_uses_tool_expectations():
    short = analyze_content_quality("figure", "photo_to_figure")
    assert short.completeness == 0.3
    assert short.prompt_alignment == 1.0

    creative = analyze_content_quality("a surreal story about a hero", "character_story")
    assert creative.creativity == 1.0

    unknown = analyze_content_quality("anything", "no_such_tool")
    assert unknown.aesthetics == 0.6
