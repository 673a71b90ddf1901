import threading

import pytest

from models.experiment import (
    AnalysisStatus,
    AssignmentContext,
    AudienceCriteria,
    ExperimentConfig,
    ExperimentResult,
    ExperimentStatus,
    ExperimentVariant,
    TargetAudience,
)
from services.experiments import ExperimentFramework, metric_definition, validate_test_config
from services.experiments.experiment_framework import AUTO_STOP_REASON
from services.storage import InMemoryStore
from tests.helpers import TEST_SEED, FakeClock
from utils.errors import NotFoundError, ValidationError
from utils.prometheus_metrics import PrometheusMetrics


def make_framework(store=None, seed=TEST_SEED, **kwargs):
    kwargs.setdefault("auto_stop", False)
    return ExperimentFramework(store or InMemoryStore(), clock=FakeClock(), hash_seed=seed, **kwargs)


def make_config(test_id="test-1", split=None, percentage=1.0, criteria=None, metrics=("quality",), variants=2):
    return ExperimentConfig(
        test_id=test_id,
        test_name=f"Test {test_id}",
        target_users=TargetAudience(percentage=percentage, criteria=criteria),
        variants=[
            ExperimentVariant(id=f"v{i}", name=f"Variant {i}", is_control=i == 0)
            for i in range(variants)
        ],
        metrics=[metric_definition(metric_id) for metric_id in metrics],
        traffic_split=split if split is not None else {f"v{i}": 1.0 / variants for i in range(variants)},
    )


def started(framework, config):
    framework.create_test(config)
    return framework.start_test(config.test_id)


def record(framework, test_id, variant_id, user_id, **metrics):
    return framework.record_test_result(
        ExperimentResult(test_id=test_id, variant_id=variant_id, user_id=user_id, metrics=metrics)
    )


# -- validation -------------------------------------------------------------

def test_valid_config_is_normalized():
    config = make_config(split={"v0": 0.505, "v1": 0.5})
    config.variants[0].is_control = False

    normalized = validate_test_config(config)

    assert sum(normalized.traffic_split.values()) == pytest.approx(1.0, abs=1e-12)
    assert normalized.variants[0].is_control is True
    assert config.variants[0].is_control is False


def test_empty_split_becomes_equal_split():
    normalized = validate_test_config(make_config(split={}, variants=4))
    assert normalized.traffic_split == {f"v{i}": 0.25 for i in range(4)}


@pytest.mark.parametrize("config", [
    make_config(variants=1),
    make_config(split={"v0": 0.6, "v1": 0.3}),
    make_config(split={"v0": 0.5, "other": 0.5}),
    make_config(split={"v0": 1.2, "v1": -0.2}),
    make_config(percentage=0),
    make_config(percentage=1.5),
    make_config(test_id=""),
])
def test_invalid_configs_are_rejected(config):
    with pytest.raises(ValidationError):
        validate_test_config(config)


def test_duplicate_variants_and_controls_are_rejected():
    duplicate = make_config()
    duplicate.variants[1].id = "v0"
    with pytest.raises(ValidationError):
        validate_test_config(duplicate)

    two_controls = make_config()
    two_controls.variants[1].is_control = True
    with pytest.raises(ValidationError):
        validate_test_config(two_controls)


# -- lifecycle --------------------------------------------------------------

def test_lifecycle():
    framework = make_framework()
    created = framework.create_test(make_config())
    assert created.status == ExperimentStatus.DRAFT
    assert framework.get_active_tests() == []

    with pytest.raises(ValidationError):
        framework.pause_test("test-1")

    active = framework.start_test("test-1")
    assert active.status == ExperimentStatus.ACTIVE
    assert framework.start_test("test-1").start_date == active.start_date
    assert [t.test_id for t in framework.get_active_tests()] == ["test-1"]

    assert framework.pause_test("test-1").status == ExperimentStatus.PAUSED
    framework.start_test("test-1")

    stopped = framework.stop_test("test-1", reason="manual")
    assert stopped.status == ExperimentStatus.COMPLETED
    assert stopped.stop_reason == "manual"
    assert framework.get_test("test-1").status == ExperimentStatus.COMPLETED
    assert framework.get_active_tests() == []

    with pytest.raises(ValidationError):
        framework.start_test("test-1")
    with pytest.raises(ValidationError):
        framework.create_test(make_config())
    with pytest.raises(NotFoundError):
        framework.stop_test("test-1")


def test_duplicate_and_unknown_tests():
    framework = make_framework()
    framework.create_test(make_config())
    with pytest.raises(ValidationError):
        framework.create_test(make_config())
    with pytest.raises(NotFoundError):
        framework.start_test("missing")
    with pytest.raises(NotFoundError):
        framework.analyze_test("missing")
    with pytest.raises(NotFoundError):
        framework.get_test_stats("missing")
    assert framework.get_test("missing") is None


def test_active_experiment_gauge():
    metrics = PrometheusMetrics(enabled=True)
    framework = make_framework(metrics=metrics)
    started(framework, make_config())
    assert metrics.registry.get_sample_value("personalization_active_experiments") == 1.0
    framework.stop_test("test-1")
    assert metrics.registry.get_sample_value("personalization_active_experiments") == 0.0


# -- assignment -------------------------------------------------------------

def test_even_split_over_many_users():
    framework = make_framework()
    started(framework, make_config(split={"v0": 0.5, "v1": 0.5}))

    counts = {"v0": 0, "v1": 0}
    for i in range(1000):
        counts[framework.get_user_variant(f"user-{i}", "test-1")] += 1

    assert abs(counts["v0"] - 500) <= 50
    assert abs(counts["v1"] - 500) <= 50


def test_assignment_is_deterministic_across_stores():
    first = make_framework()
    second = make_framework()
    started(first, make_config())
    started(second, make_config())

    for i in range(50):
        assert first.get_user_variant(f"user-{i}", "test-1") == second.get_user_variant(f"user-{i}", "test-1")


def test_assignment_is_sticky():
    framework = make_framework()
    started(framework, make_config())
    variant = framework.get_user_variant("user-1", "test-1")
    assert variant in {"v0", "v1"}
    assert all(framework.get_user_variant("user-1", "test-1") == variant for _ in range(5))


def test_audience_percentage_excludes_users():
    framework = make_framework()
    started(framework, make_config(percentage=0.2))

    assigned = [framework.get_user_variant(f"user-{i}", "test-1") for i in range(1000)]
    included = sum(1 for variant in assigned if variant is not None)

    assert 140 <= included <= 260


def test_exclusion_is_permanent():
    framework = make_framework()
    started(framework, make_config(criteria=AudienceCriteria(new_users=True)))

    veteran = AssignmentContext(is_new_user=False)
    assert framework.get_user_variant("user-1", "test-1", veteran) is None
    assert framework.get_user_variant("user-1", "test-1", AssignmentContext(is_new_user=True)) is None
    assert framework.get_user_variant("user-2", "test-1", AssignmentContext(is_new_user=True)) is not None


def test_concurrent_first_assignment_resolves_to_one_variant():
    framework = make_framework()
    started(framework, make_config(variants=3, split={"v0": 0.34, "v1": 0.33, "v2": 0.33}))
    barrier = threading.Barrier(8)
    results = {}

    def _assign(worker):
        barrier.wait()
        results[worker] = [framework.get_user_variant(f"user-{i}", "test-1") for i in range(40)]

    threads = [threading.Thread(target=_assign, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    expected = results[0]
    assert all(variant in {"v0", "v1", "v2"} for variant in expected)
    assert all(assignments == expected for assignments in results.values())
    assert [framework.get_user_variant(f"user-{i}", "test-1") for i in range(40)] == expected


def test_no_assignment_unless_active():
    framework = make_framework()
    framework.create_test(make_config())
    assert framework.get_user_variant("user-1", "test-1") is None
    assert framework.get_user_variant("user-1", "missing") is None

    framework.start_test("test-1")
    framework.pause_test("test-1")
    assert framework.get_user_variant("user-1", "test-1") is None


# -- results and analysis ---------------------------------------------------

def test_results_for_inactive_tests_or_unknown_variants_are_ignored():
    framework = make_framework()
    framework.create_test(make_config())
    assert record(framework, "test-1", "v0", "u") is False

    framework.start_test("test-1")
    assert record(framework, "test-1", "v9", "u") is False
    assert record(framework, "missing", "v0", "u") is False
    assert record(framework, "test-1", "v0", "u", quality=70.0) is True
    assert len(framework.get_results("test-1")) == 1


def _fill(framework, test_id, per_variant, control=(68.0, 72.0), variant=(78.0, 82.0), metric="quality"):
    for i in range(per_variant):
        record(framework, test_id, "v0", f"c{i}", **{metric: control[i % 2]})
        record(framework, test_id, "v1", f"t{i}", **{metric: variant[i % 2]})


def test_significant_improvement_is_conclusive():
    framework = make_framework()
    started(framework, make_config())
    _fill(framework, "test-1", 60)

    analysis = framework.analyze_test("test-1")

    assert analysis.total_samples == 120
    assert analysis.status == AnalysisStatus.CONCLUSIVE
    assert analysis.winner.variant_id == "v1"
    assert analysis.winner.combined_score == pytest.approx(100 * 10 / 70)

    treatment = next(r for r in analysis.results if r.variant_id == "v1")
    quality = treatment.metrics["quality"]
    assert quality.value == pytest.approx(80.0)
    assert quality.is_significant is True
    assert quality.p_value < 0.05
    assert quality.confidence_interval[0] < 80.0 < quality.confidence_interval[1]
    assert analysis.recommendations[0].startswith('Adopt variant "Variant 1"')


def test_variant_without_samples_is_skipped():
    framework = make_framework()
    started(framework, make_config(variants=3, split={"v0": 0.34, "v1": 0.33, "v2": 0.33}))
    for i in range(10):
        record(framework, "test-1", "v0", f"c{i}", quality=70.0 + i % 2)
        record(framework, "test-1", "v1", f"t{i}", quality=75.0 + i % 2)

    analysis = framework.analyze_test("test-1")
    by_id = {r.variant_id: r for r in analysis.results}

    assert by_id["v2"].sample_size == 0
    assert by_id["v2"].metrics == {}
    assert by_id["v0"].metrics["quality"].value == pytest.approx(70.5)
    assert by_id["v0"].metrics["quality"].sample_size == 10
    assert by_id["v1"].metrics["quality"].p_value < 0.05
    assert analysis.total_samples == 20


def test_treatment_without_control_samples_has_no_comparison():
    framework = make_framework()
    started(framework, make_config())
    for i in range(5):
        record(framework, "test-1", "v1", f"t{i}", quality=80.0)

    analysis = framework.analyze_test("test-1")
    by_id = {r.variant_id: r for r in analysis.results}

    assert by_id["v0"].metrics == {}
    assert by_id["v1"].metrics["quality"].value == pytest.approx(80.0)
    assert by_id["v1"].metrics["quality"].p_value == 1.0
    assert by_id["v1"].metrics["quality"].is_significant is False
    assert analysis.status == AnalysisStatus.RUNNING


def test_lower_is_better_metric_does_not_reward_increase():
    framework = make_framework()
    started(framework, make_config(metrics=("generation_time",)))
    _fill(framework, "test-1", 60, metric="generation_time")

    analysis = framework.analyze_test("test-1")

    treatment = next(r for r in analysis.results if r.variant_id == "v1")
    assert treatment.metrics["generation_time"].is_significant is True
    assert analysis.status == AnalysisStatus.RUNNING
    assert analysis.winner is None


def test_small_samples_keep_running():
    framework = make_framework()
    started(framework, make_config())
    _fill(framework, "test-1", 10)

    analysis = framework.analyze_test("test-1")

    assert analysis.status == AnalysisStatus.RUNNING
    assert analysis.recommendations[-1] == "Collect at least 80 more samples"


def test_identical_variants_become_inconclusive():
    framework = make_framework()
    started(framework, make_config())
    _fill(framework, "test-1", 500, variant=(68.0, 72.0))

    analysis = framework.analyze_test("test-1")

    assert analysis.status == AnalysisStatus.INCONCLUSIVE
    assert analysis.winner is None


def test_conclusive_test_stops_itself():
    framework = make_framework(auto_stop=True, auto_stop_check_interval=100)
    started(framework, make_config())
    _fill(framework, "test-1", 250)

    config = framework.get_test("test-1")
    assert config.status == ExperimentStatus.COMPLETED
    assert config.stop_reason == AUTO_STOP_REASON
    assert record(framework, "test-1", "v0", "late", quality=70.0) is False
    assert framework.analyze_test("test-1").total_samples == 500


def test_stats():
    framework = make_framework()
    started(framework, make_config())
    record(framework, "test-1", "v0", "a", quality=60.0)
    record(framework, "test-1", "v0", "b", quality=80.0)
    framework.record_test_result(
        ExperimentResult(test_id="test-1", variant_id="v1", user_id="c", metrics={"quality": 90.0}, completed=False)
    )

    stats = framework.get_test_stats("test-1")

    assert stats.total_samples == 3
    assert stats.variant_distribution == {"v0": 2, "v1": 1}
    assert stats.conversion_rates == {"v0": 1.0, "v1": 0.0}
    assert stats.average_metrics == {"v0": {"quality": 70.0}, "v1": {"quality": 90.0}}


# -- builders ---------------------------------------------------------------

def test_tool_comparison_builder():
    framework = make_framework()
    config = framework.create_tool_comparison_test("Noir", "film_noir", "text_to_image")

    assert config.test_id.startswith("tool-comparison-")
    assert config.target_users.percentage == 0.2
    assert config.target_users.criteria.active_users is True
    assert [m.id for m in config.metrics] == ["quality", "satisfaction", "generation_time"]
    assert config.metrics[2].higher_is_better is False
    assert config.control_variant().id == "control"
    assert framework.create_test(config).traffic_split == {"control": 0.5, "variant": 0.5}


def test_parameter_optimization_builder():
    framework = make_framework()
    config = framework.create_parameter_optimization_test("Steps", "text_to_image", "steps", [20, 30, 50])

    assert [v.id for v in config.variants] == ["param-0", "param-1", "param-2"]
    assert config.control_variant().id == "param-0"
    assert config.variants[1].changes[0].value == 30
    assert config.target_users.criteria.skill_level == "intermediate"
    assert sum(config.traffic_split.values()) == pytest.approx(1.0)

    with pytest.raises(ValidationError):
        framework.create_parameter_optimization_test("Steps", "text_to_image", "steps", [20])
