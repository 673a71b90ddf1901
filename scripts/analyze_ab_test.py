import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from services.engine import build_store
from services.experiments import ExperimentFramework
from utils.errors import NotFoundError
from utils.logger import setup_logger

logger = setup_logger(__name__)


def _framework(database_url: str = None) -> ExperimentFramework:
    return ExperimentFramework(build_store("sql", database_url=database_url or settings.DATABASE_URL))


def analyze_ab_test(experiment_id: str = None, experiment_name: str = None, database_url: str = None):
    if not experiment_name and not experiment_id:
        raise ValueError("Either experiment_name or experiment_id must be provided")

    framework = _framework(database_url)

    if experiment_id:
        config = framework.get_test(experiment_id)
    else:
        config = next((test for test in framework.list_tests() if test.test_name == experiment_name), None)

    if config is None:
        logger.error("Experiment not found", extra={"experiment_id": experiment_id, "experiment_name": experiment_name})
        print("Error: Experiment not found")
        return False

    logger.info(
        "Analyzing experiment",
        extra={"experiment_id": config.test_id, "experiment_name": config.test_name}
    )

    try:
        analysis = framework.analyze_test(config.test_id)
    except NotFoundError as e:
        print(f"Error: {e}")
        return False

    print("\nExperiment Analysis Results")
    print("===========================")
    print(f"Experiment: {config.test_name} ({config.test_id})")
    print(f"Description: {config.description}")
    print(f"Status: {config.status.value}")
    print(f"Variants: {', '.join(f'{v.id}={config.traffic_split.get(v.id, 0):.2f}' for v in config.variants)}")
    print("\nAnalysis:")
    print("---------")
    print(f"Result: {analysis.status.value}")
    print(f"Total Samples: {analysis.total_samples}")

    for variant in analysis.results:
        label = " (control)" if variant.is_control else ""
        print(f"\nVariant {variant.variant_name}{label}:")
        print(f"  Samples: {variant.sample_size}")
        for metric_id, metric in variant.metrics.items():
            low, high = metric.confidence_interval
            line = f"  {metric_id}: {metric.value:.4f} [{low:.4f}, {high:.4f}]"
            if not variant.is_control:
                marker = "significant" if metric.is_significant else "not significant"
                line += f"  p={metric.p_value:.4f} ({marker}), {metric.improvement:+.2f}%"
            print(line)

    if analysis.winner:
        print(f"\nWinner: {analysis.winner.variant_id} (confidence {analysis.winner.confidence:.2f})")

    print("\nRecommendations:")
    for recommendation in analysis.recommendations:
        print(f"  - {recommendation}")

    return True


def list_experiments(database_url: str = None):
    framework = _framework(database_url)
    experiments = framework.list_tests()

    if not experiments:
        print("No experiments found")
        return

    print("\nExperiments")
    print("===========")

    for exp in experiments:
        print(f"\nID: {exp.test_id}")
        print(f"Name: {exp.test_name}")
        print(f"Description: {exp.description}")
        print(f"Variants: {', '.join(v.id for v in exp.variants)}")
        print(f"Status: {exp.status.value}")
        print(f"Started: {exp.start_date}")
        if exp.end_date:
            print(f"Ended: {exp.end_date} ({exp.stop_reason or 'manual'})")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Analyze experiment results from the persistent store"
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Database URL of the persistent store (default: PERSONALIZATION_DATABASE_URL)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze experiment results")
    analyze_parser.add_argument(
        "--experiment-name",
        type=str,
        help="Name of the experiment to analyze"
    )
    analyze_parser.add_argument(
        "--experiment-id",
        type=str,
        help="ID of the experiment to analyze"
    )

    list_parser = subparsers.add_parser("list", help="List all experiments")

    args = parser.parse_args()

    if args.command == "analyze":
        ok = analyze_ab_test(
            experiment_id=args.experiment_id,
            experiment_name=args.experiment_name,
            database_url=args.database_url
        )
        sys.exit(0 if ok else 1)
    elif args.command == "list":
        list_experiments(database_url=args.database_url)
    else:
        parser.print_help()
