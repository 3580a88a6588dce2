"""Command-line entry point: sync runs, analyse them and evaluate alert rules."""

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv
from pydantic import ValidationError

from ci_insights.alerts import AlertRuleEvaluator
from ci_insights.anomaly import AnomalyDetector, AnomalyMetric, anomaly_severity, format_anomaly_summary
from ci_insights.config.environment import EnvironmentConfig
from ci_insights.config.exceptions import ConfigurationError
from ci_insights.config.loader import load_config
from ci_insights.config.models import AppConfig
from ci_insights.domain.models import RunRecord
from ci_insights.dora import calculate_dora_metrics
from ci_insights.logging import get_logger
from ci_insights.logging.config import configure_logging
from ci_insights.logging.context import log_context
from ci_insights.optimization import analyze_workflow
from ci_insights.persistence import RunRepository, close_database, get_session, init_database
from ci_insights.queue_analysis import compute_queue_stats

logger = get_logger(__name__, component="cli")

DEFAULT_RUN_LIMIT = 200


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Priority for the log level: CLI > environment > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif env_config.log_level:
        pass
    elif app_config.logging and app_config.logging.level:
        env_config.log_level = app_config.logging.level
    else:
        env_config.log_level = "INFO"

    return app_config, env_config


def read_runs_file(path: Path) -> List[RunRecord]:
    """
    Parse a JSON file of runs.

    Accepts either a JSON array of run objects or a provider response object
    with a ``workflow_runs`` array.

    Raises:
        ConfigurationError: If the file is unreadable or a run is malformed
    """
    try:
        with open(path, "r") as f:
            payload = json.load(f)
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read runs file: {e}",
            suggestions=[f"Ensure {path} exists and is readable"],
        ) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Runs file is not valid JSON: {e}",
            suggestions=["Export runs as a JSON array of run objects"],
        ) from e

    if isinstance(payload, dict):
        payload = payload.get("workflow_runs", [])
    if not isinstance(payload, list):
        raise ConfigurationError(
            "Runs file must contain a JSON array of runs",
            suggestions=["Wrap the runs in [...] or use a {'workflow_runs': [...]} object"],
        )

    runs = []
    errors = []
    for index, item in enumerate(payload):
        try:
            runs.append(RunRecord.model_validate(item))
        except ValidationError as e:
            for error in e.errors():
                field_path = " -> ".join(str(loc) for loc in error["loc"])
                errors.append(f"run[{index}] {field_path}: {error['msg']}")

    if errors:
        raise ConfigurationError(
            f"Runs file {path} contains invalid runs",
            errors=errors,
            suggestions=["Each run needs at least 'id' and 'created_at'"],
        )
    return runs


def build_report(runs: Sequence[RunRecord], app_config: AppConfig) -> Dict[str, Any]:
    """
    Run every analysis over a newest-first batch of runs.

    Returns:
        JSON-serialisable report (without the alert count)
    """
    detector = AnomalyDetector.from_config(app_config.anomaly)

    anomalies = []
    for run_anomalies in detector.detect(runs).values():
        entry = run_anomalies.to_dict()
        entry["severity"] = anomaly_severity(run_anomalies.worst_z)
        for item, result in zip(entry["anomalies"], run_anomalies.anomalies):
            item["summary"] = format_anomaly_summary(result)
        anomalies.append(entry)

    baselines = {}
    for metric in AnomalyMetric:
        baseline = detector.compute_baseline(runs, metric)
        baselines[metric.value] = baseline.to_dict() if baseline else None

    return {
        "run_count": len(runs),
        "dora": calculate_dora_metrics(runs).to_dict(),
        "anomalies": anomalies,
        "baselines": baselines,
        "tips": [tip.to_dict() for tip in analyze_workflow(runs)],
        "queue_stats": compute_queue_stats(runs).to_dict(),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CI Insights - DORA metrics, anomalies, optimization tips and alerts from CI run history"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    parser.add_argument(
        "--repo",
        required=True,
        help="Repository key, owner/name",
    )
    parser.add_argument(
        "--runs-file",
        type=Path,
        default=None,
        help="JSON file of runs to store before analysing",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_RUN_LIMIT,
        help=f"Most recent stored runs to analyse (default: {DEFAULT_RUN_LIMIT})",
    )
    parser.add_argument(
        "--skip-alerts",
        action="store_true",
        help="Do not evaluate alert rules",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for CI Insights.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    load_dotenv()
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        environment = env_config.environment or os.environ.get("ENVIRONMENT", "local")
        # Logs go to stderr so stdout carries only the JSON report
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=environment,
            stream=sys.stderr,
        )

        with log_context(repo=args.repo):
            logger.info(
                "CI Insights starting",
                extra={
                    "event": "service.starting",
                    "config_path": str(args.config) if args.config else None,
                    "log_level": env_config.log_level,
                    "skip_alerts": args.skip_alerts,
                },
            )

            init_database(env_config.database_url)

            if args.runs_file:
                incoming = read_runs_file(args.runs_file)
                with get_session() as session:
                    written = RunRepository(session).upsert_runs(args.repo, incoming)
                logger.info(
                    f"Synced {written} runs from {args.runs_file}",
                    extra={"event": "runs.synced", "written": written},
                )

            with get_session() as session:
                runs = RunRepository(session).get_runs(args.repo, limit=args.limit)

            report = {"repo": args.repo}
            report.update(build_report(runs, app_config))

            if args.skip_alerts:
                report["alerts_fired"] = None
            else:
                evaluator = AlertRuleEvaluator(
                    recent_conclusions_limit=app_config.alerts.recent_conclusions_limit
                )
                report["alerts_fired"] = evaluator.evaluate_for_repo(args.repo)

            print(json.dumps(report, indent=2, default=str))

            logger.info(
                "CI Insights finished",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(time.time() - start_time, 2),
                    "run_count": len(runs),
                    "alerts_fired": report["alerts_fired"],
                },
            )
            return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={
                "event": "service.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1
    finally:
        close_database()


if __name__ == "__main__":
    sys.exit(main())
