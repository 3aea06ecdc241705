"""
Experiment Tracking
===================

MLflow integration for tracking verifier benchmark runs.
"""

import os
from contextlib import contextmanager
from dataclasses import asdict
from typing import Generator

import mlflow


class ExperimentTracker:
    """
    MLflow-based experiment tracking for the verifier benchmark.

    Tracks:
    - Verifier configuration (limits, confidence caps)
    - Agreement rates overall, per category and per mode
    - False accepts and false rejects
    - Disagreeing cases as a JSON artifact
    """

    def __init__(
        self,
        tracking_uri: str | None = None,
        experiment_name: str = "sql-verifier-benchmark",
    ):
        """
        Initialize experiment tracker.

        Args:
            tracking_uri: MLflow tracking server URI (default: local ./mlruns)
            experiment_name: Default experiment name
        """
        self.experiment_name = experiment_name
        self._active_run = None

        uri = tracking_uri or os.getenv("MLFLOW_TRACKING_URI", "file:./mlruns")
        mlflow.set_tracking_uri(uri)

        experiment = mlflow.get_experiment_by_name(experiment_name)
        if experiment is None:
            mlflow.create_experiment(
                experiment_name,
                tags={"project": "sql-verifier"},
            )

        mlflow.set_experiment(experiment_name)

    @contextmanager
    def start_run(
        self,
        run_name: str | None = None,
        tags: dict[str, str] | None = None,
        nested: bool = False,
    ) -> Generator:
        """
        Start an MLflow run context.

        Args:
            run_name: Optional name for the run
            tags: Optional tags to add
            nested: Whether this is a nested run

        Yields:
            MLflow run object
        """
        with mlflow.start_run(run_name=run_name, nested=nested) as run:
            if tags:
                mlflow.set_tags(tags)
            self._active_run = run
            yield run
            self._active_run = None

    def log_verifier_config(self, verifier) -> None:
        """
        Log verifier configuration as parameters.

        Args:
            verifier: SemanticVerifier instance
        """
        params = {key: str(value) for key, value in asdict(verifier.config).items()}
        params["intent_extractor"] = type(verifier.intent_extractor).__name__
        params["comparators"] = ",".join(v.name for v in verifier.chain.verifiers)
        params["schema_tables"] = ",".join(verifier.schema.table_names)
        mlflow.log_params(params)

    def log_report(self, report) -> None:
        """
        Log a benchmark report as metrics and a JSON artifact.

        Args:
            report: ``BenchmarkReport`` from the benchmark runner
        """
        mlflow.log_metrics({
            "total_cases": report.total_cases,
            "agreed": report.agreed,
            "agreement_rate": report.agreement_rate,
            "false_accepts": report.false_accepts,
            "false_rejects": report.false_rejects,
            "failed_evaluations": report.failed_evaluations,
            "avg_confidence": report.avg_confidence,
            "avg_processing_time_ms": report.avg_processing_time_ms,
        })

        for category, stats in report.results_by_category.items():
            mlflow.log_metric(f"agreement_rate_{category}", stats["agreement_rate"])
        for mode, stats in report.results_by_mode.items():
            mlflow.log_metric(f"agreement_rate_{mode}", stats["agreement_rate"])

        disagreements = [
            {
                "id": r.case.id,
                "nl_query": r.case.nl_query,
                "sql_query": r.case.sql_query,
                "expected_correct": r.case.expected_correct,
                "correct": r.correct,
                "issues": r.issues,
            }
            for r in report.individual_results
            if not r.agreed
        ]
        mlflow.log_dict({"summary": report.to_dict(), "disagreements": disagreements},
                        "benchmark_report.json")
