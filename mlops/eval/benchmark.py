"""
Benchmark Runner
================

Agreement benchmarking for the SQL semantic verifier.

Each case pairs a request and a candidate query with the verdict a careful
reviewer would give. The runner evaluates every case and reports how often
the verifier agrees, overall and per category.
"""

import argparse
import json
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from sql_verifier import EvaluationRequest, SemanticVerifier, Stage
from sql_verifier.schema import SAMPLE_SCHEMA

DEFAULT_CASES = Path(__file__).parent.parent / "data" / "sample_cases.json"


@dataclass
class VerdictCase:
    """A single labelled evaluation case."""

    id: str
    category: str
    nl_query: str
    sql_query: str
    expected_correct: bool
    reference_query: str | None = None
    schema: dict[str, Any] | None = None
    expected_issue_facets: list[str] = field(default_factory=list)
    notes: str = ""

    @property
    def mode(self) -> str:
        return "reference" if self.reference_query else "heuristic"


@dataclass
class CaseResult:
    """Outcome of evaluating one case."""

    case: VerdictCase
    correct: bool
    confidence: float
    stage: str
    processing_time_ms: float
    mismatched_facets: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)

    @property
    def agreed(self) -> bool:
        if self.correct != self.case.expected_correct:
            return False
        return all(facet in self.mismatched_facets for facet in self.case.expected_issue_facets)


@dataclass
class BenchmarkReport:
    """Summary report of a benchmark run."""

    run_id: str
    timestamp: str
    total_cases: int
    agreed: int
    disagreed: int
    agreement_rate: float
    false_accepts: int
    false_rejects: int
    failed_evaluations: int
    avg_confidence: float
    avg_processing_time_ms: float
    results_by_category: dict[str, dict]
    results_by_mode: dict[str, dict]
    individual_results: list[CaseResult]

    def to_dict(self) -> dict[str, Any]:
        """Summary without the per-case details."""
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "total_cases": self.total_cases,
            "agreed": self.agreed,
            "disagreed": self.disagreed,
            "agreement_rate": self.agreement_rate,
            "false_accepts": self.false_accepts,
            "false_rejects": self.false_rejects,
            "failed_evaluations": self.failed_evaluations,
            "avg_confidence": self.avg_confidence,
            "avg_processing_time_ms": self.avg_processing_time_ms,
            "results_by_category": self.results_by_category,
            "results_by_mode": self.results_by_mode,
        }


class BenchmarkRunner:
    """
    Runs labelled verdict cases through a SemanticVerifier.

    Features:
    - Load cases from JSON
    - Run against a configurable verifier
    - Break agreement down by category and by comparison mode
    - Optionally log runs to an experiment tracker
    """

    def __init__(self, verifier: SemanticVerifier | None = None, tracker=None):
        """
        Initialize benchmark runner.

        Args:
            verifier: Verifier to benchmark (defaults to one over the sample schema)
            tracker: Optional ``mlops.tracking.ExperimentTracker``
        """
        self.verifier = verifier or SemanticVerifier(schema=SAMPLE_SCHEMA)
        self.tracker = tracker

    def load_cases(self, filepath: str | Path) -> list[VerdictCase]:
        """
        Load cases from a JSON file.

        Args:
            filepath: Path to a file with a top-level ``cases`` list

        Returns:
            List of VerdictCase objects
        """
        with open(filepath) as f:
            data = json.load(f)

        shared_schema = data.get("schema")
        cases = []
        for item in data["cases"]:
            cases.append(
                VerdictCase(
                    id=item["id"],
                    category=item["category"],
                    nl_query=item["nl_query"],
                    sql_query=item["sql_query"],
                    expected_correct=bool(item["expected_correct"]),
                    reference_query=item.get("reference_query"),
                    schema=item.get("schema", shared_schema),
                    expected_issue_facets=item.get("expected_issue_facets", []),
                    notes=item.get("notes", ""),
                )
            )
        return cases

    def run_single(self, case: VerdictCase) -> CaseResult:
        """
        Evaluate a single case.

        Args:
            case: Case to evaluate

        Returns:
            CaseResult with the verifier's judgment
        """
        start_time = time.perf_counter()
        outcome = self.verifier.run(
            EvaluationRequest(
                schema=case.schema if case.schema is not None else self.verifier.schema,
                nl_query=case.nl_query,
                sql_query=case.sql_query,
                reference_query=case.reference_query,
            )
        )
        processing_time = (time.perf_counter() - start_time) * 1000

        verdict = outcome.verdict
        return CaseResult(
            case=case,
            correct=verdict.correct,
            confidence=verdict.confidence,
            stage=outcome.stage.value,
            processing_time_ms=processing_time,
            mismatched_facets=[
                result.facet.value for result in verdict.facet_results if not result.clean
            ],
            issues=list(verdict.issues),
        )

    def run_benchmark(
        self,
        cases: list[VerdictCase] | None = None,
        case_file: str | Path | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> BenchmarkReport:
        """
        Run a full benchmark suite.

        Args:
            cases: List of cases (or load from file)
            case_file: Path to a cases file (default: the bundled sample cases)
            progress_callback: Optional callback for progress updates

        Returns:
            BenchmarkReport with full results
        """
        if cases is None:
            cases = self.load_cases(case_file or DEFAULT_CASES)

        if self.tracker:
            self.tracker.log_verifier_config(self.verifier)

        results: list[CaseResult] = []
        total = len(cases)
        for i, case in enumerate(cases):
            results.append(self.run_single(case))
            if progress_callback:
                progress_callback(i + 1, total)

        report = self._generate_report(results)

        if self.tracker:
            self.tracker.log_report(report)

        return report

    def _generate_report(self, results: list[CaseResult]) -> BenchmarkReport:
        """Generate a benchmark report from results."""
        now = datetime.now(timezone.utc)

        total = len(results)
        agreed = sum(1 for r in results if r.agreed)
        false_accepts = sum(1 for r in results if r.correct and not r.case.expected_correct)
        false_rejects = sum(1 for r in results if not r.correct and r.case.expected_correct)
        failed = sum(1 for r in results if r.stage == Stage.FAILED.value)

        avg_confidence = sum(r.confidence for r in results) / total if total else 0.0
        avg_time = sum(r.processing_time_ms for r in results) / total if total else 0.0

        return BenchmarkReport(
            run_id=now.strftime("%Y%m%d_%H%M%S"),
            timestamp=now.isoformat(),
            total_cases=total,
            agreed=agreed,
            disagreed=total - agreed,
            agreement_rate=agreed / total if total else 0.0,
            false_accepts=false_accepts,
            false_rejects=false_rejects,
            failed_evaluations=failed,
            avg_confidence=avg_confidence,
            avg_processing_time_ms=avg_time,
            results_by_category=_group(results, lambda r: r.case.category),
            results_by_mode=_group(results, lambda r: r.case.mode),
            individual_results=results,
        )

    def print_report(self, report: BenchmarkReport) -> None:
        """Print a formatted benchmark report."""
        print("\n" + "=" * 60)
        print("VERIFIER AGREEMENT REPORT")
        print("=" * 60)
        print(f"Run ID: {report.run_id}")
        print(f"Timestamp: {report.timestamp}")
        print()

        print("OVERALL RESULTS")
        print("-" * 40)
        print(f"Total Cases:      {report.total_cases}")
        print(f"Agreed:           {report.agreed}")
        print(f"Disagreed:        {report.disagreed}")
        print(f"Agreement Rate:   {report.agreement_rate:.1%}")
        print(f"False Accepts:    {report.false_accepts}")
        print(f"False Rejects:    {report.false_rejects}")
        print(f"Not Analysed:     {report.failed_evaluations}")
        print(f"Avg Confidence:   {report.avg_confidence:.3f}")
        print(f"Avg Time:         {report.avg_processing_time_ms:.2f}ms")
        print()

        for title, groups in (
            ("BY CATEGORY", report.results_by_category),
            ("BY MODE", report.results_by_mode),
        ):
            print(title)
            print("-" * 40)
            for name, stats in sorted(groups.items()):
                print(
                    f"  {name:20} {stats['agreed']}/{stats['total']} "
                    f"({stats['agreement_rate']:.0%})"
                )
            print()

        disagreements = [r for r in report.individual_results if not r.agreed]
        if disagreements:
            print("DISAGREEMENTS")
            print("-" * 40)
            for r in disagreements:
                print(f"  [{r.case.id}] {r.case.nl_query[:50]}")
                print(
                    f"    expected correct={r.case.expected_correct}, "
                    f"got correct={r.correct}"
                )
                for issue in r.issues[:3]:
                    print(f"    - {issue}")
            print()


def _group(results: list[CaseResult], key: Callable[[CaseResult], str]) -> dict[str, dict]:
    groups: dict[str, dict] = {}
    for r in results:
        stats = groups.setdefault(key(r), {"total": 0, "agreed": 0, "disagreed": 0})
        stats["total"] += 1
        if r.agreed:
            stats["agreed"] += 1
        else:
            stats["disagreed"] += 1

    for stats in groups.values():
        stats["agreement_rate"] = stats["agreed"] / stats["total"]
    return groups


def main(argv: list[str] | None = None) -> int:
    """Run benchmark from command line."""
    parser = argparse.ArgumentParser(description="Benchmark the SQL semantic verifier")
    parser.add_argument("cases", nargs="?", default=str(DEFAULT_CASES), help="Cases JSON file")
    parser.add_argument("--track", action="store_true", help="Log the run to MLflow")
    parser.add_argument("--output", help="Write the summary as JSON to this path")
    args = parser.parse_args(argv)

    print("Running SQL verifier benchmark...")

    tracker = None
    if args.track:
        from mlops.tracking import ExperimentTracker

        tracker = ExperimentTracker()

    runner = BenchmarkRunner(tracker=tracker)

    def progress(current, total):
        print(f"  Progress: {current}/{total}", end="\r")

    if tracker:
        with tracker.start_run(run_name="benchmark_run"):
            report = runner.run_benchmark(case_file=args.cases, progress_callback=progress)
    else:
        report = runner.run_benchmark(case_file=args.cases, progress_callback=progress)

    print()  # Clear progress line
    runner.print_report(report)

    if args.output:
        Path(args.output).write_text(json.dumps(report.to_dict(), indent=2))

    return 0 if report.disagreed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
