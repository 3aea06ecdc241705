"""
Unit Tests for the Benchmark Runner
===================================

Tests for case loading, agreement scoring and reporting.
"""

import json
from pathlib import Path

import pytest

from mlops.eval.benchmark import (
    DEFAULT_CASES,
    BenchmarkRunner,
    CaseResult,
    VerdictCase,
    main,
)
from sql_verifier import SemanticVerifier

PREMIUM = "SELECT name FROM customers WHERE tier = 'premium'"


def exact_case(case_id: str = "exact-1", expected_correct: bool = True) -> VerdictCase:
    """A candidate identical to its reference."""
    return VerdictCase(
        id=case_id,
        category="exact",
        nl_query="List the names of premium customers",
        sql_query=PREMIUM,
        reference_query=PREMIUM,
        expected_correct=expected_correct,
    )


def missing_filter_case() -> VerdictCase:
    return VerdictCase(
        id="filter-1",
        category="filters",
        nl_query="List the names of premium customers",
        sql_query="SELECT name FROM customers",
        reference_query=PREMIUM,
        expected_correct=False,
        expected_issue_facets=["filters"],
    )


@pytest.fixture
def runner(verifier: SemanticVerifier) -> BenchmarkRunner:
    """Create a runner over the sample-schema verifier."""
    return BenchmarkRunner(verifier=verifier)


class TestVerdictCase:
    """Tests for VerdictCase and CaseResult."""

    def test_mode(self) -> None:
        """Test that the mode follows the reference query."""
        assert exact_case().mode == "reference"
        case = VerdictCase(
            id="h", category="listing", nl_query="x", sql_query="SELECT 1", expected_correct=True
        )
        assert case.mode == "heuristic"

    def test_agreement_needs_expected_facets(self) -> None:
        """Test that agreement also checks which facets were flagged."""
        case = missing_filter_case()
        flagged = CaseResult(case, False, 1.0, "aggregated", 1.0, ["filters"])
        unflagged = CaseResult(case, False, 1.0, "aggregated", 1.0, ["sorting"])
        assert flagged.agreed
        assert not unflagged.agreed


class TestBenchmarkRunner:
    """Tests for BenchmarkRunner."""

    def test_run_single(self, runner: BenchmarkRunner) -> None:
        """Test that a reference-exact case agrees."""
        result = runner.run_single(exact_case())
        assert result.correct
        assert result.agreed
        assert result.stage == "aggregated"
        assert result.mismatched_facets == []

    def test_flagged_facet(self, runner: BenchmarkRunner) -> None:
        """Test that the mismatched facet is recorded."""
        result = runner.run_single(missing_filter_case())
        assert not result.correct
        assert "filters" in result.mismatched_facets
        assert result.agreed

    def test_report(self, runner: BenchmarkRunner) -> None:
        """Test report counts and grouping."""
        cases = [exact_case(), missing_filter_case(), exact_case("exact-2", False)]
        progress = []
        report = runner.run_benchmark(
            cases=cases, progress_callback=lambda done, total: progress.append((done, total))
        )

        assert report.total_cases == 3
        assert report.agreed == 2
        assert report.disagreed == 1
        assert report.false_accepts == 1
        assert report.false_rejects == 0
        assert report.failed_evaluations == 0
        assert report.agreement_rate == pytest.approx(2 / 3)
        assert report.results_by_category["exact"]["total"] == 2
        assert report.results_by_category["filters"]["agreement_rate"] == 1.0
        assert report.results_by_mode["reference"]["total"] == 3
        assert progress[-1] == (3, 3)

    def test_report_to_dict(self, runner: BenchmarkRunner) -> None:
        """Test that the summary is JSON-serialisable and omits per-case details."""
        report = runner.run_benchmark(cases=[exact_case()])
        summary = report.to_dict()
        assert "individual_results" not in summary
        assert json.loads(json.dumps(summary))["total_cases"] == 1

    def test_failed_evaluation(self, runner: BenchmarkRunner) -> None:
        """Test that unanalysable candidates are counted separately."""
        case = VerdictCase(
            id="fail-1",
            category="errors",
            nl_query="all customers",
            sql_query="SELECT * FROM clients",
            expected_correct=False,
        )
        report = runner.run_benchmark(cases=[case])
        assert report.failed_evaluations == 1
        assert report.agreed == 1

    def test_load_bundled_cases(self, runner: BenchmarkRunner) -> None:
        """Test that the bundled case file loads."""
        cases = runner.load_cases(DEFAULT_CASES)
        assert cases
        assert len({case.id for case in cases}) == len(cases)
        assert {case.mode for case in cases} == {"reference", "heuristic"}


class TestBenchmarkCLI:
    """Tests for the command-line entry point."""

    def _write_cases(self, path: Path, cases: list[dict]) -> Path:
        path.write_text(json.dumps({"cases": cases}))
        return path

    def test_all_agree(self, tmp_path: Path) -> None:
        """Test exit code 0 and the JSON summary when every case agrees."""
        case_file = self._write_cases(
            tmp_path / "cases.json",
            [
                {
                    "id": "exact-1",
                    "category": "exact",
                    "nl_query": "List the names of premium customers",
                    "sql_query": PREMIUM,
                    "reference_query": PREMIUM,
                    "expected_correct": True,
                }
            ],
        )
        output = tmp_path / "report.json"
        assert main([str(case_file), "--output", str(output)]) == 0
        assert json.loads(output.read_text())["agreed"] == 1

    def test_disagreement(self, tmp_path: Path) -> None:
        """Test exit code 1 when a case disagrees."""
        case_file = self._write_cases(
            tmp_path / "cases.json",
            [
                {
                    "id": "exact-1",
                    "category": "exact",
                    "nl_query": "List the names of premium customers",
                    "sql_query": PREMIUM,
                    "reference_query": PREMIUM,
                    "expected_correct": False,
                }
            ],
        )
        assert main([str(case_file)]) == 1
