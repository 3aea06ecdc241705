"""Evaluation harnesses."""

from mlops.eval.benchmark import BenchmarkReport, BenchmarkRunner, CaseResult, VerdictCase

__all__ = ["BenchmarkRunner", "BenchmarkReport", "CaseResult", "VerdictCase"]
