"""
MLOps Module
============

Benchmarking and experiment tracking for the verifier.

``mlops.tracking`` needs MLflow (``pip install .[tracking]``) and is imported
only when a run is tracked.
"""
