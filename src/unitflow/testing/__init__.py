from unitflow.testing.registry import RUNNERS, TestResult, evaluate, run_tests

__all__ = ["RUNNERS", "TestResult", "evaluate", "run_tests"]
