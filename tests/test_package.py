"""Tests for the top-level package exports."""
import hyde
from hyde.orchestrator import GenerationOrchestrator
from hyde.retry import execute_with_retry


def test_public_exports():
    assert hyde.GenerationOrchestrator is GenerationOrchestrator
    assert hyde.execute_with_retry is execute_with_retry
    assert hyde.__version__ == "0.1.0"
    for name in hyde.__all__:
        assert hasattr(hyde, name)
