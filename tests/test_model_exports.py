import edit_engine
import edit_engine.models as models
import edit_engine.orchestrator as orchestrator
import edit_engine.services as services
from edit_engine.models import DiffResult
from edit_engine.models.diff_models import DiffResult as CoreDiffResult


def test_public_exports_resolve():
    for package in (edit_engine, models, orchestrator, services):
        for name in package.__all__:
            assert getattr(package, name) is not None, f"{package.__name__}.{name}"


def test_model_exports_are_the_core_classes():
    assert DiffResult is CoreDiffResult
    assert isinstance(DiffResult.no_changes("a.txt", "x"), CoreDiffResult)
