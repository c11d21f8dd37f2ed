"""taskgate models."""

import pkgutil
from pathlib import Path

APPS = ("tracker",)


def load_all_models() -> None:
    """Load all models from this folder and from every app package."""
    db_models_dir = Path(__file__).resolve().parent
    for module_info in pkgutil.walk_packages(
        path=[str(db_models_dir)],
        prefix="taskgate.db.models.",
    ):
        if not module_info.name.endswith("__init__"):
            __import__(module_info.name)

    project_root = Path(__file__).resolve().parent.parent.parent
    for app in APPS:
        models_file = project_root / app / "models.py"
        if models_file.exists():
            __import__(f"taskgate.{app}.models")
