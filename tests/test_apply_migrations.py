import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "apply_migrations.py"


@pytest.fixture(scope="module")
def apply_migrations():
    spec = importlib.util.spec_from_file_location("apply_migrations", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_defaults_to_upgrade_head(apply_migrations):
    assert apply_migrations.alembic_args([]) == ["upgrade", "head"]


def test_revision_autogenerates(apply_migrations):
    assert apply_migrations.alembic_args(["revision", "add ratings"]) == [
        "revision",
        "--autogenerate",
        "-m",
        "add ratings",
    ]


def test_upgrade_and_downgrade_targets(apply_migrations):
    assert apply_migrations.alembic_args(["upgrade", "c4d5e6f7a8b9"]) == ["upgrade", "c4d5e6f7a8b9"]
    assert apply_migrations.alembic_args(["downgrade"]) == ["downgrade", "-1"]


@pytest.mark.parametrize("argv", [["revision"], ["stamp", "head"]])
def test_bad_commands_exit(apply_migrations, argv):
    with pytest.raises(SystemExit):
        apply_migrations.alembic_args(argv)
