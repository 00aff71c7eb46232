"""Nox sessions for testing against multiple backend versions."""

import nox

nox.options.default_venv_backend = "uv"

POLARS_VERSIONS = ["1.28.0", "1.30.0"]
PANDAS_VERSIONS = ["2.2.0", "2.2.3"]

CORE_TESTS = ["tests/unit"]

POLARS_TESTS = [
    "tests/integration/test_polars_execution.py",
    "tests/integration/test_io.py",
]

PANDAS_TESTS = [
    "tests/integration/test_pandas_execution.py",
    "tests/integration/test_io.py",
]


@nox.session(python=["3.10", "3.12"])
def test_core(session: nox.Session) -> None:
    """Backend-independent unit tests."""
    session.install("-e", ".[test]")
    session.run("pytest", *CORE_TESTS, "-q")


@nox.session(python=["3.10"])
@nox.parametrize("polars", POLARS_VERSIONS)
def test_polars(session: nox.Session, polars: str) -> None:
    """Test the Polars backend against specific Polars versions."""
    session.install("-e", ".[test]", f"polars=={polars}")
    session.run("pytest", *POLARS_TESTS, "-q", "-k", "polars")


@nox.session(python=["3.10"])
@nox.parametrize("pandas", PANDAS_VERSIONS)
def test_pandas(session: nox.Session, pandas: str) -> None:
    """Test the pandas backend against specific pandas versions."""
    session.install("-e", ".[test]", f"pandas=={pandas}")
    session.run("pytest", *PANDAS_TESTS, "-q", "-k", "pandas")


@nox.session(python=["3.12"])
def test_all(session: nox.Session) -> None:
    """The full suite, including cross-backend parity and end-to-end pipelines."""
    session.install("-e", ".[test]")
    session.run("pytest", "-q")
