"""
Tests for runtime resolution and running modules.
"""

import pytest

from cargo_wasix.adapters.mock import FakeExecutor
from cargo_wasix.core.errors import RuntimeNotFound
from cargo_wasix.core.models.process import ProcessResult
from cargo_wasix.core.services.runner import RUNNER_ENV, Runner, resolve_runtime


class TestResolveRuntime:
    def test_default_on_path(self):
        assert resolve_runtime(FakeExecutor(), env={}) == "wasmer"

    def test_default_missing_gives_install_hint(self):
        with pytest.raises(RuntimeNotFound) as exc:
            resolve_runtime(FakeExecutor(available=set()), env={})
        assert exc.value.exit_code == 6
        assert "get.wasmer.io" in str(exc.value)

    def test_env_override(self):
        executor = FakeExecutor(available={"wasmer-dev"})
        assert resolve_runtime(executor, env={RUNNER_ENV: "wasmer-dev"}) == "wasmer-dev"

    def test_explicit_override_beats_env(self, tmp_path):
        runtime = tmp_path / "my-wasmer"
        runtime.write_text("")
        result = resolve_runtime(
            FakeExecutor(available=set()), override=str(runtime), env={RUNNER_ENV: "other"}
        )
        assert result == str(runtime)

    def test_missing_override(self):
        with pytest.raises(RuntimeNotFound) as exc:
            resolve_runtime(FakeExecutor(available=set()), env={RUNNER_ENV: "/nope/wasmer"})
        assert RUNNER_ENV in str(exc.value)


class TestRunner:
    def test_command_shape(self):
        assert Runner(FakeExecutor(), "wasmer").command("/t/app.wasm", ["a", "--b"]) == [
            "wasmer",
            "--",
            "/t/app.wasm",
            "a",
            "--b",
        ]

    def test_exit_code_passed_through(self):
        executor = FakeExecutor()
        executor.set_response("wasmer", ProcessResult(command=["wasmer"], returncode=42))
        assert Runner(executor).run("/t/app.wasm") == 42

        call = executor.calls_to("wasmer")[0]
        assert call.capture is False

    def test_signal_maps_to_128_plus_signal(self):
        executor = FakeExecutor()
        executor.set_response("wasmer", ProcessResult(command=["wasmer"], returncode=-9))
        assert Runner(executor).run("/t/app.wasm") == 137

    def test_vanished_runtime(self):
        executor = FakeExecutor()
        executor.set_missing("wasmer")
        with pytest.raises(RuntimeNotFound):
            Runner(executor).run("/t/app.wasm", [])
