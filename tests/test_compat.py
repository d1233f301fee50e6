"""
Tests for incompatible-crate detection, reporting and the dataset loader.
"""

import json
import logging
import os

import pytest

from conftest import FakeFetcher
from cargo_wasix.adapters.mock import FakeExecutor
from cargo_wasix.core.errors import IncompatibleCrateBlocking, UnderlyingToolFailure
from cargo_wasix.core.models.compat import (
    Dependency,
    DependencyGraph,
    IncompatibleCrateEntry,
    Replacement,
)
from cargo_wasix.core.models.process import ProcessResult
from cargo_wasix.core.services.compat import (
    CompatibilityChecker,
    DatasetLoader,
    blocking_message,
    graph_from_metadata,
    parse_dataset,
    raise_for_blocking,
    read_dependency_graph,
)

DATASET_URL = "https://example.invalid/incompatible_crates.json"


def _graph(*deps: tuple[str, str] | tuple[str, str, str]) -> DependencyGraph:
    return DependencyGraph(
        root="app",
        dependencies=[Dependency(name=d[0], version=d[1], source=d[2] if len(d) > 2 else None) for d in deps],
    )


MIO = IncompatibleCrateEntry(
    name="mio",
    affected_version_range="<0.8.9",
    severity="block",
    reason="uses epoll directly",
    replacements=[
        Replacement(version="^0.8", repo="https://github.com/wasix-org/mio", branch="v0.8.x"),
    ],
)


# ── Matching ────────────────────────────────────────────────────


class TestChecker:
    def test_version_in_range_blocks(self):
        entry = IncompatibleCrateEntry(name="foo", affected_version_range="<2.0.0", severity="block")
        diags = CompatibilityChecker([entry]).check(_graph(("foo", "1.2.0")))

        assert len(diags) == 1
        assert diags[0].blocking
        assert diags[0].crate == "foo"
        assert diags[0].range == "<2.0.0"

    def test_version_outside_range_is_clean(self):
        entry = IncompatibleCrateEntry(name="foo", affected_version_range="<2.0.0")
        assert CompatibilityChecker([entry]).check(_graph(("foo", "2.0.0"))) == []

    def test_warn_severity(self):
        entry = IncompatibleCrateEntry(name="tokio", affected_version_range="<1.29.0", severity="warn")
        diags = CompatibilityChecker([entry]).check(_graph(("tokio", "1.28.0")))
        assert [d.blocking for d in diags] == [False]

    def test_wasix_fork_skipped(self):
        graph = _graph(("mio", "0.8.5", "git+https://github.com/wasix-org/mio?branch=v0.8.x#abc"))
        assert CompatibilityChecker([MIO]).check(graph) == []

    def test_compatible_versions_excluded(self):
        entry = IncompatibleCrateEntry(
            name="socket2",
            affected_version_range="<0.5",
            compatible_versions="=0.4.9",
        )
        checker = CompatibilityChecker([entry])
        assert checker.check(_graph(("socket2", "0.4.9"))) == []
        assert len(checker.check(_graph(("socket2", "0.4.7")))) == 1

    def test_unrelated_and_unparseable_ignored(self):
        graph = _graph(("serde", "1.0.0"), ("mio", "not-a-version"))
        assert CompatibilityChecker([MIO]).check(graph) == []

    def test_len_counts_entries(self):
        assert len(CompatibilityChecker([MIO, MIO])) == 2


# ── Reporting ───────────────────────────────────────────────────


class TestBlockingMessage:
    def test_patch_snippet_for_known_replacement(self):
        diags = CompatibilityChecker([MIO]).check(_graph(("mio", "0.8.5")))
        message = blocking_message(diags)

        assert message.startswith("Found incompatible crates in dependencies (of dependencies): mio")
        assert "[patch.crates-io]" in message
        assert 'mio = { git = "https://github.com/wasix-org/mio", branch = "v0.8.x" }' in message
        assert "cargo update" in message

    def test_lists_crates_without_replacement(self):
        ring = IncompatibleCrateEntry(name="ring", affected_version_range="<0.17.0")
        diags = CompatibilityChecker([ring]).check(_graph(("ring", "0.16.20")))
        message = blocking_message(diags)

        assert "[patch.crates-io]" not in message
        assert "No replacements found for the following dependencies:" in message
        assert "* ring v0.16.20, no replacements known" in message

    def test_replacement_must_cover_version(self):
        diags = CompatibilityChecker([MIO]).check(_graph(("mio", "0.7.14")))
        message = blocking_message(diags)
        assert "known replacement versions: ^0.8" in message


class TestRaiseForBlocking:
    def test_warnings_only_do_not_raise(self, caplog):
        caplog.set_level(logging.WARNING)
        entry = IncompatibleCrateEntry(name="libc", affected_version_range="<0.2.139", severity="warn")
        diags = CompatibilityChecker([entry]).check(_graph(("libc", "0.2.100")))
        raise_for_blocking(diags)
        assert "libc v0.2.100" in caplog.text

    def test_blocking_raises_with_exit_code(self):
        diags = CompatibilityChecker([MIO]).check(_graph(("mio", "0.8.5")))
        with pytest.raises(IncompatibleCrateBlocking) as exc:
            raise_for_blocking(diags)
        assert exc.value.exit_code == 4
        assert [d.crate for d in exc.value.diagnostics] == ["mio"]


# ── Dataset ─────────────────────────────────────────────────────


class TestParseDataset:
    def test_wrapped_document(self):
        entries = parse_dataset({"schema_version": 1, "crates": [{"name": "mio", "affected_version_range": "<1"}]})
        assert [e.name for e in entries] == ["mio"]

    def test_bare_list_and_unknown_fields(self):
        entries = parse_dataset([{"name": "mio", "future_field": True}])
        assert entries[0].affected_version_range == "*"

    def test_invalid_entries_skipped(self):
        entries = parse_dataset([{"name": "ok"}, {"severity": "block"}, {"name": "x", "severity": "fatal"}])
        assert [e.name for e in entries] == ["ok"]

    def test_wrong_shape(self):
        with pytest.raises(ValueError):
            parse_dataset({"entries": []})

    def test_bundled_dataset_is_valid(self):
        from cargo_wasix.core.data import DataRegistry

        entries = parse_dataset(DataRegistry().incompatible_crates)
        assert {"mio", "socket2"} <= {e.name for e in entries}


class TestDatasetLoader:
    REMOTE = [{"name": "remote-crate", "affected_version_range": "*"}]

    def _fetcher(self):
        return FakeFetcher({DATASET_URL: json.dumps(self.REMOTE).encode()})

    def test_downloads_and_caches(self, cache_root):
        fetcher = self._fetcher()
        entries = DatasetLoader(cache_root, DATASET_URL, fetcher).load()

        assert [e.name for e in entries] == ["remote-crate"]
        assert json.loads((cache_root / "incompatible_crates.json").read_text()) == self.REMOTE

    def test_fresh_cache_skips_network(self, cache_root):
        cache_root.mkdir()
        (cache_root / "incompatible_crates.json").write_text(json.dumps([{"name": "cached"}]))
        fetcher = self._fetcher()

        entries = DatasetLoader(cache_root, DATASET_URL, fetcher).load()

        assert [e.name for e in entries] == ["cached"]
        assert fetcher.reads == []

    def test_old_cache_refreshed(self, cache_root):
        cache_root.mkdir()
        path = cache_root / "incompatible_crates.json"
        path.write_text(json.dumps([{"name": "cached"}]))
        old = path.stat().st_mtime - 31 * 86400
        os.utime(path, (old, old))

        entries = DatasetLoader(cache_root, DATASET_URL, self._fetcher()).load()
        assert [e.name for e in entries] == ["remote-crate"]

    def test_offline_uses_bundled(self, cache_root):
        fetcher = self._fetcher()
        entries = DatasetLoader(cache_root, DATASET_URL, fetcher, offline=True).load()

        assert fetcher.reads == []
        assert "mio" in {e.name for e in entries}

    def test_network_failure_falls_back(self, cache_root, caplog):
        caplog.set_level(logging.WARNING)
        entries = DatasetLoader(cache_root, DATASET_URL, FakeFetcher()).load()
        assert "mio" in {e.name for e in entries}
        assert "bundled" in caplog.text

    def test_malformed_download_falls_back(self, cache_root):
        fetcher = FakeFetcher({DATASET_URL: b"<html>oops</html>"})
        entries = DatasetLoader(cache_root, DATASET_URL, fetcher).load()
        assert "mio" in {e.name for e in entries}
        assert not (cache_root / "incompatible_crates.json").exists()


# ── cargo metadata ──────────────────────────────────────────────


def _metadata(root="app 0.1.0 (path+file:///app)"):
    def pkg(pid, name, version, source=None):
        return {"id": pid, "name": name, "version": version, "source": source}

    normal = [{"kind": None, "target": None}]
    build = [{"kind": "build", "target": None}]
    return {
        "packages": [
            pkg("app 0.1.0 (path+file:///app)", "app", "0.1.0"),
            pkg("mio 0.8.5", "mio", "0.8.5", "registry+https://github.com/rust-lang/crates.io-index"),
            pkg("libc 0.2.100", "libc", "0.2.100"),
            pkg("cc 1.0.0", "cc", "1.0.0"),
            pkg("orphan 1.0.0", "orphan", "1.0.0"),
        ],
        "workspace_members": ["app 0.1.0 (path+file:///app)"],
        "resolve": {
            "root": root,
            "nodes": [
                {
                    "id": "app 0.1.0 (path+file:///app)",
                    "deps": [
                        {"pkg": "mio 0.8.5", "dep_kinds": normal},
                        {"pkg": "cc 1.0.0", "dep_kinds": build},
                    ],
                },
                {"id": "mio 0.8.5", "deps": [{"pkg": "libc 0.2.100", "dep_kinds": normal}]},
                {"id": "libc 0.2.100", "deps": []},
                {"id": "cc 1.0.0", "deps": []},
                {"id": "orphan 1.0.0", "deps": []},
            ],
        },
    }


class TestGraphFromMetadata:
    def test_walks_normal_edges_transitively(self):
        graph = graph_from_metadata(_metadata())
        assert graph.root == "app"
        assert sorted(d.name for d in graph.dependencies) == ["libc", "mio"]

    def test_source_preserved(self):
        graph = graph_from_metadata(_metadata())
        mio = next(d for d in graph.dependencies if d.name == "mio")
        assert mio.source.startswith("registry+")

    def test_virtual_workspace_starts_from_members(self):
        graph = graph_from_metadata(_metadata(root=None))
        assert graph.root == ""
        assert sorted(d.name for d in graph.dependencies) == ["libc", "mio"]

    def test_missing_resolve(self):
        with pytest.raises(ValueError):
            graph_from_metadata({"packages": []})


class TestReadDependencyGraph:
    def test_runs_cargo_metadata(self):
        executor = FakeExecutor()
        executor.set_response("cargo", ProcessResult.success(["cargo"], stdout=json.dumps(_metadata())))

        graph = read_dependency_graph(executor, "wasm32-wasmer-wasi", cwd="/app")

        call = executor.calls_to("cargo")[0]
        assert call.command[:3] == ["cargo", "metadata", "--format-version=1"]
        assert call.command[-2:] == ["--filter-platform", "wasm32-wasmer-wasi"]
        assert call.cwd == "/app"
        assert len(graph) == 2

    def test_failure_propagates(self):
        executor = FakeExecutor()
        executor.set_failure("cargo", returncode=101, stderr="no Cargo.toml")
        with pytest.raises(UnderlyingToolFailure) as exc:
            read_dependency_graph(executor, "wasm32-wasmer-wasi")
        assert exc.value.exit_code == 101
        assert "no Cargo.toml" in str(exc.value)

    def test_garbage_output(self):
        executor = FakeExecutor()
        executor.set_response("cargo", ProcessResult.success(["cargo"], stdout="not json"))
        with pytest.raises(ValueError):
            read_dependency_graph(executor, "wasm32-wasmer-wasi")
