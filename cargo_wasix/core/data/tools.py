"""
L0 Data — Auxiliary tool registry.

Every tool the post-processor can fetch, all platforms.  Pure data, no
logic.  Host keys are produced by ``tool_cache.platform.host_key()``.
"""

from __future__ import annotations

from cargo_wasix.core.models.tool import ToolSpec

WASM_OPT = "wasm-opt"
WASM_BINDGEN = "wasm-bindgen"

# Binaryen ships wasm-opt; releases are tagged ``version_<N>``.
BINARYEN_VERSION = "116"

# Only used when the build does not report its own wasm-bindgen version.
WASM_BINDGEN_VERSION = "0.2.92"


TOOL_SPECS: dict[str, ToolSpec] = {

    # ── Size optimizer ──────────────────────────────────────────

    WASM_OPT: ToolSpec(
        name=WASM_OPT,
        version=BINARYEN_VERSION,
        constraint=f">={BINARYEN_VERSION}",
        url_template=(
            "https://github.com/WebAssembly/binaryen/releases/download/"
            "version_{version}/binaryen-version_{version}-{platform}.tar.gz"
        ),
        checksum_url_template=(
            "https://github.com/WebAssembly/binaryen/releases/download/"
            "version_{version}/binaryen-version_{version}-{platform}.tar.gz.sha256"
        ),
        platforms={
            "linux-x86_64": "x86_64-linux",
            "macos-x86_64": "x86_64-macos",
            "macos-aarch64": "arm64-macos",
            "windows-x86_64": "x86_64-windows",
        },
        archive_format="tar.gz",
        executable="binaryen-version_{version}/bin/wasm-opt{exe}",
    ),

    # ── Host bindings generator ─────────────────────────────────

    WASM_BINDGEN: ToolSpec(
        name=WASM_BINDGEN,
        version=WASM_BINDGEN_VERSION,
        url_template=(
            "https://github.com/rustwasm/wasm-bindgen/releases/download/"
            "{version}/wasm-bindgen-{version}-{platform}.tar.gz"
        ),
        platforms={
            "linux-x86_64": "x86_64-unknown-linux-musl",
            "linux-aarch64": "aarch64-unknown-linux-gnu",
            "macos-x86_64": "x86_64-apple-darwin",
            "macos-aarch64": "aarch64-apple-darwin",
            "windows-x86_64": "x86_64-pc-windows-msvc",
        },
        archive_format="tar.gz",
        executable="wasm-bindgen-{version}-{platform}/wasm-bindgen{exe}",
    ),
}


def tool_spec(name: str, version: str | None = None) -> ToolSpec:
    """Look up a tool, optionally pinned to an exact version."""
    spec = TOOL_SPECS[name]
    if version and version != spec.version:
        return spec.with_version(version)
    return spec
