"""cargo-wasix — build, post-process and run Cargo projects for WASIX targets."""

__version__ = "0.1.25"
