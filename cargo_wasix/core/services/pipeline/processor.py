"""
Post-processor — runs the enabled stages over one artifact, in order.

Every stage writes a sibling temp file that is committed over the
artifact with one atomic replace, so a failing stage leaves the module
exactly as the previous stage left it.  A stage that reports a missing
tool gets one retry after the tool cache installs it; any other failure
stops the pipeline with ``PostProcessStageFailure``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.data.tools import WASM_BINDGEN, tool_spec
from cargo_wasix.core.errors import MissingTool, PostProcessStageFailure, ToolCacheError
from cargo_wasix.core.models.artifact import BuildArtifact
from cargo_wasix.core.models.pipeline import PipelineContext
from cargo_wasix.core.models.tool import ToolSpec
from cargo_wasix.core.persistence.atomic import commit, sibling_temp
from cargo_wasix.core.services.pipeline.stages import Stage, StageEnv, default_stages
from cargo_wasix.core.services.tool_cache import ToolCache

logger = logging.getLogger(__name__)


class ToolProvider:
    """Finds stage tools: explicit overrides first, then the cache.

    Args:
        cache: Tool cache, or None to only allow overrides.
        overrides: Tool name → executable (path or name on ``PATH``).
        versions: Tool name → pinned version, for tools the build does not pin.
    """

    def __init__(
        self,
        cache: ToolCache | None,
        overrides: dict[str, str] | None = None,
        versions: dict[str, str] | None = None,
    ):
        self.cache = cache
        self.overrides = {k: v for k, v in (overrides or {}).items() if v}
        self.versions = versions or {}

    def spec(self, name: str, context: PipelineContext) -> ToolSpec:
        if name == WASM_BINDGEN and context.wasm_bindgen_version:
            return tool_spec(name, context.wasm_bindgen_version)
        return tool_spec(name, self.versions.get(name))

    def _override(self, name: str) -> Path | None:
        override = self.overrides[name]
        path = Path(override).expanduser()
        if path.is_file():
            return path
        found = shutil.which(override)
        return Path(found) if found else None

    def find(self, name: str, context: PipelineContext) -> Path:
        """Executable for ``name``; raises ``MissingTool`` if not installed."""
        if name in self.overrides:
            path = self._override(name)
            if path is None:
                raise MissingTool(name, f"`{self.overrides[name]}` does not exist")
            return path
        if self.cache is None:
            raise MissingTool(name, "no tool cache configured")
        tool = self.cache.lookup(self.spec(name, context))
        if tool is None:
            raise MissingTool(name, "not installed in the tool cache")
        return tool.executable_path

    def install(self, name: str, context: PipelineContext) -> None:
        """Obtain ``name`` through the cache (no-op for overrides)."""
        if name in self.overrides or self.cache is None:
            return
        spec = self.spec(name, context)
        logger.info("Fetching %s %s", spec.name, spec.version)
        self.cache.ensure(spec)


class PostProcessor:
    """Runs stages over artifacts.

    Args:
        tools: Where stages get their executables from.
        executor: Runs the external tools.
        stages: Stage list in order; defaults to the canonical four.
    """

    def __init__(
        self,
        tools: ToolProvider,
        executor: ProcessExecutor,
        stages: list[Stage] | None = None,
    ):
        self.tools = tools
        self.executor = executor
        self.stages = default_stages() if stages is None else stages

    def run(self, artifact: BuildArtifact, context: PipelineContext) -> PipelineContext:
        """Apply every enabled stage to ``artifact`` in place.

        Raises:
            PostProcessStageFailure: A stage failed; later stages did not run.
            ToolCacheError: A missing tool could not be installed.
        """
        path = Path(artifact.path)
        env = StageEnv(executor=self.executor, tools=self.tools)
        for stage in self.stages:
            if not stage.enabled(artifact, context):
                logger.debug("Skipping stage %s for %s", stage.name, path.name)
                continue
            logger.debug("Running stage %s on %s", stage.name, path.name)
            self._run_stage(stage, path, artifact, context, env)
            context.stages_run.append(stage.name)
        return context

    def _apply(self, stage, path, artifact, context, env) -> None:
        tmp = sibling_temp(path, stage.name)
        try:
            if stage.apply(path, tmp, artifact, context, env):
                commit(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)

    def _run_stage(self, stage, path, artifact, context, env) -> None:
        try:
            try:
                self._apply(stage, path, artifact, context, env)
            except MissingTool as e:
                logger.debug("Stage %s is missing %s; installing", stage.name, e.tool)
                self.tools.install(e.tool, context)
                self._apply(stage, path, artifact, context, env)
        except ToolCacheError:
            raise
        except Exception as e:
            raise PostProcessStageFailure(stage.name, str(path), str(e)) from e
