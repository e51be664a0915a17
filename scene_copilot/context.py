"""Scene context: tells the AI what currently exists in the host.

The host application is queried read-only through a ``HostContext``
implementation.  Queries can be slow on big scenes, so the gathered
``PromptContext`` is cached for ``CONTEXT_CACHE_SECONDS``.  The cache
expires by age only; selection changes inside that window are not seen.
"""

import enum
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

CONTEXT_CACHE_SECONDS = 5.0
MAX_CONTEXT_ASSETS = 20

UNKNOWN_PROJECT = "Unknown Project"
UNKNOWN_SCENE = "Unknown Scene"


class WorkflowType(str, enum.Enum):
    GENERAL = "general"
    MATERIAL_CREATION = "material_creation"
    LEVEL_EDITING = "level_editing"
    ASSET_MANAGEMENT = "asset_management"
    ANIMATION = "animation"
    VFX = "vfx"


@dataclass
class PromptContext:
    project_name: str = ""
    current_scene_name: str = ""
    selected_object_names: list[str] = field(default_factory=list)
    available_asset_names: list[str] = field(default_factory=list)
    workflow_type: WorkflowType = WorkflowType.GENERAL


class HostContext:
    """Read-only view of the live host application.

    Subclass this for a real host.  Every method may raise; the gatherer
    falls back to placeholder values in that case.
    """

    def project_name(self) -> str:
        raise NotImplementedError

    def scene_name(self) -> str:
        raise NotImplementedError

    def selected_object_names(self) -> list[str]:
        raise NotImplementedError

    def list_asset_names(self, limit: int) -> list[str]:
        raise NotImplementedError


class StaticHostContext(HostContext):
    """Host context backed by plain values (CLI, server, tests)."""

    def __init__(self, project="", scene="", selection=None, assets=None):
        self.project = project
        self.scene = scene
        self.selection = list(selection or [])
        self.assets = list(assets or [])

    def project_name(self):
        return self.project

    def scene_name(self):
        return self.scene

    def selected_object_names(self):
        return list(self.selection)

    def list_asset_names(self, limit):
        return list(self.assets[:limit])


def _unique(names, limit):
    seen = []
    for name in names:
        if name and name not in seen:
            seen.append(name)
        if len(seen) >= limit:
            break
    return seen


class ContextGatherer:
    """Snapshots host state into a ``PromptContext`` with a short cache."""

    def __init__(self, host: HostContext | None = None, clock=time.monotonic,
                 cache_seconds: float = CONTEXT_CACHE_SECONDS,
                 max_assets: int = MAX_CONTEXT_ASSETS):
        self.host = host
        self.clock = clock
        self.cache_seconds = cache_seconds
        self.max_assets = max_assets
        self._cached: PromptContext | None = None
        self._cached_at = 0.0

    def gather(self) -> PromptContext:
        now = self.clock()
        if self._cached is not None and now - self._cached_at < self.cache_seconds:
            return self._cached

        context = PromptContext(
            project_name=self._query("project", lambda h: h.project_name(), UNKNOWN_PROJECT),
            current_scene_name=self._query("scene", lambda h: h.scene_name(), UNKNOWN_SCENE),
            selected_object_names=list(
                self._query("selection", lambda h: h.selected_object_names(), [])),
            available_asset_names=_unique(
                self._query("assets", lambda h: h.list_asset_names(self.max_assets), []),
                self.max_assets),
            workflow_type=WorkflowType.GENERAL,
        )
        self._cached = context
        self._cached_at = now
        return context

    def _query(self, what, fn, fallback):
        if self.host is None:
            return fallback
        try:
            value = fn(self.host)
        except Exception as exc:
            logger.warning(f"Host {what} query failed: {exc}")
            return fallback
        return value if value else fallback
