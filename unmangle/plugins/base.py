"""Post-rename processing plugins."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class PluginContext:
    """Renamed code plus what the job learned, passed from plugin to plugin."""
    source_code: str
    file_path: Optional[Path] = None
    rename_map: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class Plugin(ABC):
    """A step that rewrites renamed code before it is saved.

    Plugins must not raise for ordinary failures; they leave the code as it
    was and append a warning to the context instead.
    """

    name: str = "plugin"
    priority: int = 100  # lower runs first
    enabled: bool = True

    @abstractmethod
    async def process(self, context: PluginContext) -> PluginContext:
        ...

    def should_run(self, context: PluginContext) -> bool:
        return self.enabled


class PluginChain:
    def __init__(self, plugins: Optional[Iterable[Plugin]] = None):
        self.plugins: list[Plugin] = []
        for plugin in plugins or ():
            self.add_plugin(plugin)

    def add_plugin(self, plugin: Plugin) -> "PluginChain":
        self.plugins.append(plugin)
        # stable sort keeps insertion order among equal priorities
        self.plugins.sort(key=lambda p: p.priority)
        return self

    @property
    def names(self) -> list[str]:
        return [plugin.name for plugin in self.plugins]

    async def run(self, context: PluginContext) -> PluginContext:
        for plugin in self.plugins:
            if not plugin.should_run(context):
                logger.debug("Skipping plugin %s", plugin.name)
                continue
            logger.debug("Running plugin %s", plugin.name)
            context = await plugin.process(context)
        return context

    def __len__(self) -> int:
        return len(self.plugins)
