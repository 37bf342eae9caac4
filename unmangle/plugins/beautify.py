"""Prettier formatting of renamed output."""

import logging
import shutil
import subprocess
from dataclasses import dataclass

from unmangle.plugins.base import Plugin, PluginContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormatOptions:
    """Style options passed through to prettier unchanged."""
    print_width: int = 80
    tab_width: int = 2
    single_quote: bool = False
    trailing_comma: str = "all"

    def to_cli_args(self) -> list[str]:
        args = [
            "--print-width", str(self.print_width),
            "--tab-width", str(self.tab_width),
            "--trailing-comma", self.trailing_comma,
        ]
        if self.single_quote:
            args.append("--single-quote")
        return args


class BeautifyPlugin(Plugin):
    """Format JavaScript code with prettier."""

    name = "beautify"
    priority = 10

    def __init__(self, options: FormatOptions = FormatOptions(), timeout: int = 30):
        self.options = options
        self.timeout = timeout

    def should_run(self, context: PluginContext) -> bool:
        return self.enabled and shutil.which("npx") is not None

    def build_command(self) -> list[str]:
        return ["npx", "--yes", "prettier", "--parser", "babel", *self.options.to_cli_args()]

    async def process(self, context: PluginContext) -> PluginContext:
        try:
            result = subprocess.run(
                self.build_command(),
                input=context.source_code,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            context.warnings.append("Prettier timed out; output left unformatted")
            return context
        except OSError as e:
            context.warnings.append(f"Prettier could not run: {e}")
            return context

        if result.returncode == 0:
            logger.debug("Formatted with prettier")
            context.source_code = result.stdout
        else:
            context.warnings.append(f"Prettier failed: {result.stderr.strip()[:200]}")
        return context
