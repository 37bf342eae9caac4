"""Plugin system for unmangle."""

from unmangle.plugins.base import Plugin, PluginChain, PluginContext
from unmangle.plugins.beautify import BeautifyPlugin, FormatOptions

__all__ = ["Plugin", "PluginChain", "PluginContext", "BeautifyPlugin", "FormatOptions"]
