"""Setup script execution and the helper command scripts call."""

from config_manager.scripts.engine import ScriptEngine, discover_scripts, helper_command

__all__ = ["ScriptEngine", "discover_scripts", "helper_command"]
