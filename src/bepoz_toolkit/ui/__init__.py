"""UI package exports for the CLI and its renderer."""

from bepoz_toolkit.ui.cli import CLIError, build_parser, run_cli
from bepoz_toolkit.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
