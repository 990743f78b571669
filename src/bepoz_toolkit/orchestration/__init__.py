"""Launch pipeline: cache → pre-flight → execution → ledger and notifications."""

from bepoz_toolkit.orchestration.launcher import (
    ArtifactUnavailableError,
    LaunchOutcome,
    ToolLauncher,
)
from bepoz_toolkit.orchestration.wiring import Toolkit, build_toolkit

__all__ = [
    "ArtifactUnavailableError",
    "LaunchOutcome",
    "ToolLauncher",
    "Toolkit",
    "build_toolkit",
]
