"""Process entrypoint: runs the CLI and turns every outcome into a documented exit code."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    CONFIG_ERROR = 2
    NETWORK_ERROR = 3
    INTERNAL_ERROR = 4
    INTERRUPTED = 130


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Console script and ``python -m bepoz_toolkit`` target."""

    try:
        from bepoz_toolkit.ui.cli import run_cli

        return _exit_status(run_cli(argv))
    except SystemExit as exc:
        return _exit_status(exc.code)
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return ExitCode.INTERRUPTED
    except Exception as exc:  # noqa: BLE001 - last line before the shell sees a traceback
        code = _classify(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return code


def _exit_status(code: object) -> int:
    if code is None:
        return ExitCode.SUCCESS
    if isinstance(code, int):
        try:
            return ExitCode(code)
        except ValueError:
            return ExitCode.INTERNAL_ERROR
    message = str(code).strip()
    if message:
        print(message, file=sys.stderr)
    return ExitCode.INTERNAL_ERROR


def _classify(exc: BaseException) -> ExitCode:
    """Map an error, or anything it was raised from, onto an exit code."""

    from bepoz_toolkit.cache.artifact_cache import CacheKeyError
    from bepoz_toolkit.catalog.fetcher import FetchError
    from bepoz_toolkit.catalog.manifest import ManifestError
    from bepoz_toolkit.config import ConfigLoadError, ConfigValidationError, SettingsError
    from bepoz_toolkit.orchestration.launcher import ArtifactUnavailableError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        (
            (ConfigLoadError, ConfigValidationError, SettingsError, ManifestError, CacheKeyError),
            ExitCode.CONFIG_ERROR,
        ),
        ((FetchError, ArtifactUnavailableError), ExitCode.NETWORK_ERROR),
    )
    for link in _causes(exc):
        for kinds, code in routes:
            if isinstance(link, kinds):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "cli_entrypoint"]
