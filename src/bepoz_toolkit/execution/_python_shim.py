"""Child-side runner for Python tool scripts.

Invoked as ``python -I -X utf8 -u _python_shim.py <script> <params-json>``. Runs in
an isolated interpreter, so it imports nothing from the toolkit and speaks the
host's line protocol on stdout:

    ::warning::<text>    warnings.warn() and logging WARNING
    ::verbose::<text>    host.verbose() and logging below WARNING
    ::progress::<0-100>  host.progress()
    ::result::<text>     each value returned or yielded by ``run(**params)``

Anything printed normally is information output; anything on stderr is an
error entry. The exit status is the script's ``SystemExit`` code, or 1 after an
uncaught exception.
"""

import json
import logging
import runpy
import sys
import traceback
import warnings


class _Host:
    """Helper exposed to scripts as the ``host`` global."""

    def progress(self, percent):
        _emit("progress", str(int(percent)))

    def verbose(self, message):
        _emit("verbose", str(message))

    def warning(self, message):
        _emit("warning", str(message))


class _ProtocolHandler(logging.Handler):
    def emit(self, record):
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        if record.levelno >= logging.ERROR:
            print(message, file=sys.stderr, flush=True)
        elif record.levelno >= logging.WARNING:
            _emit("warning", message)
        else:
            _emit("verbose", message)


def _emit(channel, text):
    for line in str(text).splitlines() or [""]:
        print(f"::{channel}::{line}", flush=True)


def _show_warning(message, category, filename, lineno, file=None, line=None):
    _emit("warning", f"{category.__name__}: {message}")


def _exit_status(code):
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    print(code, file=sys.stderr, flush=True)
    return 1


def main(argv):
    if len(argv) < 2:
        print("usage: _python_shim.py <script> [params-json]", file=sys.stderr)
        return 2
    script_path = argv[1]
    params = json.loads(argv[2]) if len(argv) > 2 and argv[2] else {}
    if not isinstance(params, dict):
        print("parameters must be a JSON object", file=sys.stderr)
        return 2

    warnings.simplefilter("default")
    warnings.showwarning = _show_warning
    root = logging.getLogger()
    root.handlers[:] = [_ProtocolHandler()]
    root.setLevel(logging.DEBUG)

    sys.argv = [script_path]
    try:
        namespace = runpy.run_path(
            script_path,
            init_globals={"params": dict(params), "host": _Host()},
            run_name="__main__",
        )
        entry = namespace.get("run")
        if callable(entry):
            returned = entry(**params)
            if returned is not None:
                values = returned if isinstance(returned, (list, tuple)) else [returned]
                if hasattr(returned, "__next__"):
                    values = returned
                for value in values:
                    _emit("result", value)
    except SystemExit as exc:
        return _exit_status(exc.code)
    except KeyboardInterrupt:
        return 130
    except BaseException:
        traceback.print_exc()
        sys.stderr.flush()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
