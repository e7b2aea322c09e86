import argparse
import signal
import sys

from . import __version__, console
from .exceptions import ConfigError, WatchError
from .config import load_config
from .loop import LoopController

EXIT_CONFIG = 2


def build_parser():
    parser = argparse.ArgumentParser(
        prog="cargomon",
        description="Watch a Cargo project, rebuild on change and restart the program.",
    )
    parser.add_argument("-C", "--project-dir", default=None,
                        help="Project directory (default: current directory)")
    parser.add_argument("-w", "--watch", action="append", default=None,
                        help="Additional directory to watch (repeatable)")
    parser.add_argument("-i", "--include", action="append", default=None,
                        help="Glob of files that trigger a rebuild (repeatable)")
    parser.add_argument("-e", "--exclude", action="append", default=None,
                        help="Glob of files to ignore; wins over --include (repeatable)")
    parser.add_argument("-x", "--ext", dest="extensions", action="append", default=None,
                        help="File extension that triggers a rebuild, e.g. rs (repeatable)")
    parser.add_argument("-d", "--debounce", dest="debounce_ms", type=float, default=None,
                        help="Quiet period in milliseconds before rebuilding (default: 300)")
    parser.add_argument("-g", "--grace-period", dest="grace_period_ms", type=float, default=None,
                        help="Milliseconds a process gets to exit before it is killed (default: 3000)")
    parser.add_argument("-b", "--build", default=None,
                        help="Build command (default: cargo build)")
    parser.add_argument("-r", "--run", default=None,
                        help="Program to run after a successful build (default: the crate's binary)")
    parser.add_argument("--release", action="store_true",
                        help="Build and run the release profile")
    parser.add_argument("--initial", dest="initial_build", action="store_true", default=None,
                        help="Build and run once on startup")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("-V", "--version", action="version", version=f"cargomon {__version__}")
    parser.add_argument("run_args", nargs=argparse.REMAINDER,
                        help="Arguments passed to the program, after --")
    return parser


def _overrides(args):
    run_args = list(args.run_args or [])
    if run_args and run_args[0] == "--":
        run_args = run_args[1:]
    return {
        'watch': args.watch,
        'include': args.include,
        'exclude': args.exclude,
        'extensions': args.extensions,
        'debounce_ms': args.debounce_ms,
        'grace_period_ms': args.grace_period_ms,
        'build': args.build,
        'run': args.run,
        'initial_build': args.initial_build,
        'run_args': run_args or None,
    }


def install_signal_handlers(controller):
    def _handle(signum, frame):
        controller.request_shutdown(f"received {signal.Signals(signum).name}")

    signals = [signal.SIGINT, signal.SIGTERM]
    if hasattr(signal, "SIGBREAK"):
        signals.append(signal.SIGBREAK)
    previous = {}
    for sig in signals:
        previous[sig] = signal.signal(sig, _handle)
    return previous


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.no_color:
        console.set_color(False)

    try:
        config = load_config(args.project_dir, _overrides(args), release=args.release)
        controller = LoopController(config)
    except ConfigError as e:
        console.error(f"Configuration error: {e}")
        return EXIT_CONFIG
    except WatchError as e:
        console.error(f"Watch error: {e}")
        return EXIT_CONFIG

    previous = install_signal_handlers(controller)
    try:
        return controller.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    sys.exit(main())
