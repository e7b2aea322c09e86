"""
Configuration for a cargomon session.

Values are layered, later wins: built-in defaults, then the
``[package.metadata.cargomon]`` (or ``[workspace.metadata.cargomon]``) table
in Cargo.toml, then the command line.
"""

import glob
import os
import shlex
import sys
import tomllib
from dataclasses import dataclass, field
from typing import List, Optional

from .exceptions import ConfigError
from .filter import WatchRule

DEFAULT_DEBOUNCE_MS = 300
DEFAULT_GRACE_PERIOD_MS = 3000
CARGO_EXTENSIONS = (".rs", ".toml")

CONFIG_KEYS = {
    'watch', 'include', 'exclude', 'extensions', 'debounce_ms',
    'grace_period_ms', 'build', 'run', 'initial_build',
}


@dataclass
class Config:
    project_dir: str
    roots: List[str]
    rule: WatchRule
    build_command: List[str]
    run_command: List[str]
    debounce: float = DEFAULT_DEBOUNCE_MS / 1000
    grace_period: float = DEFAULT_GRACE_PERIOD_MS / 1000
    initial_build: bool = False
    run_args: List[str] = field(default_factory=list)

    @property
    def launch_command(self):
        return list(self.run_command) + list(self.run_args)


@dataclass
class CargoManifest:
    path: str
    package_name: Optional[str] = None
    default_run: Optional[str] = None
    bin_names: List[str] = field(default_factory=list)
    members: List[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def directory(self):
        return os.path.dirname(self.path)

    @property
    def executable_name(self):
        return self.default_run or (self.bin_names[0] if self.bin_names else self.package_name)


def read_manifest(project_dir) -> Optional[CargoManifest]:
    """Parse Cargo.toml in ``project_dir``; None if there is none."""
    path = os.path.join(project_dir, "Cargo.toml")
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Could not read {path}: {e}") from e

    package = data.get("package") or {}
    workspace = data.get("workspace") or {}
    manifest = CargoManifest(path=path)
    manifest.package_name = package.get("name")
    manifest.default_run = package.get("default-run")
    manifest.bin_names = [b["name"] for b in data.get("bin", []) if isinstance(b, dict) and b.get("name")]
    manifest.members = list(workspace.get("members", []))

    metadata = (package.get("metadata") or {}).get("cargomon") or \
        (workspace.get("metadata") or {}).get("cargomon") or {}
    if not isinstance(metadata, dict):
        raise ConfigError(f"{path}: [metadata.cargomon] must be a table")
    unknown = set(metadata) - CONFIG_KEYS
    if unknown:
        raise ConfigError(f"{path}: unknown cargomon setting(s): {', '.join(sorted(unknown))}")
    manifest.metadata = metadata
    return manifest


def workspace_roots(manifest: CargoManifest) -> List[str]:
    """Expand ``[workspace] members`` globs into member directories."""
    roots = []
    for member in manifest.members:
        pattern = os.path.join(manifest.directory, member)
        for path in sorted(glob.glob(pattern)):
            if os.path.isdir(path) and path not in roots:
                roots.append(path)
    return roots


def target_dir(project_dir) -> str:
    return os.path.join(project_dir, os.environ.get("CARGO_TARGET_DIR") or "target")


def find_executable(manifest: CargoManifest, release=False) -> str:
    """Path of the binary ``cargo build`` produces for this manifest."""
    name = manifest.executable_name
    if not name:
        raise ConfigError(
            f"{manifest.path} has no package to run; pass --run or set "
            "[workspace.metadata.cargomon] run"
        )
    profile = "release" if release else "debug"
    suffix = ".exe" if sys.platform == "win32" else ""
    return os.path.join(target_dir(manifest.directory), profile, name + suffix)


def _command(value, key):
    if value is None:
        return None
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"'{key}' must be a string or a list of strings")


def _patterns(value, key):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"'{key}' must be a string or a list of strings")


def _milliseconds(value, key):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{key}' must be a number of milliseconds")
    if value < 0:
        raise ConfigError(f"'{key}' must not be negative, got {value}")
    return value / 1000


def _extension(ext):
    return ext if ext.startswith(".") else "." + ext


def _target_excludes(project_dir, roots):
    """Exclude globs for a build directory that lies inside a watched root."""
    tdir = os.path.realpath(target_dir(project_dir))
    for root in roots:
        if tdir == root:
            raise ConfigError(f"Build output directory is the watched directory: {tdir}")
        if tdir.startswith(root.rstrip(os.sep) + os.sep):
            # Same root the filter relativises against.
            return [os.path.relpath(tdir, root).replace(os.sep, "/") + "/**"]
    return []


def load_config(project_dir=None, overrides=None, release=False) -> Config:
    """
    Build the session Config for ``project_dir``.

    ``overrides`` holds command line values under the same keys as the
    Cargo.toml table; None values are ignored.
    """
    project_dir = os.path.abspath(project_dir or os.getcwd())
    if not os.path.isdir(project_dir):
        raise ConfigError(f"Project directory does not exist: {project_dir}")

    manifest = read_manifest(project_dir)
    settings = dict(manifest.metadata) if manifest else {}
    settings.update({k: v for k, v in (overrides or {}).items() if v is not None})

    build_command = _command(settings.get('build'), 'build')
    run_command = _command(settings.get('run'), 'run')
    if manifest is not None:
        if build_command is None:
            build_command = ["cargo", "build"] + (["--release"] if release else [])
        if run_command is None:
            run_command = [find_executable(manifest, release=release)]
    if not build_command:
        raise ConfigError("No Cargo.toml found and no build command given (--build)")
    if not run_command:
        raise ConfigError("No Cargo.toml found and no run command given (--run)")

    roots = [project_dir]
    if manifest is not None:
        roots += workspace_roots(manifest)
    for extra in _patterns(settings.get('watch'), 'watch'):
        path = extra if os.path.isabs(extra) else os.path.join(project_dir, extra)
        if not os.path.isdir(path):
            raise ConfigError(f"Watch path is not a directory: {path}")
        roots.append(path)

    extensions = _patterns(settings.get('extensions'), 'extensions')
    include = _patterns(settings.get('include'), 'include')
    if manifest is not None and not extensions and not include:
        extensions = list(CARGO_EXTENSIONS)

    real_roots = tuple(os.path.realpath(r) for r in roots)
    exclude = _patterns(settings.get('exclude'), 'exclude')
    if manifest is not None:
        exclude += _target_excludes(project_dir, real_roots)
    rule = WatchRule(
        include=tuple(include),
        exclude=tuple(exclude),
        extensions=tuple(_extension(e) for e in extensions),
        roots=real_roots,
    )

    config = Config(
        project_dir=project_dir,
        roots=roots,
        rule=rule,
        build_command=build_command,
        run_command=run_command,
    )
    if 'debounce_ms' in settings:
        config.debounce = _milliseconds(settings['debounce_ms'], 'debounce_ms')
    if 'grace_period_ms' in settings:
        config.grace_period = _milliseconds(settings['grace_period_ms'], 'grace_period_ms')
    if 'initial_build' in settings:
        if not isinstance(settings['initial_build'], bool):
            raise ConfigError("'initial_build' must be true or false")
        config.initial_build = settings['initial_build']
    if 'run_args' in settings:
        config.run_args = list(settings['run_args'])
    return config
