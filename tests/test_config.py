import os
import sys
import tempfile
import textwrap
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../')))

from cargomon.config import (
    find_executable,
    load_config,
    read_manifest,
    workspace_roots,
)
from cargomon.exceptions import ConfigError
from cargomon.filter import relevant

EXE = ".exe" if sys.platform == "win32" else ""


class ConfigTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.project = os.path.realpath(self._tmp.name)
        env = patch.dict(os.environ)
        env.start()
        os.environ.pop("CARGO_TARGET_DIR", None)
        self.addCleanup(env.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, relpath, content=""):
        path = os.path.join(self.project, relpath)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(textwrap.dedent(content))
        return path


class TestManifest(ConfigTestCase):
    def test_package_name_is_executable(self):
        self.write("Cargo.toml", """
            [package]
            name = "cargomon"
            version = "0.1.0"
        """)
        manifest = read_manifest(self.project)
        self.assertEqual(
            find_executable(manifest),
            os.path.join(self.project, "target", "debug", "cargomon" + EXE),
        )

    def test_default_run_and_bin_precedence(self):
        self.write("Cargo.toml", """
            [package]
            name = "pkg"

            [[bin]]
            name = "first"
            path = "src/first.rs"
        """)
        self.assertEqual(read_manifest(self.project).executable_name, "first")

        self.write("Cargo.toml", """
            [package]
            name = "pkg"
            default-run = "second"

            [[bin]]
            name = "first"
        """)
        self.assertEqual(read_manifest(self.project).executable_name, "second")

    def test_release_profile_and_target_dir(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        manifest = read_manifest(self.project)
        os.environ["CARGO_TARGET_DIR"] = os.path.join(self.project, "out")
        self.assertEqual(
            find_executable(manifest, release=True),
            os.path.join(self.project, "out", "release", "app" + EXE),
        )

    def test_target_dir_inside_project_is_ignored(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        os.environ["CARGO_TARGET_DIR"] = os.path.join(self.project, "out")
        config = load_config(self.project)
        self.assertIn("out/**", config.rule.exclude)
        generated = os.path.join(self.project, "out", "debug", "build", "app-1", "out", "gen.rs")
        self.assertFalse(relevant(generated, config.rule))
        self.assertTrue(relevant(os.path.join(self.project, "src", "main.rs"), config.rule))

    def test_relative_target_dir_is_ignored(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        os.environ["CARGO_TARGET_DIR"] = os.path.join("build", "cargo")
        config = load_config(self.project)
        self.assertFalse(relevant(os.path.join(self.project, "build", "cargo", "debug", "build", "out", "gen.rs"), config.rule))
        self.assertTrue(relevant(os.path.join(self.project, "build", "main.rs"), config.rule))

    def test_target_dir_outside_project_adds_no_exclude(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        elsewhere = tempfile.mkdtemp()
        self.addCleanup(os.rmdir, elsewhere)
        os.environ["CARGO_TARGET_DIR"] = elsewhere
        self.assertEqual(load_config(self.project).rule.exclude, ())

    def test_no_manifest(self):
        self.assertIsNone(read_manifest(self.project))

    def test_invalid_toml(self):
        self.write("Cargo.toml", "[package\nname = ")
        with self.assertRaises(ConfigError):
            read_manifest(self.project)

    def test_unknown_metadata_key(self):
        self.write("Cargo.toml", """
            [package]
            name = "app"

            [package.metadata.cargomon]
            debounce = 10
        """)
        with self.assertRaises(ConfigError):
            read_manifest(self.project)

    def test_workspace_members(self):
        self.write("Cargo.toml", """
            [workspace]
            members = ["crates/*", "tools/cli"]
        """)
        self.write("crates/core/Cargo.toml")
        self.write("crates/web/Cargo.toml")
        self.write("tools/cli/Cargo.toml")
        self.write("crates/README.md")
        roots = workspace_roots(read_manifest(self.project))
        self.assertEqual(roots, [
            os.path.join(self.project, "crates", "core"),
            os.path.join(self.project, "crates", "web"),
            os.path.join(self.project, "tools", "cli"),
        ])

    def test_virtual_workspace_needs_run_command(self):
        self.write("Cargo.toml", '[workspace]\nmembers = []\n')
        with self.assertRaises(ConfigError):
            load_config(self.project)
        config = load_config(self.project, {'run': "target/debug/server --port 8000"})
        self.assertEqual(config.run_command, ["target/debug/server", "--port", "8000"])


class TestLoadConfig(ConfigTestCase):
    def test_cargo_defaults(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        config = load_config(self.project)
        self.assertEqual(config.build_command, ["cargo", "build"])
        self.assertEqual(config.run_command, [os.path.join(self.project, "target", "debug", "app" + EXE)])
        self.assertEqual(config.roots, [self.project])
        self.assertEqual(config.rule.extensions, (".rs", ".toml"))
        self.assertAlmostEqual(config.debounce, 0.3)
        self.assertAlmostEqual(config.grace_period, 3.0)
        self.assertFalse(config.initial_build)

    def test_release_flag(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        config = load_config(self.project, release=True)
        self.assertEqual(config.build_command, ["cargo", "build", "--release"])
        self.assertIn(os.path.join("target", "release", "app"), config.run_command[0])

    def test_metadata_then_overrides(self):
        self.write("Cargo.toml", """
            [package]
            name = "app"

            [package.metadata.cargomon]
            debounce_ms = 50
            exclude = ["src/gen/**"]
            build = ["cargo", "build", "--features", "dev"]
            initial_build = true
        """)
        config = load_config(self.project, {'debounce_ms': 120, 'include': ["*.sql"], 'exclude': None})
        self.assertAlmostEqual(config.debounce, 0.12)
        self.assertEqual(config.rule.exclude, ("src/gen/**", "target/**"))
        self.assertEqual(config.rule.include, ("*.sql",))
        self.assertEqual(config.rule.extensions, ())
        self.assertEqual(config.build_command, ["cargo", "build", "--features", "dev"])
        self.assertTrue(config.initial_build)

    def test_generic_project(self):
        config = load_config(self.project, {
            'build': "make all",
            'run': ["./app"],
            'extensions': ["c", ".h"],
            'run_args': ["--verbose"],
        })
        self.assertEqual(config.build_command, ["make", "all"])
        self.assertEqual(config.launch_command, ["./app", "--verbose"])
        self.assertEqual(config.rule.extensions, (".c", ".h"))

    def test_generic_project_requires_commands(self):
        with self.assertRaises(ConfigError):
            load_config(self.project, {'run': "./app"})
        with self.assertRaises(ConfigError):
            load_config(self.project, {'build': "make"})

    def test_negative_durations_rejected(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        with self.assertRaises(ConfigError):
            load_config(self.project, {'debounce_ms': -1})
        with self.assertRaises(ConfigError):
            load_config(self.project, {'grace_period_ms': -5})

    def test_zero_debounce_allowed(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        self.assertEqual(load_config(self.project, {'debounce_ms': 0}).debounce, 0)

    def test_wrong_types_rejected(self):
        self.write("Cargo.toml", """
            [package]
            name = "app"

            [package.metadata.cargomon]
            build = 5
        """)
        with self.assertRaises(ConfigError):
            load_config(self.project)

    def test_initial_build_must_be_boolean(self):
        self.write("Cargo.toml", """
            [package]
            name = "app"

            [package.metadata.cargomon]
            initial_build = "false"
        """)
        with self.assertRaises(ConfigError):
            load_config(self.project)
        with self.assertRaises(ConfigError):
            load_config(self.project, {'initial_build': 1})
        self.assertFalse(load_config(self.project, {'initial_build': False}).initial_build)

    def test_extra_watch_dir(self):
        self.write("Cargo.toml", '[package]\nname = "app"\n')
        shared = tempfile.mkdtemp()
        self.addCleanup(os.rmdir, shared)
        config = load_config(self.project, {'watch': [shared]})
        self.assertEqual(config.roots, [self.project, shared])
        self.assertIn(os.path.realpath(shared), config.rule.roots)

        with self.assertRaises(ConfigError):
            load_config(self.project, {'watch': ["missing-dir"]})

    def test_missing_project_dir(self):
        with self.assertRaises(ConfigError):
            load_config(os.path.join(self.project, "nope"))


if __name__ == '__main__':
    unittest.main()
