import unittest

from launch_deployer.config import RuntimeDefaults
from launch_deployer.engine import UnsupportedVersionError
from launch_deployer.pipeline import DependencyInstaller, needs_dependencies
from launch_deployer.pipeline.runtimes import major_minor

from fakes import RecordingRunner, new_stream


class VersionTests(unittest.TestCase):
    def test_major_minor(self) -> None:
        self.assertEqual(major_minor("3.12.4"), "3.12")
        self.assertEqual(major_minor("8"), "8.0")
        self.assertEqual(major_minor("v20.16.0"), "20.16")
        with self.assertRaises(UnsupportedVersionError):
            major_minor("latest")

    def test_needs_dependencies(self) -> None:
        self.assertTrue(needs_dependencies("node"))
        self.assertTrue(needs_dependencies("php"))
        self.assertFalse(needs_dependencies("go"))
        self.assertFalse(needs_dependencies(None))


class DependencyInstallerTests(unittest.TestCase):
    def setUp(self) -> None:
        stream, _ = new_stream()
        self.runner = RecordingRunner(stream)
        self.installer = DependencyInstaller(self.runner, RuntimeDefaults())

    def test_node_uses_asdf_plugin_name(self) -> None:
        self.assertEqual(self.installer.install("node", "22.1.0"), "22.1.0")
        self.assertEqual(self.runner.all_commands(), ["asdf install nodejs 22.1.0"])

    def test_elixir_installs_erlang_first(self) -> None:
        self.installer.install("elixir")
        self.assertEqual(
            self.runner.all_commands(),
            ["asdf install erlang 26.2.5.2", "asdf install elixir 1.16"],
        )

    def test_ruby_uses_rvm_with_default(self) -> None:
        self.assertEqual(self.installer.install("ruby"), "3.1.6")
        self.assertEqual(self.runner.all_commands(), ["rvm install 3.1.6"])

    def test_python_pins_major_minor(self) -> None:
        self.installer.install("python", "3.11.9")
        self.assertEqual(self.runner.all_commands(), ["mise use -g python@3.11"])

    def test_php_installs_packages_and_composer(self) -> None:
        self.installer.install("php", "8.2.10")
        commands = self.runner.all_commands()
        self.assertTrue(commands[0].startswith("apt install --no-install-recommends -y php8.2 "))
        self.assertIn("php8.2-mbstring", commands[0])
        self.assertTrue(any("composer" in command for command in commands[1:]))

    def test_unsupported_php_version(self) -> None:
        with self.assertRaises(UnsupportedVersionError):
            self.installer.install("php", "9.0")
        self.assertEqual(self.runner.all_commands(), [])

    def test_unknown_runtime(self) -> None:
        with self.assertRaises(UnsupportedVersionError) as ctx:
            self.installer.install("cobol", "85")
        self.assertIn("supported", ctx.exception.message)


if __name__ == "__main__":
    unittest.main()
