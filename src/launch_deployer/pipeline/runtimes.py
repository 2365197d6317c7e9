"""Runtime installation for the languages a launch plan can ask for."""

from __future__ import annotations

import re
from typing import Optional

from ..config import RuntimeDefaults
from ..engine import CommandRunner, UnsupportedVersionError

REQUIRES_DEPENDENCIES = ("ruby", "bun", "node", "elixir", "python", "php")

ASDF_LANGUAGES = ("bun", "node", "elixir")
ASDF_PLUGIN_NAMES = {"node": "nodejs"}

INSTALLABLE_PHP_VERSIONS = (
    "5.6", "7.0", "7.1", "7.2", "7.3", "7.4",
    "8.0", "8.1", "8.2", "8.3", "8.4",
)


def needs_dependencies(language: Optional[str]) -> bool:
    return language in REQUIRES_DEPENDENCIES


def major_minor(version: str) -> str:
    """``"3.12.4"`` -> ``"3.12"``; a missing minor segment counts as ``0``."""
    segments = re.findall(r"\d+", version)
    if not segments:
        raise UnsupportedVersionError(f"unparseable version: {version}")
    minor = segments[1] if len(segments) > 1 else "0"
    return f"{int(segments[0])}.{int(minor)}"


class DependencyInstaller:
    """Installs the runtime a plan resolved, using the tool each language needs."""

    def __init__(self, runner: CommandRunner, defaults: RuntimeDefaults) -> None:
        self.runner = runner
        self.defaults = defaults

    def resolve_version(self, language: Optional[str], version: Optional[str]) -> str:
        default = self.defaults.for_language(language)
        if default is None:
            raise UnsupportedVersionError(
                f"unhandled runtime: {language}, supported: {', '.join(self.defaults.languages())}"
            )
        return version or default

    def install(self, language: Optional[str], version: Optional[str] = None) -> str:
        """Install ``language`` at ``version`` (or its default) and return the version used."""
        version = self.resolve_version(language, version)

        if language in ASDF_LANGUAGES:
            plugin = ASDF_PLUGIN_NAMES.get(language, language)
            if plugin == "elixir":
                # elixir needs erlang first
                self.runner.run(f"asdf install erlang {self.defaults.erlang}")
            self.runner.run(f"asdf install {plugin} {version}")
        elif language == "ruby":
            self.runner.run(f"rvm install {version}")
        elif language == "php":
            self._install_php(version)
        elif language == "python":
            self.runner.run(f"mise use -g python@{major_minor(version)}")
        else:
            raise UnsupportedVersionError(
                f"no handler for runtime: {language}, supported: {', '.join(self.defaults.languages())}"
            )
        return version

    def _install_php(self, version: str) -> None:
        php = major_minor(version)
        if php not in INSTALLABLE_PHP_VERSIONS:
            raise UnsupportedVersionError(
                f"unsupported PHP version {version}, supported versions are: "
                f"{', '.join(INSTALLABLE_PHP_VERSIONS)}"
            )
        self.runner.run(
            f"apt install --no-install-recommends -y php{php} php{php}-curl "
            f"php{php}-mbstring php{php}-xml"
        )
        self.runner.run("curl -sS https://getcomposer.org/installer -o /tmp/composer-setup.php")
        # TODO: verify the installer signature against composer.github.io/installer.sig
        self.runner.run("php /tmp/composer-setup.php --install-dir=/usr/local/bin --filename=composer")
