#!/usr/bin/env python
"""
Setup script for context-optimizer
Package metadata lives in pyproject.toml; this adds the post-install step.
"""
import tomllib
from pathlib import Path

from setuptools import setup
from setuptools.command.install import install

this_directory = Path(__file__).parent

# Read version from pyproject.toml
with open(this_directory / "pyproject.toml", "rb") as f:
    pyproject = tomllib.load(f)
    version = pyproject["project"]["version"]


class VerboseInstall(install):
    """Custom install command with better user feedback"""

    def run(self):
        print("\n" + "=" * 60)
        print(f"CONTEXT-OPTIMIZER {version} INSTALLATION")
        print("=" * 60)

        install.run(self)

        print("\nRunning post-installation setup...")
        try:
            self.setup_home()
        except PermissionError as e:
            print(f"Permission error during post-installation setup: {e}")
            print("   Create the directory manually: mkdir -p ~/.context-optimizer")
            print("   Or point CONTEXT_OPTIMIZER_DB_PATH at a writable location")
        except OSError as e:
            print(f"System error during post-installation setup: {e}")
            print("   Check available disk space and that ~/.context-optimizer is writable")

        print("\nInstallation complete!")
        print("=" * 60 + "\n")

    def setup_home(self):
        """Create ~/.context-optimizer, the default home of the database."""
        home = Path.home() / ".context-optimizer"
        home.mkdir(exist_ok=True)

        # Marks a pip installation
        (home / ".pip_installed").touch()

        print(f"Home directory created: {home}")


setup(
    cmdclass={
        "install": VerboseInstall,
    },
)
