# setup.py
from __future__ import annotations

from pathlib import Path
from setuptools import setup, find_packages
from setuptools.command.install import install
from setuptools.command.develop import develop
import os

README = Path(__file__).with_name("README.md")
long_description = README.read_text(encoding="utf-8") if README.exists() else ""
PACKAGE_NAME = "modelkeeper"

def _resolve_home_dir(cli_value: str | None) -> str:
    """Decide the home directory during installation time."""
    if cli_value:
        return str(Path(cli_value).expanduser())
    env = os.getenv("MODELKEEPER_HOME")
    if env:
        return str(Path(env).expanduser())
    # fallback: appdirs
    try:
        from appdirs import user_data_dir
        base = Path(user_data_dir())
    except Exception:
        base = Path.home() / ".local" / "share"
    return str(base.expanduser())

def _write_siteconfig(target_root: Path, home_dir: str) -> None:

    pkg_dir = target_root / PACKAGE_NAME
    pkg_dir.mkdir(parents=True, exist_ok=True)
    siteconfig = pkg_dir / "_siteconfig.py"
    siteconfig.write_text(
        f'# Auto-generated at install time\nHOME_DIR = r"{home_dir}"\n',
        encoding="utf-8"
    )

class ModelKeeperInstall(install):
    user_options = install.user_options + [
        ('modelkeeper-home=', None, 'Custom home directory for modelkeeper'),
    ]

    def initialize_options(self):
        super().initialize_options()
        self.modelkeeper_home = None

    def finalize_options(self):
        super().finalize_options()

    def run(self):
        super().run()
        home_dir = _resolve_home_dir(self.modelkeeper_home)
        target_root = Path(self.install_lib)
        _write_siteconfig(target_root, home_dir)
        self.announce(f"[modelkeeper] Home dir set to: {home_dir}", level=2)

class ModelKeeperDevelop(develop):
    user_options = develop.user_options + [
        ('modelkeeper-home=', None, 'Custom home directory for modelkeeper (editable install)'),
    ]

    def initialize_options(self):
        super().initialize_options()
        self.modelkeeper_home = None

    def finalize_options(self):
        super().finalize_options()

    def run(self):
        super().run()
        home_dir = _resolve_home_dir(self.modelkeeper_home)
        project_root = Path(__file__).resolve().parent
        _write_siteconfig(project_root, home_dir)
        self.announce(f"[modelkeeper] (editable) Home dir set to: {home_dir}", level=2)

install_requires = [
    "requests>=2.31",
    "tenacity>=8.2",

    "typer>=0.9",
    "rich>=13.0",
    "appdirs>=1.4.4",

    "google-api-python-client>=2.100",
    "google-auth>=2.23",
    "google-auth-oauthlib>=1.1",
    "google-auth-httplib2>=0.1.1",
    "httplib2>=0.22",
]

extras_require = {
    "tests": [
        "pytest>=8.4.1,<9",
        "pytest-cov>=5.0.0",
    ],
    "dev": [
        "black>=24.3.0",
        "ruff>=0.4.0",
        "mypy>=1.8.0",
        "build>=1.0.0",
        "twine>=5.0.0",
    ],
}

setup(
    name=PACKAGE_NAME,
    version="0.1.0",
    description="Local model registry for Ollama-compatible servers with Google Drive backup.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=("tests", "tests.*", "docs", "examples")),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=install_requires,
    extras_require=extras_require,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],
    keywords=[
        "ollama", "llm", "model-registry", "google-drive", "backup", "cli",
    ],
    entry_points={
        "console_scripts": [
            "modelkeeper=modelkeeper.cli.main:app",
        ],
    },
    zip_safe=False,
    cmdclass={
        "install": ModelKeeperInstall,
        "develop": ModelKeeperDevelop,
    },
)
