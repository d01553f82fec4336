"""
Jakson — Project Scaffolding
==============================

What:  Writes the file tree of a new Jakson project.
How:   Every generated file is a string.Template rendered with the project
       options ($name, $package, $author, $version). Nothing is written if any
       target file already exists.
Who:   Called by the `jakson new` CLI command.

Generated tree:
    pyproject.toml
    .gitignore
    <package>/__init__.py
    <package>/config.py
    <package>/configs/{development,test,integration_test,staging,production}.py
    <package>/action.py
    <package>/app.py
    <package>/main.py
    <package>/services/health/{health_service,health_service_factory}.py
    <package>/actions/health/get_health_action.py
    tests/conftest.py
    tests/test_health.py
"""

import re
import textwrap
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import List, Optional, Tuple

from jakson import __version__


class ScaffoldError(Exception):
    """Raised when a project cannot be generated."""


@dataclass
class ProjectOptions:
    name: str
    author: Optional[str] = None
    directory: Path = Path(".")

    @property
    def package(self) -> str:
        """Import name derived from the project name: "My-App" → "my_app"."""
        package = re.sub(r"[^0-9a-zA-Z]+", "_", self.name).strip("_").lower()
        if not package:
            raise ScaffoldError(f"cannot derive a package name from '{self.name}'")
        if package[0].isdigit():
            package = f"app_{package}"
        return package


def _template(text: str) -> Template:
    return Template(textwrap.dedent(text).lstrip("\n"))


# ══════════════════════════════════════════════════════════════════════════
# Templates
# ══════════════════════════════════════════════════════════════════════════

PYPROJECT = _template('''
    [build-system]
    requires = ["setuptools>=68"]
    build-backend = "setuptools.build_meta"

    [project]
    name = "$name"
    version = "0.1.0"
    authors = [{ name = "$author" }]
    requires-python = ">=3.10"
    dependencies = ["jakson>=$version"]

    [project.optional-dependencies]
    test = ["pytest>=8", "pytest-asyncio>=0.24", "httpx>=0.27"]

    [tool.setuptools.packages.find]
    include = ["$package*"]

    [tool.pytest.ini_options]
    testpaths = ["tests"]
    asyncio_default_fixture_loop_scope = "session"
''')

GITIGNORE = _template('''
    __pycache__/
    *.egg-info/
    .pytest_cache/
    .venv/
    .env
''')

PACKAGE_INIT = _template('''
    """$name"""
''')

CONFIG = _template('''
    from jakson import Config


    class AppConfig(Config):
        """Settings of $name. Add project settings as fields here."""


    def load_config(type: str) -> AppConfig:
        """Return the config module for `type` (development, test, ...)."""
        from importlib import import_module

        module = import_module(f"$package.configs.{type.replace('-', '_')}")
        return module.config
''')

ENV_CONFIG = _template('''
    from $package.config import AppConfig

    config = AppConfig(type="$type", port=$port)
''')

CONFIGS_INIT = _template('''
    """Per-environment configuration."""
''')

ACTION = _template('''
    from typing import TypeVar

    from jakson import Action as ActionBase

    from $package.app import App

    InputT = TypeVar("InputT")
    OutputT = TypeVar("OutputT")


    class Action(ActionBase[App, InputT, OutputT]):
        """Base class of this project's actions."""
''')

HEALTH_SERVICE = _template('''
    from jakson import Service


    class HealthService(Service):
        async def get_health(self) -> bool:
            return True
''')

HEALTH_SERVICE_FACTORY = _template('''
    from jakson import ServiceContext, ServiceFactory

    from $package.services.health.health_service import HealthService


    class HealthServiceFactory(ServiceFactory):
        async def create_service(self, ctx: ServiceContext) -> HealthService:
            return HealthService(ctx)
''')

GET_HEALTH_ACTION = _template('''
    from $package.action import Action


    class GetHealthAction(Action[None, dict]):
        async def handle(self, input: None) -> dict:
            health = self.services["health"]

            return {"isHealthy": await health.get_health()}
''')

APP = _template('''
    from fastapi import APIRouter

    from jakson import Application

    from $package.config import AppConfig
    from $package.services.health.health_service_factory import HealthServiceFactory


    class App(Application[AppConfig]):
        log_tag = "$package"

        async def create_service_factories(self):
            return {
                "health": HealthServiceFactory(self),
            }

        async def register_routes(self, router: APIRouter) -> None:
            from $package.actions.health.get_health_action import GetHealthAction

            router.add_route("/health", GetHealthAction.create_handler(self), methods=["GET"])
''')

MAIN = _template('''
    """Run $name: python -m $package.main [config type]"""

    import asyncio
    import os
    import signal
    import sys

    from jakson import setup_logging

    from $package.app import App
    from $package.config import load_config


    async def main(config_type: str) -> None:
        config = load_config(config_type)
        setup_logging(config.log_level)

        app = App(config)
        await app.configure()
        await app.start()

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        try:
            await stop.wait()
        finally:
            await app.stop()


    if __name__ == "__main__":
        config_type = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("APP_TYPE", "development")
        asyncio.run(main(config_type))
''')

CONFTEST = _template('''
    import pytest_asyncio

    from jakson.testing import TestSession

    from $package.app import App
    from $package.config import load_config


    @pytest_asyncio.fixture(scope="session")
    async def session():
        session = TestSession(App(load_config("test")))
        await session.start()
        yield session
        await session.stop()


    @pytest_asyncio.fixture(autouse=True)
    async def each_test(session):
        async with session.test():
            yield


    @pytest_asyncio.fixture
    async def client(session):
        async with session.client() as client:
            yield client
''')

HEALTH_TEST = _template('''
    import pytest


    @pytest.mark.asyncio(loop_scope="session")
    async def test_get_health_responds_200(client):
        res = await client.get("/health")

        assert res.status_code == 200
        assert res.json() == {"isHealthy": True}
''')

ENVIRONMENTS: List[Tuple[str, int]] = [
    ("development", 3000),
    ("test", 3001),
    ("integration-test", 3002),
    ("staging", 8080),
    ("production", 8080),
]


def project_files(options: ProjectOptions) -> List[Tuple[Path, str]]:
    """Return (relative path, content) for every file of the new project."""
    pkg = Path(options.package)
    values = {
        "name": options.name,
        "package": options.package,
        "author": options.author or "",
        "version": __version__,
    }

    files: List[Tuple[Path, Template]] = [
        (Path("pyproject.toml"), PYPROJECT),
        (Path(".gitignore"), GITIGNORE),
        (pkg / "__init__.py", PACKAGE_INIT),
        (pkg / "config.py", CONFIG),
        (pkg / "configs" / "__init__.py", CONFIGS_INIT),
        (pkg / "action.py", ACTION),
        (pkg / "app.py", APP),
        (pkg / "main.py", MAIN),
        (pkg / "services" / "__init__.py", PACKAGE_INIT),
        (pkg / "services" / "health" / "__init__.py", PACKAGE_INIT),
        (pkg / "services" / "health" / "health_service.py", HEALTH_SERVICE),
        (pkg / "services" / "health" / "health_service_factory.py", HEALTH_SERVICE_FACTORY),
        (pkg / "actions" / "__init__.py", PACKAGE_INIT),
        (pkg / "actions" / "health" / "__init__.py", PACKAGE_INIT),
        (pkg / "actions" / "health" / "get_health_action.py", GET_HEALTH_ACTION),
        (Path("tests") / "conftest.py", CONFTEST),
        (Path("tests") / "test_health.py", HEALTH_TEST),
    ]
    rendered = [(path, template.substitute(values)) for path, template in files]

    for env, port in ENVIRONMENTS:
        path = pkg / "configs" / f"{env.replace('-', '_')}.py"
        rendered.append((path, ENV_CONFIG.substitute(values, type=env, port=port)))

    return rendered


def create_project(options: ProjectOptions) -> List[Path]:
    """
    Write the project into options.directory.

    Raises:
        ScaffoldError: A target file already exists. Nothing is written.
    """
    root = Path(options.directory)
    files = project_files(options)

    existing = [str(path) for path, _ in files if (root / path).exists()]
    if existing:
        raise ScaffoldError(f"refusing to overwrite existing files: {', '.join(existing)}")

    written = []
    for path, content in files:
        target = root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        written.append(target)
    return written
