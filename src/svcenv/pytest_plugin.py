# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
pytest integration: one service environment per test session.

Tests declare what they need with ``@pytest.mark.services("kafka", "cassandra")``
and request the ``endpoint_registry`` or ``service_properties`` fixtures. The
union of the marked services is started once, on first use, and torn down at
the end of the session.
"""
import logging
import os
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

import pytest

from .CATALOG.builtin_services import builtin_config
from .MANAGERS.endpoint_registry import EndpointRegistry
from .MANAGERS.lifecycle_controller import LifecycleController
from .MODELS.orchestration_config import OrchestrationConfig
from .MODELS.settings import ControllerSettings, SelectionPolicy
from .PARSERS.services_parser import ServicesParser

logger = logging.getLogger(__name__)

MARKER = "services"
ENABLED_SERVICES = pytest.StashKey[List[str]]()


def pytest_addoption(parser):
    group = parser.getgroup("svcenv", "backing services for integration tests")
    group.addoption(
        "--svcenv-file",
        dest="svcenv_file",
        default=None,
        help="Services file (default: the svcenv_file ini value, then services.yml)",
    )
    group.addoption(
        "--svcenv-services",
        dest="svcenv_services",
        default=None,
        help="Comma separated services to start in addition to the marked ones",
    )
    parser.addini("svcenv_file", "Services file used by the svcenv fixtures", default="services.yml")


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        f"{MARKER}(*names): backing services the test needs, started once per session",
    )


def pytest_collection_finish(session):
    # session.items no longer holds tests deselected by -k or -m
    session.config.stash[ENABLED_SERVICES] = collect_enabled_services(session.items)


def collect_enabled_services(items: Iterable) -> List[str]:
    """
    Returns the union of the services named by the services markers of the
    collected items, in first-seen order.
    """
    names: List[str] = []
    for item in items:
        for marker in item.iter_markers(name=MARKER):
            for name in marker.args:
                if name not in names:
                    names.append(name)
    return names


def load_environment(
    services_file: str,
    marked: Sequence[str] = (),
    extra: Sequence[str] = (),
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[OrchestrationConfig, ControllerSettings]:
    """
    Builds the declared services and controller settings for a session.

    Services named by markers or on the command line switch the run to an
    opt-in selection of exactly those. Without any, the services file's
    settings and SVCENV_* variables decide. A missing services file means the
    built-in catalog, which is always opt-in.

    :param services_file: Path of the services file.
    :param marked: Services named by test markers.
    :param extra: Services named on the command line.
    :param environ: The process environment; defaults to os.environ.
    :return: The configuration and the settings.
    """
    if os.path.exists(services_file):
        parser = ServicesParser(dict(os.environ if environ is None else environ))
        config = parser.parse(services_file)
        defaults = parser.parse_settings(services_file)
    else:
        logger.info("%s not found, using the built-in catalog", services_file)
        config = builtin_config()
        defaults = {"policy": SelectionPolicy.OPT_IN}

    overrides = {}
    requested = list(dict.fromkeys([*marked, *extra]))
    if requested:
        overrides = {"policy": SelectionPolicy.OPT_IN, "enabled": requested}
    settings = ControllerSettings.from_environ(environ, defaults=defaults, **overrides)
    return config, settings


@pytest.fixture(scope="session")
def service_environment(request):
    """
    The session's LifecycleController, set up on first use.
    """
    config = request.config
    services_file = config.getoption("svcenv_file") or config.getini("svcenv_file")
    extra = [name.strip() for name in (config.getoption("svcenv_services") or "").split(",") if name.strip()]
    marked = config.stash.get(ENABLED_SERVICES, [])

    orchestration, settings = load_environment(services_file, marked, extra)
    with LifecycleController(orchestration, settings) as controller:
        yield controller


@pytest.fixture(scope="session")
def endpoint_registry(service_environment) -> EndpointRegistry:
    return service_environment.registry


@pytest.fixture(scope="session")
def service_properties(service_environment):
    return service_environment.properties()
