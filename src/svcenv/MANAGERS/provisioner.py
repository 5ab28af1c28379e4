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
Provisioning of the shared network and the containers of a run plan.
"""
import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from docker.errors import DockerException

from ..MODELS.orchestration_config import RunPlan
from ..MODELS.service_definition import ServiceDescriptor
from ..UTILS.string_interpolation import MISSING_KEEP, interpolate, placeholders
from ..exceptions import ProvisionError, TeardownError
from .container_manager import ContainerHandle, create_container
from .log_aggregator import LogAggregator
from .network_manager import NetworkHandle, create_network

logger = logging.getLogger(__name__)

AfterStart = Callable[[ServiceDescriptor, ContainerHandle], None]


def render_environment(environment: Mapping[str, str], host_ports: Mapping[int, int]) -> Dict[str, str]:
    """
    Substitutes ${HOST_PORT_<port>} with the pinned host port of a container port.
    Every other value is passed through untouched.
    """
    context = {f"HOST_PORT_{port}": str(host_port) for port, host_port in host_ports.items()}
    rendered = {}
    for key, value in environment.items():
        if any(name in context for name in placeholders(value)):
            value = interpolate(value, context, missing=MISSING_KEEP)
        rendered[key] = value
    return rendered


class Provisioner:
    """
    Creates the run's network and starts its containers in plan order.
    Provisioning is all-or-nothing: on any failure every started container
    is stopped and the network is removed before the error propagates.
    """
    def __init__(
        self,
        network_factory: Callable = create_network,
        container_factory: Callable = create_container,
        network_prefix: str = "svcenv",
        labels: Optional[Mapping[str, str]] = None,
        poll_interval: float = 0.5,
        log_aggregator: Optional[LogAggregator] = None,
    ):
        """
        Initializes the provisioner.

        :param network_factory: Builds an uncreated network from a name prefix.
        :param container_factory: Builds an unstarted container for a descriptor.
        :param network_prefix: Prefix of the network name.
        :param labels: Docker labels put on every container.
        :param poll_interval: Seconds between container state checks during startup.
        :param log_aggregator: Receives the logs of containers that fail to start.
        """
        self.network_factory = network_factory
        self.container_factory = container_factory
        self.network_prefix = network_prefix
        self.labels = dict(labels or {})
        self.poll_interval = poll_interval
        self.log_aggregator = log_aggregator or LogAggregator()
        self.rollback_errors: List[TeardownError] = []

    def provision(
        self, plan: RunPlan, after_start: Optional[AfterStart] = None
    ) -> Tuple[NetworkHandle, Dict[str, ContainerHandle]]:
        """
        Starts every service of the plan on one shared network.

        :param plan: The services to start, in dependency order.
        :param after_start: Called with each started service before the next one
            starts; an exception from it aborts provisioning like a start failure.
        :return: The network and the container handles by service name.
        :raises ProvisionError: If a container fails to start. Cleanup failures
            of the rollback are kept in rollback_errors.
        """
        self.rollback_errors = []
        network = NetworkHandle(self.network_factory(self.network_prefix))
        handles: Dict[str, ContainerHandle] = {}
        try:
            self._create_network(network)
            for descriptor in plan:
                handle = self._start(descriptor, network, handles)
                if after_start is not None:
                    after_start(descriptor, handle)
        except BaseException:
            logger.error("Provisioning failed; releasing %d container(s)", len(handles))
            self.rollback_errors = self.release(network, handles)
            raise
        return network, handles

    @staticmethod
    def _create_network(network: NetworkHandle):
        try:
            network.create()
        except (DockerException, OSError) as e:
            raise ProvisionError("network", f"could not create network '{network.name}': {e}") from e

    def _start(self, descriptor: ServiceDescriptor, network: NetworkHandle, handles: Dict[str, ContainerHandle]):
        host_ports = network.allocate_ports(descriptor)
        environment = render_environment(descriptor.environment, host_ports)
        container = self.container_factory(descriptor, network.network, environment, host_ports, self.labels)

        handle = ContainerHandle(descriptor, container)
        # registered before start so a half-started container is released too
        handles[descriptor.name] = handle
        try:
            handle.start(poll_interval=self.poll_interval)
        except ProvisionError as e:
            self.log_aggregator.report(descriptor.name, e.logs)
            raise
        return handle

    def release(self, network: Optional[NetworkHandle], handles: Mapping[str, ContainerHandle]) -> List[TeardownError]:
        """
        Stops containers in reverse start order, then closes the network.
        Failures are logged and collected, never raised.

        :return: The failures that occurred.
        """
        errors = []
        for name in reversed(list(handles)):
            try:
                handles[name].stop()
            except Exception as e:
                errors.append(self._teardown_failed(f"container '{name}'", e))
        if network is not None:
            try:
                network.close()
            except Exception as e:
                errors.append(self._teardown_failed(f"network '{network.name}'", e))
        return errors

    @staticmethod
    def _teardown_failed(resource: str, cause: Exception) -> TeardownError:
        error = TeardownError(resource, cause)
        logger.warning("%s", error, exc_info=cause)
        return error
