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
Lifecycle management for a single service container.
"""
import logging
from enum import Enum
from typing import Dict, Mapping, Optional

from docker.errors import DockerException, NotFound
from tenacity import Retrying, retry_if_result, stop_after_delay, wait_fixed
from testcontainers.core.container import DockerContainer

from ..MODELS.service_definition import ServiceDescriptor
from ..exceptions import ProvisionError

logger = logging.getLogger(__name__)

# Docker states in which the container process may still come up
PENDING_STATES = ("created", "restarting")


class ContainerState(str, Enum):
    """State of a container as seen by its handle."""

    NEW = "new"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"


def create_container(
    descriptor: ServiceDescriptor,
    network,
    environment: Mapping[str, str],
    host_ports: Mapping[int, int],
    labels: Optional[Mapping[str, str]] = None,
) -> DockerContainer:
    """
    Builds (without starting) the container of a service.

    :param descriptor: The service descriptor.
    :param network: The testcontainers network to attach to.
    :param environment: Environment variables, already rendered.
    :param host_ports: Pinned host ports by container port.
    :param labels: Docker labels to put on the container.
    :return: A configured DockerContainer.
    """
    container = DockerContainer(descriptor.image)
    for key, value in environment.items():
        container.with_env(key, value)
    for port in descriptor.exposed_ports:
        if port in host_ports:
            container.with_bind_ports(port, host_ports[port])
        else:
            container.with_exposed_ports(port)
    container.with_network(network)
    container.with_network_aliases(descriptor.alias)
    container_labels = dict(labels or {})
    container_labels.update(descriptor.labels)
    container_labels["org.svcenv.service"] = descriptor.name
    container.with_kwargs(labels=container_labels)
    return container


class ContainerHandle:
    """
    Owns one started container: its state, resolved host and mapped ports.
    """
    def __init__(self, descriptor: ServiceDescriptor, container):
        """
        :param descriptor: Definition of the service.
        :param container: A configured, not yet started, DockerContainer.
        """
        self.descriptor = descriptor
        self.container = container
        self.state = ContainerState.NEW
        self.host: Optional[str] = None
        self.ports: Dict[int, int] = {}

    @property
    def name(self) -> str:
        return self.descriptor.name

    def start(self, startup_timeout: Optional[float] = None, poll_interval: float = 0.5):
        """
        Starts the container and waits for its process to report running.
        Application level readiness is not checked here.

        :param startup_timeout: Seconds to wait for the running state.
        :param poll_interval: Seconds between state checks.
        :raises ProvisionError: If the container fails to start or exits.
        """
        timeout = self.descriptor.startup_timeout if startup_timeout is None else startup_timeout
        logger.info("[%s] Starting container from %s", self.name, self.descriptor.image)
        self.state = ContainerState.STARTING
        try:
            self.container.start()
            status = self._wait_started(timeout, poll_interval)
        except (DockerException, OSError) as e:
            self.state = ContainerState.FAILED
            raise ProvisionError(self.name, f"{type(e).__name__}: {e}", self.logs()) from e

        if status != "running":
            self.state = ContainerState.FAILED
            reason = f"container is '{status}' after {timeout:.0f}s"
            raise ProvisionError(self.name, reason, self.logs())

        self.state = ContainerState.RUNNING
        self._resolve_address()
        logger.info("[%s] Container running at %s %s", self.name, self.host, self.ports)

    def _wait_started(self, timeout: float, poll_interval: float) -> str:
        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(poll_interval),
            retry=retry_if_result(lambda status: status in PENDING_STATES),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        return retrying(self.status)

    def _resolve_address(self):
        try:
            self.host = self.container.get_container_host_ip()
            self.ports = {
                port: int(self.container.get_exposed_port(port))
                for port in self.descriptor.exposed_ports
            }
        except (DockerException, OSError) as e:
            self.state = ContainerState.FAILED
            raise ProvisionError(self.name, f"could not resolve mapped ports: {e}", self.logs()) from e

    def status(self) -> str:
        """
        Gets the docker status of the container.

        :return: Status string (e.g. 'created', 'running', 'exited', 'removed').
        """
        wrapped = self.container.get_wrapped_container()
        if wrapped is None:
            return "removed"
        try:
            wrapped.reload()
        except NotFound:
            return "removed"
        return wrapped.status

    def logs(self) -> str:
        """
        Returns the full stdout and stderr of the container, or "" if unavailable.
        """
        try:
            stdout, stderr = self.container.get_logs()
        except Exception as e:
            logger.debug("[%s] Could not read container logs: %s", self.name, e)
            return ""
        parts = [chunk.decode("utf-8", errors="replace") for chunk in (stdout, stderr) if chunk]
        return "\n".join(parts)

    def stop(self):
        """
        Stops and removes the container. Stopping twice is a no-op.
        """
        if self.state in (ContainerState.STOPPED, ContainerState.NEW):
            self.state = ContainerState.STOPPED
            return
        self.state = ContainerState.STOPPED
        logger.info("[%s] Stopping container...", self.name)
        self.container.stop()
