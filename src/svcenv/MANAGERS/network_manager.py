"""
The shared container network of a run, and host port allocation for pinned ports.
"""
import logging
from typing import Dict

from testcontainers.core.network import Network

from ..UTILS.port_finder import get_free_port
from ..MODELS.service_definition import ServiceDescriptor

logger = logging.getLogger(__name__)


def create_network(prefix: str = "svcenv") -> Network:
    """
    Builds (without creating) a docker network with a recognizable name.
    """
    network = Network()
    network.name = f"{prefix}-{network.name[:8]}"
    return network


class NetworkHandle:
    """
    One shared virtual network per run. Created before the first container
    starts and closed after the last one stops.
    """
    def __init__(self, network):
        """
        :param network: A testcontainers Network (or anything with create/remove/name).
        """
        self.network = network
        self.created = False
        self.closed = False

    @property
    def name(self) -> str:
        return self.network.name

    def create(self):
        """
        Creates the network. Calling it again is a no-op.
        """
        if self.created:
            return
        self.network.create()
        self.created = True
        logger.info("Created network %s", self.name)

    def close(self):
        """
        Removes the network. Only the first call after create() does anything.
        """
        if not self.created or self.closed:
            return
        self.closed = True
        logger.info("Removing network %s", self.name)
        self.network.remove()

    def allocate_ports(self, service_def: ServiceDescriptor) -> Dict[int, int]:
        """
        Allocates a free host port for every pinned port of a service.

        :param service_def: The service descriptor.
        :return: Mapping from container port to allocated host port.
        """
        mappings = {}
        for container_port in service_def.pinned_ports:
            host_port = get_free_port()
            mappings[container_port] = host_port
            logger.debug("[%s] Pinned container port %d to host port %d", service_def.name, container_port, host_port)
        return mappings
