"""
Models for defining backing services, their readiness probes and remote overrides.
"""
from typing import List, Dict, Optional, Union, Literal, Annotated
from pydantic import BaseModel, Field

from ..exceptions import ConfigError


class TcpProbe(BaseModel):
    """
    Ready once a TCP connection to the mapped port can be opened.
    """
    kind: Literal["tcp"] = "tcp"
    port: int
    connect_timeout: float = 5.0


class DescribeClusterProbe(BaseModel):
    """
    Ready once a cluster describe call against the broker returns at least one node.
    """
    kind: Literal["describe_cluster"] = "describe_cluster"
    port: int
    request_timeout: float = 10.0
    min_nodes: int = 1


class HttpProbe(BaseModel):
    """
    Ready once a GET on a fixed path returns any HTTP response.
    The status code is not checked.
    """
    kind: Literal["http"] = "http"
    port: int
    path: str = "/"
    scheme: Literal["http", "https"] = "http"
    verify_tls: bool = True
    request_timeout: float = 5.0


ReadinessProbe = Union[TcpProbe, DescribeClusterProbe, HttpProbe]


class RemoteOverride(BaseModel):
    """
    Environment variables that, when all present, point a service at an
    external instance instead of a container.
    """
    endpoint_var: str
    credential_vars: Dict[str, str] = {}  # {credential name: variable name}

    def variables(self) -> List[str]:
        return [self.endpoint_var, *self.credential_vars.values()]


def env_prefix(name: str) -> str:
    """
    Environment variable prefix for a service name, e.g. cosmos-nosql -> COSMOS_NOSQL.
    """
    return name.upper().replace('-', '_').replace('.', '_')


class ServiceDescriptor(BaseModel):
    """
    The full definition of a single backing service to provision for a test run.
    """
    name: str
    image: str
    network_alias: Optional[str] = None

    # Container
    environment: Dict[str, str] = {}
    exposed_ports: List[int] = []
    pinned_ports: List[int] = []  # published on a pre-allocated host port
    depends_on: List[str] = []

    # Readiness
    readiness_probe: Optional[Annotated[ReadinessProbe, Field(discriminator="kind")]] = None
    startup_timeout: float = 120.0
    readiness_max_retries: int = Field(default=50, ge=1)
    readiness_retry_interval: float = Field(default=2.0, ge=0.0)

    # Endpoint
    url_template: Optional[str] = None  # e.g. "https://{host}:{port}"
    credentials: Dict[str, str] = {}
    properties: Dict[str, str] = {}  # {property key: template}
    remote_override: Optional[RemoteOverride] = None

    labels: Dict[str, str] = {}

    @property
    def alias(self) -> str:
        """DNS name visible to the other containers on the shared network."""
        return self.network_alias or self.name

    @property
    def primary_port(self) -> Optional[int]:
        """
        The container port that identifies the service: the probed port if
        there is a probe, else the first exposed port.
        """
        if self.readiness_probe is not None:
            return self.readiness_probe.port
        return self.exposed_ports[0] if self.exposed_ports else None

    @property
    def effective_override(self) -> RemoteOverride:
        """
        The remote override for this service; defaults to SVCENV_<NAME>_ENDPOINT.
        """
        if self.remote_override is not None:
            return self.remote_override
        return RemoteOverride(endpoint_var=f"SVCENV_{env_prefix(self.name)}_ENDPOINT")

    def validate_ports(self):
        """
        Checks that the probe and pinned ports are among the exposed ports.

        :raises ConfigError: If a port is not exposed.
        """
        if self.readiness_probe is not None and self.readiness_probe.port not in self.exposed_ports:
            raise ConfigError(
                f"Service '{self.name}': readiness probe port {self.readiness_probe.port} "
                f"is not exposed (exposed: {self.exposed_ports})"
            )
        for port in self.pinned_ports:
            if port not in self.exposed_ports:
                raise ConfigError(f"Service '{self.name}': pinned port {port} is not exposed")

    def validate_against(self, known: List[str]):
        """
        Validates this descriptor against the names of the other declared services.

        :param known: Names of all declared services.
        :raises ConfigError: On a dependency on an unknown or on itself, or a bad probe port.
        """
        self.validate_ports()
        for dep in self.depends_on:
            if dep == self.name:
                raise ConfigError(f"Service '{self.name}' depends on itself")
            if dep not in known:
                raise ConfigError(f"Service '{self.name}' depends on unknown service '{dep}'")
