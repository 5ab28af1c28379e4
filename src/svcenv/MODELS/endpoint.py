"""
Resolved connection coordinates of a live (or remote) service.
"""
from typing import Dict, Optional, Any
from pydantic import BaseModel, ConfigDict


class Endpoint(BaseModel):
    """
    Where a service can be reached from the test process.
    """
    model_config = ConfigDict(frozen=True)

    service: str
    host: str
    port: Optional[int] = None
    ports: Dict[int, int] = {}  # {container port: host port}
    url: Optional[str] = None
    credentials: Dict[str, str] = {}
    remote: bool = False

    @property
    def address(self) -> str:
        """
        The url for remote or url-addressed services, else host:port.
        """
        if self.url:
            return self.url
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"

    def mapped_port(self, container_port: int) -> int:
        """
        Returns the host port published for a container port.

        :raises KeyError: If the port was not exposed.
        """
        return self.ports[container_port]

    def template_fields(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "host": self.host,
            "port": self.port if self.port is not None else "",
            "ports": self.ports,
            "url": self.url or "",
            "address": self.address,
            "credentials": self.credentials,
        }

    def render(self, template: str) -> str:
        """
        Renders a property template such as "{host}:{port}" or "{credentials[key]}".
        """
        return template.format(**self.template_fields())
