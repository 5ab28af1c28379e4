"""
Models for the declared services of a project and the per-run startup plan.
"""
from typing import List, Dict, Tuple, Iterator, Iterable
from pydantic import BaseModel, ConfigDict
from .service_definition import ServiceDescriptor
from ..exceptions import ConfigError


class OrchestrationConfig(BaseModel):
    """
    Every backing service a project declares.
    Equivalent to a parsed services.yml file.
    """
    services: Dict[str, ServiceDescriptor] = {}

    @classmethod
    def from_descriptors(cls, descriptors: Iterable[ServiceDescriptor]) -> "OrchestrationConfig":
        """
        :raises ConfigError: If two descriptors share a name.
        """
        services: Dict[str, ServiceDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in services:
                raise ConfigError(f"Service '{descriptor.name}' is declared more than once")
            services[descriptor.name] = descriptor
        return cls(services=services)


class RunPlan(BaseModel):
    """
    Services of one run, in dependency order. Immutable once built.
    """
    model_config = ConfigDict(frozen=True)

    services: Tuple[ServiceDescriptor, ...] = ()

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self.services)

    def __len__(self) -> int:
        return len(self.services)

    def __bool__(self) -> bool:
        return bool(self.services)

    @property
    def names(self) -> List[str]:
        return [d.name for d in self.services]

    def get(self, name: str) -> ServiceDescriptor:
        for descriptor in self.services:
            if descriptor.name == name:
                return descriptor
        raise KeyError(name)

    def excluding(self, names: Iterable[str]) -> "RunPlan":
        """
        Returns a plan without the given services, order preserved.
        """
        skip = set(names)
        return RunPlan(services=tuple(d for d in self.services if d.name not in skip))
