"""
Run-scoped, read-only map from service name to resolved endpoint.
"""
import threading
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping

from ..MODELS.endpoint import Endpoint
from ..exceptions import EndpointNotFound, SvcEnvError


class EndpointRegistry:
    """
    Populated while the services of a run come up, frozen once setup completes.
    """
    def __init__(self):
        self._endpoints: Dict[str, Endpoint] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, endpoint: Endpoint):
        """
        Records the endpoint of a service that became ready.

        :raises SvcEnvError: If the registry is frozen or the service is already registered.
        """
        with self._lock:
            if self._frozen:
                raise SvcEnvError(f"Endpoint registry is read-only; cannot register '{endpoint.service}'")
            if endpoint.service in self._endpoints:
                raise SvcEnvError(f"Endpoint for '{endpoint.service}' is already registered")
            self._endpoints[endpoint.service] = endpoint

    def freeze(self):
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, service: str) -> Endpoint:
        """
        Returns the endpoint of an enabled service.

        :raises EndpointNotFound: If the service was not enabled in this run.
        """
        try:
            return self._endpoints[service]
        except KeyError:
            raise EndpointNotFound(service, self._endpoints) from None

    __getitem__ = get

    def __contains__(self, service) -> bool:
        return service in self._endpoints

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._endpoints))

    def __len__(self) -> int:
        return len(self._endpoints)

    def names(self) -> List[str]:
        return list(self._endpoints)

    def as_mapping(self) -> Mapping[str, Endpoint]:
        return MappingProxyType(self._endpoints)
