"""
Managers for the process environment, .env files and remote service overrides.
"""
import logging
import os
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlsplit

from dotenv import dotenv_values

from ..MODELS.endpoint import Endpoint
from ..MODELS.service_definition import ServiceDescriptor
from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SCHEME_PORTS = {"http": 80, "https": 443}


class EnvironmentManager:
    """
    Merges the process environment with .env files and resolves the remote
    overrides declared by services.
    """
    def __init__(self, base_dir: str = ".", environ: Optional[Mapping[str, str]] = None):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        :param environ: The process environment; defaults to os.environ at merge time.
        """
        self.base_dir = base_dir
        self.environ = environ

    def get_merged_environment(self, env_files: List[str]) -> Dict[str, str]:
        """
        Merges variables from .env files with the process environment.
        Later files override earlier ones; the process environment overrides all files.

        :param env_files: Paths to .env files; missing files are skipped.
        :return: The merged environment.
        """
        merged: Dict[str, str] = {}
        for env_file in env_files:
            file_path = os.path.join(self.base_dir, env_file)
            if not os.path.exists(file_path):
                logger.debug("Env file %s not found, skipping", file_path)
                continue
            values = dotenv_values(file_path)
            merged.update({key: value for key, value in values.items() if value is not None})

        merged.update(os.environ if self.environ is None else self.environ)
        return merged

    def resolve_override(self, descriptor: ServiceDescriptor, environment: Mapping[str, str]) -> Optional[Endpoint]:
        """
        Builds the endpoint of an externally provided service, when every
        variable of the service's remote override is set.

        :param descriptor: The service descriptor.
        :param environment: The merged environment.
        :return: The remote endpoint, or None to provision a container.
        :raises ConfigError: If the endpoint variable holds an unparseable address.
        """
        override = descriptor.effective_override
        present = [var for var in override.variables() if environment.get(var)]
        if len(present) != len(override.variables()):
            if present:
                missing = sorted(set(override.variables()) - set(present))
                logger.warning(
                    "[%s] Remote override incomplete (missing %s); starting a container instead",
                    descriptor.name, ", ".join(missing),
                )
            return None

        raw = environment[override.endpoint_var]
        host, port = self._parse_address(descriptor, raw)
        credentials = {name: environment[var] for name, var in override.credential_vars.items()}
        ports = {}
        if port is not None and descriptor.primary_port is not None:
            ports[descriptor.primary_port] = port

        logger.info("[%s] Using remote instance from %s: %s", descriptor.name, override.endpoint_var, raw)
        return Endpoint(
            service=descriptor.name,
            host=host,
            port=port,
            ports=ports,
            url=raw,
            credentials=credentials,
            remote=True,
        )

    @staticmethod
    def _parse_address(descriptor: ServiceDescriptor, raw: str):
        # bootstrap lists like "b1:9092,b2:9092" address the first entry
        first = raw.split(",")[0].strip()
        parts = urlsplit(first if "://" in first else f"//{first}")
        try:
            port = parts.port
        except ValueError as e:
            raise ConfigError(f"Service '{descriptor.name}': invalid remote endpoint '{raw}': {e}") from e
        if not parts.hostname:
            raise ConfigError(f"Service '{descriptor.name}': invalid remote endpoint '{raw}'")
        if port is None:
            port = DEFAULT_SCHEME_PORTS.get(parts.scheme, descriptor.primary_port)
        return parts.hostname, port
