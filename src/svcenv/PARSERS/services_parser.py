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
Parser for services.yml files.

Example::

    settings:
      policy: opt-in
      enabled: [orders-db]
    services:
      kafka:
        extends: kafka
      orders-db:
        image: postgres:16
        environment:
          POSTGRES_PASSWORD: ${DB_PASSWORD:-test}
        ports: [5432]
        readiness:
          tcp: {port: 5432}
          retries: 30
        properties:
          spring.datasource.url: "jdbc:postgresql://{host}:{port}/postgres"
"""
import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..CATALOG.builtin_services import BUILTIN_FACTORIES
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import ServiceDescriptor
from ..MODELS.settings import ControllerSettings
from ..UTILS.string_interpolation import MISSING_KEEP, interpolate, placeholders
from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

# Rendered per container at provisioning time, not from the environment
RUNTIME_PREFIX = "HOST_PORT_"

PROBE_KINDS = ("tcp", "http", "describe_cluster")

SETTINGS_KEYS = {
    "policy": "policy",
    "enabled": "enabled",
    "env_files": "env_files",
    "log_dir": "log_dir",
    "network_prefix": "network_prefix",
    "labels": "container_labels",
    "readiness_retries": "readiness_max_retries",
    "readiness_interval": "readiness_retry_interval",
}


class UniqueKeyLoader(yaml.SafeLoader):
    """
    SafeLoader that rejects a key repeated within one mapping.
    """
    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, (str, int)):
                continue
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping", node.start_mark,
                    f"found duplicate key '{key}'", key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


class ServicesParser:
    """
    Parser for services.yml files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, services_path: str) -> OrchestrationConfig:
        """
        Parses the services of a file.

        :param services_path: Path to the services file.
        :return: Parsed configuration.
        :raises ConfigError: If the file is not valid.
        """
        return self.parse_from_string(self._read(services_path))

    def parse_from_string(self, content: str) -> OrchestrationConfig:
        """
        Parses the services of a YAML document.

        :param content: YAML content of the services file.
        :return: Parsed configuration.
        :raises ConfigError: If the document is not valid.
        """
        data = self._load(content)
        services = data.get("services") or {}
        if not isinstance(services, dict):
            raise ConfigError("'services' must be a mapping of service names to definitions")
        return OrchestrationConfig(
            services={name: self._parse_service(str(name), spec or {}) for name, spec in services.items()}
        )

    def parse_settings(self, services_path: str) -> Dict[str, Any]:
        """
        Reads the optional settings section of a file.

        :param services_path: Path to the services file.
        :return: ControllerSettings field values.
        """
        return self.parse_settings_from_string(self._read(services_path))

    def parse_settings_from_string(self, content: str) -> Dict[str, Any]:
        """
        Reads the optional settings section of a YAML document.

        :param content: YAML content of the services file.
        :return: ControllerSettings field values.
        :raises ConfigError: On unknown or invalid settings.
        """
        section = self._load(content).get("settings") or {}
        if not isinstance(section, dict):
            raise ConfigError("'settings' must be a mapping")
        unknown = sorted(set(section) - set(SETTINGS_KEYS))
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(unknown)}")

        values = {SETTINGS_KEYS[key]: value for key, value in section.items()}
        for key in ("enabled", "env_files"):
            if key in values:
                values[key] = self._to_list(values[key])
        try:
            ControllerSettings(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e
        return values

    @staticmethod
    def _read(services_path: str) -> str:
        try:
            with open(services_path, 'r') as f:
                return f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read services file {services_path}: {e}") from e

    def _load(self, content: str) -> Dict[str, Any]:
        content = self._interpolate(content)
        try:
            data = yaml.load(content, Loader=UniqueKeyLoader)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e
        if not data:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("A services file must be a mapping")
        return data

    def _interpolate(self, content: str) -> str:
        # Like compose, an unset ${VAR} becomes an empty string
        context = {key: value for key, value in self.context.items() if not key.startswith(RUNTIME_PREFIX)}
        for name in placeholders(content):
            if name.startswith(RUNTIME_PREFIX) or name in context:
                continue
            logger.warning("Variable %s is not set; defaulting to an empty string", name)
            context[name] = ""
        return interpolate(content, context, missing=MISSING_KEEP)

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDescriptor:
        """
        Parses a single service definition.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDescriptor instance.
        :raises ConfigError: If the definition is not valid.
        """
        if not isinstance(spec, dict):
            raise ConfigError(f"Service '{name}': definition must be a mapping")

        fields: Dict[str, Any] = {}
        base = spec.get("extends")
        if base is not None:
            if base not in BUILTIN_FACTORIES:
                raise ConfigError(
                    f"Service '{name}' extends unknown built-in '{base}' "
                    f"(available: {', '.join(BUILTIN_FACTORIES)})"
                )
            fields = BUILTIN_FACTORIES[base]().model_dump(exclude={"name"})
            if base != name and "network_alias" not in spec:
                fields["network_alias"] = None

        for key in ("image", "network_alias", "startup_timeout"):
            if key in spec:
                fields[key] = spec[key]
        if "url" in spec:
            fields["url_template"] = spec["url"]

        # Mappings are merged into the extended service's, lists replace
        if "environment" in spec:
            fields["environment"] = {**fields.get("environment", {}), **self._parse_environment(name, spec["environment"])}
        for key in ("credentials", "properties", "labels"):
            if key in spec:
                fields[key] = {**fields.get(key, {}), **{k: str(v) for k, v in (spec[key] or {}).items()}}

        if "ports" in spec:
            fields["exposed_ports"] = self._parse_ports(name, spec["ports"])
        if "pinned_ports" in spec:
            fields["pinned_ports"] = self._parse_ports(name, spec["pinned_ports"])
        if "depends_on" in spec:
            depends_on = spec["depends_on"]
            fields["depends_on"] = list(depends_on.keys()) if isinstance(depends_on, dict) else self._to_list(depends_on)
        if "readiness" in spec:
            fields.update(self._parse_readiness(name, spec["readiness"] or {}))
        if "remote" in spec:
            remote = spec["remote"] or {}
            fields["remote_override"] = {
                "endpoint_var": remote.get("endpoint_var"),
                "credential_vars": remote.get("credentials") or {},
            }

        try:
            return ServiceDescriptor(name=name, **fields)
        except ValidationError as e:
            raise ConfigError(f"Service '{name}': {e}") from e

    @staticmethod
    def _parse_environment(name: str, env_spec: Any) -> Dict[str, str]:
        environment = {}
        if isinstance(env_spec, list):
            for e in env_spec:
                if '=' not in str(e):
                    raise ConfigError(f"Service '{name}': environment entry '{e}' is not KEY=VALUE")
                k, v = str(e).split('=', 1)
                environment[k] = v
        elif isinstance(env_spec, dict):
            environment = {k: "" if v is None else str(v) for k, v in env_spec.items()}
        elif env_spec is not None:
            raise ConfigError(f"Service '{name}': environment must be a list or a mapping")
        return environment

    @staticmethod
    def _parse_ports(name: str, ports_spec: Any) -> List[int]:
        ports = []
        for p in ServicesParser._to_list(ports_spec):
            try:
                ports.append(int(p))
            except (TypeError, ValueError):
                raise ConfigError(f"Service '{name}': invalid port '{p}'") from None
        return ports

    @staticmethod
    def _parse_readiness(name: str, readiness: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        kinds = [kind for kind in PROBE_KINDS if kind in readiness]
        if len(kinds) > 1:
            raise ConfigError(f"Service '{name}': only one readiness probe allowed, got {', '.join(kinds)}")
        if kinds:
            fields["readiness_probe"] = {"kind": kinds[0], **(readiness[kinds[0]] or {})}
        if "retries" in readiness:
            fields["readiness_max_retries"] = readiness["retries"]
        if "interval" in readiness:
            fields["readiness_retry_interval"] = readiness["interval"]
        return fields

    @staticmethod
    def _to_list(val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, (str, int)):
            return [val]
        return list(val)
