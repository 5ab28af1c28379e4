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
Lifecycle of the backing services of one test run: selection, provisioning,
readiness gating, endpoint publication and guaranteed teardown.
"""
import atexit
import logging
import threading
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..MODELS.endpoint import Endpoint
from ..MODELS.orchestration_config import OrchestrationConfig, RunPlan
from ..MODELS.service_definition import ServiceDescriptor
from ..MODELS.settings import ControllerSettings, SelectionPolicy
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..exceptions import ConfigError, ReadinessTimeout, SetupCancelled, SvcEnvError, TeardownError
from .container_manager import ContainerHandle
from .endpoint_registry import EndpointRegistry
from .environment_manager import EnvironmentManager
from .log_aggregator import LogAggregator
from .network_manager import NetworkHandle
from .provisioner import Provisioner
from .readiness_prober import ReadinessProber, TimedOut

logger = logging.getLogger(__name__)

PropertyHook = Callable[[Mapping[str, str]], None]


class RunState(str, Enum):
    """Phase of a controller's run."""

    NEW = "new"
    SETTING_UP = "setting-up"
    READY = "ready"
    TORN_DOWN = "torn-down"


class LifecycleController:
    """
    Orchestrates the backing services of one test run.

    Setup runs once and either leaves every selected service ready with its
    endpoint in the registry, or fails after releasing everything it started.
    Teardown runs exactly once, whether called directly, from a failed setup,
    on context manager exit or at interpreter exit.
    """
    def __init__(
        self,
        config: Union[OrchestrationConfig, Iterable[ServiceDescriptor]],
        settings: Optional[ControllerSettings] = None,
        provisioner: Optional[Provisioner] = None,
        prober: Optional[ReadinessProber] = None,
        environment_manager: Optional[EnvironmentManager] = None,
        property_hooks: Iterable[PropertyHook] = (),
    ):
        """
        Initializes the controller.

        :param config: The declared services, or the descriptors themselves.
        :param settings: Selection policy, enabled services and budgets.
        :param provisioner: Starts containers; defaults to a docker backed one.
        :param prober: Checks readiness; defaults to the TCP/describe/HTTP prober.
        :param environment_manager: Resolves remote overrides from the environment.
        :param property_hooks: Receive the property map once setup is complete.
        """
        if not isinstance(config, OrchestrationConfig):
            config = OrchestrationConfig.from_descriptors(config)
        self.config = config
        self.settings = settings or ControllerSettings()
        self.resolver = DependencyResolver()
        self.log_aggregator = LogAggregator(self.settings.log_dir)
        self.provisioner = provisioner or Provisioner(
            network_prefix=self.settings.network_prefix,
            labels=self.settings.container_labels,
            poll_interval=self.settings.startup_poll_interval,
            log_aggregator=self.log_aggregator,
        )
        self.prober = prober or ReadinessProber()
        self.environment_manager = environment_manager or EnvironmentManager()
        self.property_hooks: List[PropertyHook] = list(property_hooks)

        self.registry = EndpointRegistry()
        self.plan: Optional[RunPlan] = None
        self.network: Optional[NetworkHandle] = None
        self.handles: Dict[str, ContainerHandle] = {}
        self.state = RunState.NEW
        self.teardown_errors: List[TeardownError] = []
        self._properties: Optional[Mapping[str, str]] = None
        self._lock = threading.Lock()

    def __enter__(self) -> "LifecycleController":
        self.setup()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.teardown()
        return False

    def selected_services(self) -> Optional[List[str]]:
        """
        The explicitly selected services, or None when every declared service starts.
        """
        if self.settings.policy == SelectionPolicy.STATIC:
            return None
        return list(self.settings.enabled)

    def setup(self) -> EndpointRegistry:
        """
        Provisions the selected services and waits for each to become ready.
        Any failure tears down whatever was started and re-raises.

        :return: The frozen endpoint registry.
        :raises ConfigError: If the declared services or the selection are invalid.
        :raises ProvisionError: If a container fails to start.
        :raises ReadinessTimeout: If a service never becomes ready.
        """
        with self._lock:
            if self.state == RunState.READY:
                return self.registry
            if self.state != RunState.NEW:
                raise SvcEnvError(f"Setup cannot run in state '{self.state.value}'")
            self.state = RunState.SETTING_UP

        atexit.register(self.teardown)
        try:
            self._setup()
        except BaseException as e:
            logger.error("Setup failed: %s", e)
            self.teardown()
            raise

        with self._lock:
            torn_down = self.state == RunState.TORN_DOWN
            if not torn_down:
                self.state = RunState.READY
        if torn_down:
            # teardown ran on another thread while the last service came up
            self.teardown_errors.extend(self.provisioner.release(self.network, self.handles))
            self.handles = {}
            self.network = None
            raise SetupCancelled("Run was torn down during setup")
        logger.info("Setup complete: %s", ", ".join(self.registry.names()) or "no services")
        return self.registry

    def _setup(self):
        selection = self.selected_services()
        if selection is not None and not selection:
            logger.info("No services enabled; nothing to provision")
            self.plan = RunPlan()
            self._publish()
            return

        plan = self.resolver.build_plan(self.config, selection)
        environment = self.environment_manager.get_merged_environment(self.settings.env_files)
        remote: Dict[str, Endpoint] = {}
        for descriptor in plan:
            endpoint = self.environment_manager.resolve_override(descriptor, environment)
            if endpoint is not None:
                remote[descriptor.name] = endpoint

        if remote:
            # dependencies needed only by remote services are not started
            roots = self._top_level(plan) if selection is None else selection
            needed = self.resolver.with_dependencies(self.config, roots, external=remote)
            plan = plan.excluding(name for name in plan.names if name not in needed)
            self._check_remote_dependencies(plan, remote)
        self.plan = plan
        logger.info("Run plan: %s", " -> ".join(self.plan.names))
        self._check_properties(self.plan)

        for name in self.plan.names:
            if name in remote:
                self.registry.register(remote[name])

        to_start = self.plan.excluding(remote)
        if to_start:
            try:
                self.network, self.handles = self.provisioner.provision(to_start, after_start=self._await_ready)
            except BaseException:
                self.teardown_errors.extend(self.provisioner.rollback_errors)
                raise
        self._publish()

    @staticmethod
    def _check_properties(plan: RunPlan):
        owners: Dict[str, str] = {}
        for descriptor in plan:
            for key in descriptor.properties:
                if key in owners:
                    raise ConfigError(
                        f"Property '{key}' is set by both '{owners[key]}' and '{descriptor.name}'"
                    )
                owners[key] = descriptor.name

    @staticmethod
    def _top_level(plan: RunPlan) -> List[str]:
        required = {dependency for descriptor in plan for dependency in descriptor.depends_on}
        return [name for name in plan.names if name not in required]

    @staticmethod
    def _check_remote_dependencies(plan: RunPlan, remote: Mapping[str, Endpoint]):
        for descriptor in plan:
            if descriptor.name in remote:
                continue
            for dependency in descriptor.depends_on:
                if dependency in remote:
                    raise ConfigError(
                        f"Service '{descriptor.name}' runs in a container but depends on '{dependency}', "
                        f"which is provided remotely and is not on the run network"
                    )

    def _await_ready(self, descriptor: ServiceDescriptor, handle: ContainerHandle):
        if self.prober.cancelled:
            raise SetupCancelled(f"Setup cancelled before '{descriptor.name}' was checked")
        endpoint = self._endpoint_for(descriptor, handle)
        result = self.prober.await_ready(
            descriptor,
            endpoint,
            max_retries=self.settings.readiness_max_retries,
            interval=self.settings.readiness_retry_interval,
        )
        if isinstance(result, TimedOut):
            logs = self.log_aggregator.capture(handle)
            raise ReadinessTimeout(descriptor.name, result.attempts, result.last_error, logs)
        self.registry.register(endpoint)

    @staticmethod
    def _endpoint_for(descriptor: ServiceDescriptor, handle: ContainerHandle) -> Endpoint:
        primary = descriptor.primary_port
        endpoint = Endpoint(
            service=descriptor.name,
            host=handle.host,
            port=handle.ports.get(primary) if primary is not None else None,
            ports=handle.ports,
            credentials=descriptor.credentials,
        )
        if descriptor.url_template:
            endpoint = endpoint.model_copy(update={"url": endpoint.render(descriptor.url_template)})
        return endpoint

    def _publish(self):
        self.registry.freeze()
        properties = {}
        for descriptor in self.plan:
            if descriptor.name not in self.registry:
                continue
            endpoint = self.registry.get(descriptor.name)
            for key, template in descriptor.properties.items():
                try:
                    properties[key] = endpoint.render(template)
                except (KeyError, IndexError, ValueError) as e:
                    raise ConfigError(
                        f"Service '{descriptor.name}': cannot render property '{key}' from '{template}': {e}"
                    ) from e
        self._properties = MappingProxyType(properties)
        for hook in self.property_hooks:
            hook(self._properties)

    def teardown(self):
        """
        Stops every container in reverse dependency order and removes the network.
        Individual failures are logged and collected in teardown_errors, never raised.
        Only the first call does anything.
        """
        with self._lock:
            if self.state == RunState.TORN_DOWN:
                return
            self.state = RunState.TORN_DOWN
        atexit.unregister(self.teardown)
        self.prober.cancel()

        if not self.handles and self.network is None:
            logger.info("Teardown: nothing to release")
            return

        logger.info("Teardown: stopping %s", ", ".join(reversed(list(self.handles))) or "no containers")
        self.teardown_errors.extend(self.provisioner.release(self.network, self.handles))
        self.handles = {}
        self.network = None
        if self.teardown_errors:
            logger.warning("Teardown finished with %d error(s)", len(self.teardown_errors))
        else:
            logger.info("Teardown complete")

    def endpoint(self, service: str) -> Endpoint:
        """
        Shortcut for registry.get().

        :raises EndpointNotFound: If the service was not enabled in this run.
        """
        return self.registry.get(service)

    def properties(self) -> Mapping[str, str]:
        """
        Configuration keys for the application under test, rendered from the registry.

        :raises SvcEnvError: Before setup has completed.
        """
        if self._properties is None:
            raise SvcEnvError("Properties are only available after setup")
        return self._properties

    def ps(self) -> Dict[str, str]:
        """
        Returns the status of every service of the run.

        :return: Service names and their statuses ('remote' for overridden services).
        """
        status = {}
        for name in self.registry:
            if self.registry.get(name).remote:
                status[name] = "remote"
        for name, handle in self.handles.items():
            status[name] = handle.status()
        return status
