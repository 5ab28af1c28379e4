"""
Dependency resolution for services to determine startup and shutdown order.
"""
from typing import Collection, List, Set, Iterable, Optional
from ..MODELS.orchestration_config import OrchestrationConfig, RunPlan
from ..exceptions import ConfigError


class DependencyResolver:
    """
    Validates the declared service graph and resolves startup order.
    """
    def validate(self, config: OrchestrationConfig):
        """
        Validates every declared service and the dependency graph as a whole.

        :param config: The orchestration configuration.
        :raises ConfigError: On unknown dependencies, bad probe ports or a cycle.
        """
        known = list(config.services)
        for name, descriptor in config.services.items():
            if descriptor.name != name:
                raise ConfigError(f"Service declared as '{name}' is named '{descriptor.name}'")
            descriptor.validate_against(known)
        self.resolve_order(config)

    def resolve_order(
        self,
        config: OrchestrationConfig,
        only: Optional[Iterable[str]] = None,
        external: Collection[str] = (),
    ) -> List[str]:
        """
        Determines the correct order to start services using topological sort.
        Dependencies come first; otherwise declaration order is kept.

        :param config: The orchestration configuration.
        :param only: Restrict the order to these services (their dependencies must be included).
        :param external: Services provided outside the run; their dependencies are not followed.
        :return: Service names in the order they should be started.
        :raises ConfigError: If a circular dependency is detected.
        """
        services = config.services
        dependencies = {name: list(svc.depends_on) for name, svc in services.items()}
        roots = list(services) if only is None else list(only)

        ordered = []
        visited: Set[str] = set()
        processing: List[str] = []

        def visit(name):
            """
            Recursive function for topological sort.
            """
            if name in processing:
                cycle = processing[processing.index(name):] + [name]
                raise ConfigError(f"Circular dependency detected: {' -> '.join(cycle)}")
            if name not in visited:
                if name not in services:
                    raise ConfigError(f"Unknown service '{name}'")
                processing.append(name)
                if name not in external:
                    for dep in dependencies[name]:
                        visit(dep)
                processing.pop()
                visited.add(name)
                ordered.append(name)

        for name in roots:
            visit(name)

        return ordered

    def with_dependencies(
        self, config: OrchestrationConfig, names: Iterable[str], external: Collection[str] = ()
    ) -> List[str]:
        """
        Expands a selection with every transitive dependency, stopping at
        external services.

        :raises ConfigError: If a selected service is not declared.
        """
        for name in names:
            if name not in config.services:
                raise ConfigError(
                    f"Service '{name}' is not declared (declared: {', '.join(config.services)})"
                )
        return self.resolve_order(config, only=names, external=external)

    def build_plan(self, config: OrchestrationConfig, selection: Optional[Iterable[str]] = None) -> RunPlan:
        """
        Validates the configuration and builds the run plan for a selection.

        :param config: The orchestration configuration.
        :param selection: Services to start; None means all declared services.
        :return: The run plan in dependency order.
        :raises ConfigError: If the configuration or the selection is invalid.
        """
        self.validate(config)
        if selection is None:
            order = self.resolve_order(config)
        else:
            order = self.with_dependencies(config, list(selection))
        return RunPlan(services=tuple(config.services[name] for name in order))
