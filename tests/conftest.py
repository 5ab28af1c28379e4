"""
Shared fixtures: in-memory stand-ins for docker networks and containers, so the
provisioning and lifecycle logic can be tested without a docker daemon.
"""
import pytest

from svcenv.MANAGERS.provisioner import Provisioner
from svcenv.MANAGERS.readiness_prober import ReadinessProber
from svcenv.MODELS.service_definition import ServiceDescriptor, TcpProbe

pytest_plugins = ["pytester"]


class FakeWrapped:
    def __init__(self, container):
        self.container = container

    def reload(self):
        pass

    @property
    def status(self):
        return self.container.status


class FakeContainer:
    def __init__(self, docker, descriptor, environment, host_ports, labels):
        self.docker = docker
        self.descriptor = descriptor
        self.environment = dict(environment)
        self.host_ports = dict(host_ports)
        self.labels = dict(labels or {})
        self.status = "created"
        self.started = False
        self.stopped = False

    def start(self):
        name = self.descriptor.name
        self.docker.events.append(("start", name))
        if name in self.docker.start_errors:
            self.status = "exited"
            raise self.docker.start_errors[name]
        self.started = True
        self.status = self.docker.statuses.get(name, "running")
        return self

    def stop(self):
        name = self.descriptor.name
        self.docker.events.append(("stop", name))
        if name in self.docker.stop_errors:
            raise self.docker.stop_errors[name]
        self.stopped = True
        self.status = "removed"

    def get_container_host_ip(self):
        return "localhost"

    def get_exposed_port(self, port):
        return self.host_ports.get(port, self.docker.mapped_port(self.descriptor.name, port))

    def get_logs(self):
        return self.docker.logs.get(self.descriptor.name, b""), b""

    def get_wrapped_container(self):
        return FakeWrapped(self) if self.started else None

    @property
    def running(self):
        return self.started and not self.stopped


class FakeNetwork:
    def __init__(self, docker, prefix):
        self.docker = docker
        self.name = f"{prefix}-fake"
        self.created = False
        self.removed = False

    def create(self):
        self.docker.events.append(("network-create", self.name))
        if self.docker.network_error is not None:
            raise self.docker.network_error
        self.created = True
        return self

    def remove(self):
        self.docker.events.append(("network-remove", self.name))
        self.removed = True


class FakeDocker:
    """
    Records every network and container it hands out, and the order of
    start/stop calls.
    """
    def __init__(self):
        self.events = []
        self.containers = {}
        self.networks = []
        self.start_errors = {}
        self.stop_errors = {}
        self.statuses = {}
        self.logs = {}
        self.network_error = None

    def mapped_port(self, service, port):
        index = list(self.containers).index(service)
        return 30000 + index * 100 + port % 100

    def network_factory(self, prefix):
        network = FakeNetwork(self, prefix)
        self.networks.append(network)
        return network

    def container_factory(self, descriptor, network, environment, host_ports, labels=None):
        container = FakeContainer(self, descriptor, environment, host_ports, labels)
        self.containers[descriptor.name] = container
        return container

    def started(self):
        return [name for event, name in self.events if event == "start"]

    def stopped(self):
        return [name for event, name in self.events if event == "stop"]

    def running(self):
        return [name for name, c in self.containers.items() if c.running]

    def provisioner(self, **kwargs):
        return Provisioner(
            network_factory=self.network_factory,
            container_factory=self.container_factory,
            poll_interval=0,
            **kwargs,
        )


class ProbeScript:
    """
    Probe stand-in: fails a configured number of times per service, or forever.
    """
    def __init__(self):
        self.failures = {}
        self.calls = []

    def fail(self, service, times=None, error=None):
        self.failures[service] = (times, error or ConnectionRefusedError("connection refused"))

    def __call__(self, probe, endpoint):
        self.calls.append(endpoint.service)
        if endpoint.service not in self.failures:
            return
        times, error = self.failures[endpoint.service]
        if times is None or self.calls.count(endpoint.service) <= times:
            raise error


@pytest.fixture
def docker():
    return FakeDocker()


@pytest.fixture
def probe_script():
    return ProbeScript()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def prober(probe_script, sleeps):
    return ReadinessProber(
        probes={"tcp": probe_script, "http": probe_script, "describe_cluster": probe_script},
        sleep=sleeps.append,
    )


def make_service(name, port=5000, depends_on=(), **kwargs):
    """
    Builds a descriptor with one exposed port and a TCP probe on it.
    """
    kwargs.setdefault("readiness_probe", TcpProbe(port=port))
    return ServiceDescriptor(
        name=name,
        image=f"example/{name}:1.0",
        exposed_ports=[port],
        depends_on=list(depends_on),
        **kwargs,
    )
