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
Unit tests for the provisioner, container handles and the run network.
"""
import pytest
from docker.errors import APIError, DockerException

from conftest import make_service
from svcenv.MANAGERS.container_manager import ContainerHandle, ContainerState
from svcenv.MANAGERS.log_aggregator import LogAggregator
from svcenv.MANAGERS.network_manager import NetworkHandle
from svcenv.MANAGERS.provisioner import render_environment
from svcenv.MODELS.orchestration_config import RunPlan
from svcenv.exceptions import ProvisionError, TeardownError


def plan_of(*descriptors):
    return RunPlan(services=tuple(descriptors))


class TestRenderEnvironment:
    """Tests for pinned host port substitution."""

    def test_host_port_substituted(self):
        env = {
            "KAFKA_ADVERTISED_LISTENERS": "PLAINTEXT://kafka:29092,PLAINTEXT_HOST://localhost:${HOST_PORT_9092}",
            "KAFKA_BROKER_ID": "1",
        }
        rendered = render_environment(env, {9092: 41234})
        assert rendered["KAFKA_ADVERTISED_LISTENERS"] == "PLAINTEXT://kafka:29092,PLAINTEXT_HOST://localhost:41234"
        assert rendered["KAFKA_BROKER_ID"] == "1"

    def test_other_placeholders_untouched(self):
        """Test that values without a host port reference are passed through verbatim."""
        env = {"CMD": "echo ${HOME} ${HOST_PORT_1}", "OTHER": "${HOME}"}
        rendered = render_environment(env, {9092: 41234})
        assert rendered == env


class TestProvisioner:
    """Tests for Provisioner."""

    def test_starts_in_plan_order(self, docker):
        """Test that every service starts on one shared network."""
        plan = plan_of(make_service("zookeeper", 2181), make_service("kafka", 9092, depends_on=["zookeeper"]))
        network, handles = docker.provisioner().provision(plan)

        assert docker.started() == ["zookeeper", "kafka"]
        assert list(handles) == ["zookeeper", "kafka"]
        assert len(docker.networks) == 1
        assert network.created
        assert handles["kafka"].state == ContainerState.RUNNING
        assert handles["kafka"].host == "localhost"
        assert 9092 in handles["kafka"].ports

    def test_after_start_called_before_next_start(self, docker):
        """Test that the hook runs for each service before the next one starts."""
        seen = []

        def after_start(descriptor, handle):
            seen.append((descriptor.name, list(docker.started())))

        plan = plan_of(make_service("a"), make_service("b"))
        docker.provisioner().provision(plan, after_start=after_start)
        assert seen == [("a", ["a"]), ("b", ["a", "b"])]

    def test_start_failure_releases_everything(self, docker):
        """Test that a failed start stops the started containers and removes the network."""
        docker.start_errors["c"] = APIError("image pull failed")
        docker.logs["c"] = b"line 1\nfatal: cannot bind\n"
        plan = plan_of(make_service("a"), make_service("b"), make_service("c"), make_service("d"))

        with pytest.raises(ProvisionError) as excinfo:
            docker.provisioner().provision(plan)

        assert excinfo.value.service == "c"
        assert "fatal: cannot bind" in str(excinfo.value)
        assert "d" not in docker.containers
        assert docker.stopped() == ["c", "b", "a"]
        assert docker.running() == []
        assert docker.networks[0].removed

    def test_exited_container(self, docker):
        """Test that a container which exits right away is a provisioning failure."""
        docker.statuses["a"] = "exited"
        with pytest.raises(ProvisionError, match="'exited'"):
            docker.provisioner().provision(plan_of(make_service("a")))
        assert docker.networks[0].removed

    def test_startup_timeout(self, docker):
        """Test that a container stuck before running fails once its startup timeout passes."""
        docker.statuses["a"] = "created"
        plan = plan_of(make_service("z"), make_service("a", startup_timeout=0.05))
        with pytest.raises(ProvisionError, match="'created'") as excinfo:
            docker.provisioner().provision(plan)
        assert excinfo.value.service == "a"
        assert docker.stopped() == ["a", "z"]
        assert docker.networks[0].removed

    def test_rollback_errors_kept(self, docker):
        """Test that cleanup failures during a rollback are kept on the provisioner."""
        docker.start_errors["b"] = APIError("image pull failed")
        docker.stop_errors["a"] = APIError("stop timed out")
        provisioner = docker.provisioner()
        with pytest.raises(ProvisionError):
            provisioner.provision(plan_of(make_service("a"), make_service("b")))
        assert [e.resource for e in provisioner.rollback_errors] == ["container 'a'"]
        assert docker.networks[0].removed

    def test_hook_failure_releases_everything(self, docker):
        """Test that an exception from the hook aborts provisioning like a start failure."""
        def after_start(descriptor, handle):
            if descriptor.name == "b":
                raise RuntimeError("not ready")

        with pytest.raises(RuntimeError):
            docker.provisioner().provision(plan_of(make_service("a"), make_service("b")), after_start=after_start)
        assert docker.stopped() == ["b", "a"]
        assert docker.networks[0].removed

    def test_network_failure(self, docker):
        """Test that a network that cannot be created starts nothing."""
        docker.network_error = DockerException("daemon unavailable")
        with pytest.raises(ProvisionError, match="network"):
            docker.provisioner().provision(plan_of(make_service("a")))
        assert docker.containers == {}

    def test_pinned_ports_rendered(self, docker):
        """Test that pinned ports are allocated and rendered into the environment."""
        kafka = make_service(
            "kafka", 9092, pinned_ports=[9092],
            environment={"KAFKA_ADVERTISED_LISTENERS": "PLAINTEXT_HOST://localhost:${HOST_PORT_9092}"},
        )
        _, handles = docker.provisioner().provision(plan_of(kafka))
        container = docker.containers["kafka"]
        host_port = container.host_ports[9092]
        assert container.environment["KAFKA_ADVERTISED_LISTENERS"] == f"PLAINTEXT_HOST://localhost:{host_port}"
        assert handles["kafka"].ports[9092] == host_port

    def test_labels_passed(self, docker):
        """Test that the run labels reach the container factory."""
        docker.provisioner(labels={"org.svcenv.managed": "true"}).provision(plan_of(make_service("a")))
        assert docker.containers["a"].labels == {"org.svcenv.managed": "true"}

    def test_failed_start_logs_written(self, docker, tmp_path):
        """Test that logs of a failed container are kept on disk."""
        docker.start_errors["a"] = APIError("boom")
        docker.logs["a"] = b"out of memory\n"
        provisioner = docker.provisioner(log_aggregator=LogAggregator(str(tmp_path)))
        with pytest.raises(ProvisionError):
            provisioner.provision(plan_of(make_service("a")))
        assert (tmp_path / "a.log").read_text() == "out of memory\n"


class TestRelease:
    """Tests for Provisioner.release."""

    def test_reverse_order(self, docker):
        plan = plan_of(make_service("a"), make_service("b"), make_service("c"))
        provisioner = docker.provisioner()
        network, handles = provisioner.provision(plan)
        assert provisioner.release(network, handles) == []
        assert docker.stopped() == ["c", "b", "a"]
        assert docker.events[-1] == ("network-remove", network.name)

    def test_failures_collected_not_raised(self, docker):
        """Test that one failing stop does not prevent the others."""
        plan = plan_of(make_service("a"), make_service("b"), make_service("c"))
        provisioner = docker.provisioner()
        network, handles = provisioner.provision(plan)
        docker.stop_errors["b"] = APIError("stop timed out")

        errors = provisioner.release(network, handles)

        assert docker.stopped() == ["c", "b", "a"]
        assert len(errors) == 1
        assert isinstance(errors[0], TeardownError)
        assert errors[0].resource == "container 'b'"
        assert docker.networks[0].removed

    def test_stop_twice(self, docker):
        """Test that stopping a handle twice only stops the container once."""
        _, handles = docker.provisioner().provision(plan_of(make_service("a")))
        handles["a"].stop()
        handles["a"].stop()
        assert docker.stopped() == ["a"]


class TestContainerHandle:
    """Tests for ContainerHandle outside of a provisioner."""

    def test_unstarted_stop_is_noop(self, docker):
        svc = make_service("a")
        handle = ContainerHandle(svc, docker.container_factory(svc, None, {}, {}))
        handle.stop()
        assert handle.state == ContainerState.STOPPED
        assert docker.stopped() == []

    def test_status(self, docker):
        svc = make_service("a")
        handle = ContainerHandle(svc, docker.container_factory(svc, None, {}, {}))
        assert handle.status() == "removed"
        handle.start(poll_interval=0)
        assert handle.status() == "running"

    def test_logs_unavailable(self, docker):
        """Test that unreadable logs yield an empty string."""
        svc = make_service("a")
        container = docker.container_factory(svc, None, {}, {})

        def broken():
            raise DockerException("gone")

        container.get_logs = broken
        assert ContainerHandle(svc, container).logs() == ""


class TestNetworkHandle:
    """Tests for NetworkHandle."""

    def test_close_before_create(self, docker):
        handle = NetworkHandle(docker.network_factory("svcenv"))
        handle.close()
        assert docker.events == []

    def test_create_and_close_once(self, docker):
        handle = NetworkHandle(docker.network_factory("svcenv"))
        handle.create()
        handle.create()
        handle.close()
        handle.close()
        assert docker.events == [("network-create", "svcenv-fake"), ("network-remove", "svcenv-fake")]

    def test_allocate_ports(self, docker):
        handle = NetworkHandle(docker.network_factory("svcenv"))
        ports = handle.allocate_ports(make_service("kafka", 9092, pinned_ports=[9092]))
        assert list(ports) == [9092]
        assert ports[9092] > 0

    def test_allocate_no_pinned_ports(self, docker):
        handle = NetworkHandle(docker.network_factory("svcenv"))
        assert handle.allocate_ports(make_service("db", 5432)) == {}
