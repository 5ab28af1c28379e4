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
Unit tests for .env merging and remote override resolution.
"""
import pytest

from svcenv.MANAGERS.environment_manager import EnvironmentManager
from svcenv.MODELS.service_definition import RemoteOverride, ServiceDescriptor, TcpProbe
from svcenv.exceptions import ConfigError


def kafka():
    return ServiceDescriptor(
        name="kafka", image="x", exposed_ports=[9092], readiness_probe=TcpProbe(port=9092)
    )


def cosmos():
    return ServiceDescriptor(
        name="cosmos-nosql",
        image="x",
        exposed_ports=[8081],
        readiness_probe=TcpProbe(port=8081),
        remote_override=RemoteOverride(endpoint_var="COSMOS_ENDPOINT", credential_vars={"key": "COSMOS_KEY"}),
    )


class TestMergedEnvironment:
    """Tests for EnvironmentManager.get_merged_environment."""

    def test_files_and_process_environment(self, tmp_path):
        """Test that later files override earlier ones and the process environment overrides files."""
        (tmp_path / ".env").write_text("A=from-env\nB=from-env\nC=from-env\n")
        (tmp_path / ".env.test").write_text("B=from-test\nC=from-test\n")
        mgr = EnvironmentManager(str(tmp_path), environ={"C": "from-process"})

        merged = mgr.get_merged_environment([".env", ".env.test"])

        assert merged["A"] == "from-env"
        assert merged["B"] == "from-test"
        assert merged["C"] == "from-process"

    def test_missing_file_skipped(self, tmp_path):
        mgr = EnvironmentManager(str(tmp_path), environ={"X": "1"})
        assert mgr.get_merged_environment([".env.missing"]) == {"X": "1"}

    def test_valueless_keys_skipped(self, tmp_path):
        (tmp_path / ".env").write_text("EMPTY\nSET=1\n")
        merged = EnvironmentManager(str(tmp_path), environ={}).get_merged_environment([".env"])
        assert merged == {"SET": "1"}


class TestResolveOverride:
    """Tests for EnvironmentManager.resolve_override."""

    def test_not_set(self):
        assert EnvironmentManager(environ={}).resolve_override(kafka(), {}) is None

    def test_default_variable(self):
        endpoint = EnvironmentManager().resolve_override(kafka(), {"SVCENV_KAFKA_ENDPOINT": "broker:19092"})
        assert endpoint.remote
        assert endpoint.host == "broker"
        assert endpoint.port == 19092
        assert endpoint.ports == {9092: 19092}
        assert endpoint.address == "broker:19092"

    def test_credentials_verbatim(self):
        env = {"COSMOS_ENDPOINT": "https://acct.documents.azure.com/", "COSMOS_KEY": "k3y=="}
        endpoint = EnvironmentManager().resolve_override(cosmos(), env)
        assert endpoint.url == "https://acct.documents.azure.com/"
        assert endpoint.credentials == {"key": "k3y=="}
        assert endpoint.port == 443

    def test_incomplete_override(self):
        """Test that an endpoint without its credentials is ignored."""
        env = {"COSMOS_ENDPOINT": "https://acct.documents.azure.com/"}
        assert EnvironmentManager().resolve_override(cosmos(), env) is None

    def test_empty_value_ignored(self):
        assert EnvironmentManager().resolve_override(kafka(), {"SVCENV_KAFKA_ENDPOINT": ""}) is None

    def test_host_without_port(self):
        """Test that a bare host falls back to the service's own port."""
        endpoint = EnvironmentManager().resolve_override(kafka(), {"SVCENV_KAFKA_ENDPOINT": "broker"})
        assert endpoint.port == 9092

    def test_invalid_port(self):
        with pytest.raises(ConfigError):
            EnvironmentManager().resolve_override(kafka(), {"SVCENV_KAFKA_ENDPOINT": "broker:abc"})
