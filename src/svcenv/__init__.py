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
svcenv - Service environments for integration tests

Provisions ephemeral backing services (Kafka, Zookeeper, Cassandra, Cosmos DB
emulators, WireMock) in containers, gates a test run on their readiness and
tears them down when the run is over.
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from .exceptions import (
    SvcEnvError,
    ConfigError,
    ProvisionError,
    ReadinessTimeout,
    TeardownError,
    EndpointNotFound,
    SetupCancelled,
)
from .MODELS.service_definition import (
    ServiceDescriptor,
    TcpProbe,
    DescribeClusterProbe,
    HttpProbe,
    RemoteOverride,
)
from .MODELS.endpoint import Endpoint
from .MODELS.orchestration_config import OrchestrationConfig, RunPlan
from .MODELS.settings import ControllerSettings, SelectionPolicy
from .MANAGERS.endpoint_registry import EndpointRegistry
from .MANAGERS.lifecycle_controller import LifecycleController

__all__ = [
    "SvcEnvError",
    "ConfigError",
    "ProvisionError",
    "ReadinessTimeout",
    "TeardownError",
    "EndpointNotFound",
    "SetupCancelled",
    "ServiceDescriptor",
    "TcpProbe",
    "DescribeClusterProbe",
    "HttpProbe",
    "RemoteOverride",
    "Endpoint",
    "OrchestrationConfig",
    "RunPlan",
    "ControllerSettings",
    "SelectionPolicy",
    "EndpointRegistry",
    "LifecycleController",
]
