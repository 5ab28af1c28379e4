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
Exception hierarchy for service environment setup and teardown.
"""
from typing import Optional

LOG_TAIL_LINES = 50


def log_tail(logs: str, lines: int = LOG_TAIL_LINES) -> str:
    """
    Returns the last lines of a container log.

    :param logs: The full log text.
    :param lines: Number of trailing lines to keep.
    :return: The log tail.
    """
    if not logs:
        return ""
    return "\n".join(logs.splitlines()[-lines:])


class SvcEnvError(Exception):
    """Base class for all errors raised by svcenv."""


class ConfigError(SvcEnvError):
    """
    The declared services are malformed: a dependency cycle, a dependency on
    an unknown service, or a readiness probe on a port that is not exposed.
    Always raised before any container starts.
    """


class ProvisionError(SvcEnvError):
    """
    A container failed to start or exited right after starting.
    """

    def __init__(self, service: str, reason: str, logs: str = ""):
        self.service = service
        self.reason = reason
        self.logs = logs
        message = f"Service '{service}' failed to start: {reason}"
        tail = log_tail(logs)
        if tail:
            message += f"\n--- last log lines of '{service}' ---\n{tail}"
        super().__init__(message)


class ReadinessTimeout(SvcEnvError):
    """
    A started service never passed its readiness probe within the retry budget.
    """

    def __init__(
        self,
        service: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        logs: str = "",
    ):
        self.service = service
        self.attempts = attempts
        self.last_error = last_error
        self.logs = logs
        message = f"Service '{service}' not ready after {attempts} attempts"
        if last_error is not None:
            message += f": {type(last_error).__name__}: {last_error}"
        tail = log_tail(logs)
        if tail:
            message += f"\n--- last log lines of '{service}' ---\n{tail}"
        super().__init__(message)


class TeardownError(SvcEnvError):
    """
    Stopping a container or closing the network failed.
    Only ever logged; teardown carries on with the remaining resources.
    """

    def __init__(self, resource: str, cause: BaseException):
        self.resource = resource
        self.cause = cause
        super().__init__(f"Failed to release {resource}: {type(cause).__name__}: {cause}")


class EndpointNotFound(SvcEnvError, KeyError):
    """
    A test asked for a service that was never enabled in the current run.
    """

    def __init__(self, service: str, available=()):
        self.service = service
        self.available = tuple(available)
        super().__init__(service)

    def __str__(self):
        enabled = ", ".join(self.available) or "none"
        return f"No endpoint for service '{self.service}' (enabled: {enabled})"


class SetupCancelled(SvcEnvError):
    """
    The run was cancelled while waiting for a service to become ready.
    """
