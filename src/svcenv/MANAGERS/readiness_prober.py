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
Readiness probing for started services: TCP connect, cluster describe and
HTTP GET checks, retried a bounded number of times at a fixed interval.
"""
import logging
import socket
import threading
import warnings
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

import requests
from kafka import KafkaAdminClient
from tenacity import (
    Retrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ..MODELS.endpoint import Endpoint
from ..MODELS.service_definition import (
    DescribeClusterProbe,
    HttpProbe,
    ServiceDescriptor,
    TcpProbe,
)
from ..exceptions import SetupCancelled

logger = logging.getLogger(__name__)


class ProbeFailed(Exception):
    """The service answered, but not in a way that counts as ready."""


@dataclass
class Ready:
    """The service passed its probe."""

    service: str
    attempts: int


@dataclass
class TimedOut:
    """The service never passed its probe within the retry budget."""

    service: str
    attempts: int
    last_error: Optional[BaseException] = None


ProbeResult = Union[Ready, TimedOut]


def probe_tcp(probe: TcpProbe, endpoint: Endpoint):
    """
    Opens and immediately closes a socket to the mapped port.
    """
    port = endpoint.mapped_port(probe.port)
    with socket.create_connection((endpoint.host, port), timeout=probe.connect_timeout):
        pass


def probe_describe_cluster(probe: DescribeClusterProbe, endpoint: Endpoint):
    """
    Asks the broker to describe its cluster and expects at least min_nodes brokers.
    """
    bootstrap = f"{endpoint.host}:{endpoint.mapped_port(probe.port)}"
    timeout_ms = int(probe.request_timeout * 1000)
    admin = KafkaAdminClient(
        bootstrap_servers=bootstrap,
        client_id="svcenv-readiness",
        request_timeout_ms=timeout_ms,
        api_version_auto_timeout_ms=timeout_ms,
    )
    try:
        description = admin.describe_cluster()
    finally:
        try:
            admin.close()
        except Exception as e:
            logger.debug("Error closing admin client for %s: %s", bootstrap, e)

    brokers = description.get("brokers") or []
    if len(brokers) < probe.min_nodes:
        raise ProbeFailed(f"{len(brokers)} broker(s) available at {bootstrap}, need {probe.min_nodes}")
    logger.debug(
        "Cluster at %s: %d broker(s), controller %s",
        bootstrap, len(brokers), description.get("controller_id"),
    )


def probe_http(probe: HttpProbe, endpoint: Endpoint):
    """
    Issues a GET on a fixed path. Any HTTP response counts as ready.
    """
    url = f"{probe.scheme}://{endpoint.host}:{endpoint.mapped_port(probe.port)}{probe.path}"
    with warnings.catch_warnings():
        if not probe.verify_tls:
            # self-signed emulator certificates
            warnings.simplefilter("ignore")
        response = requests.get(url, timeout=probe.request_timeout, verify=probe.verify_tls)
    logger.debug("GET %s -> %s", url, response.status_code)


DEFAULT_PROBES: Dict[str, Callable] = {
    "tcp": probe_tcp,
    "describe_cluster": probe_describe_cluster,
    "http": probe_http,
}


class ReadinessProber:
    """
    Blocks until a service passes its readiness probe or the retry budget is spent.
    The wait between attempts can be cut short with cancel().
    """

    def __init__(
        self,
        probes: Optional[Dict[str, Callable]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initializes the prober.

        :param probes: Probe functions by probe kind, merged over the defaults.
        :param sleep: Replacement for the cancellable wait between attempts.
        """
        self.probes = dict(DEFAULT_PROBES)
        if probes:
            self.probes.update(probes)
        self._sleep_fn = sleep
        self._cancelled = threading.Event()

    def cancel(self):
        """
        Aborts any ongoing or future wait; await_ready then raises SetupCancelled.
        An attempt already in flight finishes first.
        """
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _check_cancelled(self, service: str):
        if self._cancelled.is_set():
            raise SetupCancelled(f"Readiness wait for '{service}' cancelled")

    def _sleep(self, service: str) -> Callable[[float], None]:
        def sleep(seconds: float):
            if self._sleep_fn is not None:
                self._sleep_fn(seconds)
            else:
                self._cancelled.wait(seconds)
            self._check_cancelled(service)
        return sleep

    def await_ready(
        self,
        descriptor: ServiceDescriptor,
        endpoint: Endpoint,
        max_retries: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> ProbeResult:
        """
        Runs the descriptor's probe until it succeeds, at most max_retries times,
        sleeping a fixed interval between attempts.

        :param descriptor: The service to check.
        :param endpoint: Where the service was started.
        :param max_retries: Attempt budget; defaults to the descriptor's.
        :param interval: Seconds between attempts; defaults to the descriptor's.
        :return: Ready, or TimedOut with the last observed error.
        :raises SetupCancelled: If cancel() was called.
        """
        name = descriptor.name
        probe = descriptor.readiness_probe
        if probe is None:
            return Ready(name, 0)

        max_retries = descriptor.readiness_max_retries if max_retries is None else max_retries
        interval = descriptor.readiness_retry_interval if interval is None else interval
        check = self.probes[probe.kind]
        attempts = 0

        def attempt():
            nonlocal attempts
            self._check_cancelled(name)
            attempts += 1
            check(probe, endpoint)

        def log_retry(retry_state):
            error = retry_state.outcome.exception()
            logger.info(
                "[%s] Not ready yet (attempt %d/%d): %s: %s",
                name, retry_state.attempt_number, max_retries, type(error).__name__, error,
            )

        logger.info(
            "[%s] Waiting for readiness (%s probe, up to %d attempts every %.1fs)",
            name, probe.kind, max_retries, interval,
        )
        retrying = Retrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_fixed(interval),
            retry=retry_if_not_exception_type(SetupCancelled),
            sleep=self._sleep(name),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            retrying(attempt)
        except SetupCancelled:
            raise
        except Exception as e:
            logger.error("[%s] Not ready after %d attempts: %s: %s", name, attempts, type(e).__name__, e)
            return TimedOut(name, attempts, e)

        logger.info("[%s] Ready after %d attempt(s)", name, attempts)
        return Ready(name, attempts)
