"""
Ready-made descriptors for the backing services svcenv knows out of the box.
"""
from typing import Dict, List

from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import (
    DescribeClusterProbe,
    HttpProbe,
    RemoteOverride,
    ServiceDescriptor,
    TcpProbe,
)

# Well-known master key of the Cosmos DB emulator, the same for every installation
COSMOS_EMULATOR_KEY = "C2y6yDjf5/R+ob0N8A7Cgv30VRDJIWEHLM+4QDU5DE2nQ9nDuVTjchw5LvMR0CNLio7QA/5DB/TcxwKeVw=="

KAFKA_BOOTSTRAP_PROPERTIES = {
    "spring.kafka.bootstrap-servers": "{address}",
    "spring.kafka.consumer.bootstrap-servers": "{address}",
    "spring.kafka.producer.bootstrap-servers": "{address}",
}


def zookeeper() -> ServiceDescriptor:
    return ServiceDescriptor(
        name="zookeeper",
        image="confluentinc/cp-zookeeper:7.5.0",
        network_alias="zookeeper",
        environment={
            "ZOOKEEPER_CLIENT_PORT": "2181",
            "ZOOKEEPER_TICK_TIME": "2000",
            "ZOOKEEPER_SYNC_LIMIT": "5",
            "ZOOKEEPER_INIT_LIMIT": "10",
            "JVMFLAGS": "-Xms256m -Xmx512m",
        },
        exposed_ports=[2181],
        readiness_probe=TcpProbe(port=2181),
        startup_timeout=90,
        readiness_max_retries=30,
    )


def kafka() -> ServiceDescriptor:
    """
    Single broker on top of the zookeeper service. Port 9092 is published on a
    pinned host port so the broker can advertise it; other containers use kafka:29092.
    """
    return ServiceDescriptor(
        name="kafka",
        image="confluentinc/cp-kafka:7.5.0",
        network_alias="kafka",
        environment={
            "KAFKA_BROKER_ID": "1",
            "KAFKA_ZOOKEEPER_CONNECT": "zookeeper:2181",
            "KAFKA_LISTENERS": "PLAINTEXT://0.0.0.0:29092,PLAINTEXT_HOST://0.0.0.0:9092",
            "KAFKA_ADVERTISED_LISTENERS": "PLAINTEXT://kafka:29092,PLAINTEXT_HOST://localhost:${HOST_PORT_9092}",
            "KAFKA_LISTENER_SECURITY_PROTOCOL_MAP": "PLAINTEXT:PLAINTEXT,PLAINTEXT_HOST:PLAINTEXT",
            "KAFKA_INTER_BROKER_LISTENER_NAME": "PLAINTEXT",
            "KAFKA_AUTO_CREATE_TOPICS_ENABLE": "true",
            "KAFKA_GROUP_INITIAL_REBALANCE_DELAY_MS": "0",
            "KAFKA_TRANSACTION_STATE_LOG_MIN_ISR": "1",
            "KAFKA_TRANSACTION_STATE_LOG_REPLICATION_FACTOR": "1",
            "KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR": "1",
            "KAFKA_LOG_RETENTION_HOURS": "168",
            "KAFKA_LOG_SEGMENT_BYTES": "1073741824",
            "KAFKA_JVM_PERFORMANCE_OPTS": "-Xms256m -Xmx512m",
            "KAFKA_NUM_NETWORK_THREADS": "8",
            "KAFKA_NUM_IO_THREADS": "8",
            "KAFKA_LOG_FLUSH_INTERVAL_MESSAGES": "10000",
            "KAFKA_LOG_FLUSH_INTERVAL_MS": "1000",
        },
        exposed_ports=[9092],
        pinned_ports=[9092],
        depends_on=["zookeeper"],
        readiness_probe=DescribeClusterProbe(port=9092, request_timeout=10.0),
        startup_timeout=120,
        readiness_max_retries=50,
        readiness_retry_interval=2.0,
        properties=dict(KAFKA_BOOTSTRAP_PROPERTIES),
    )


def cassandra() -> ServiceDescriptor:
    return ServiceDescriptor(
        name="cassandra",
        image="cassandra:4.1",
        network_alias="cassandra",
        environment={
            "MAX_HEAP_SIZE": "512m",
            "HEAP_NEWSIZE": "256m",
        },
        exposed_ports=[9042],
        readiness_probe=TcpProbe(port=9042, connect_timeout=5.0),
        startup_timeout=120,
        readiness_max_retries=30,
        properties={
            "spring.data.cassandra.contact-points": "{host}",
            "spring.data.cassandra.port": "{port}",
        },
    )


def cosmos_cassandra() -> ServiceDescriptor:
    """
    Cassandra standing in for the Cosmos DB Cassandra API.
    """
    return ServiceDescriptor(
        name="cosmos-cassandra",
        image="cassandra:4.1",
        network_alias="cosmos-cassandra",
        environment={
            "CASSANDRA_DC": "cosmos-dc",
            "CASSANDRA_CLUSTER_NAME": "cosmos-cluster",
            "MAX_HEAP_SIZE": "512m",
            "HEAP_NEWSIZE": "256m",
        },
        exposed_ports=[9042],
        readiness_probe=TcpProbe(port=9042, connect_timeout=5.0),
        startup_timeout=120,
        readiness_max_retries=30,
        properties={
            "spring.data.cosmos.cassandra.contact-points": "{host}",
            "spring.data.cosmos.cassandra.port": "{port}",
        },
    )


def cosmos_nosql() -> ServiceDescriptor:
    """
    Cosmos DB emulator (NoSQL API). Can be replaced by a real account through
    COSMOS_ENDPOINT and COSMOS_KEY.
    """
    return ServiceDescriptor(
        name="cosmos-nosql",
        image="mcr.microsoft.com/cosmosdb/linux/azure-cosmos-emulator:latest",
        network_alias="cosmos-nosql",
        environment={
            "COSMOS_DB_EMULATOR_PARTITION_COUNT": "1",
            "AZURE_COSMOS_EMULATOR_ENABLE_DATA_EXPLORER": "true",
        },
        exposed_ports=[8081, 10251, 10252, 10253, 10254, 10255, 10256],
        readiness_probe=HttpProbe(
            port=8081, path="/_explorer/emulator.pem", scheme="https", verify_tls=False, request_timeout=10.0
        ),
        startup_timeout=300,
        readiness_max_retries=30,
        url_template="https://{host}:{port}",
        credentials={"key": COSMOS_EMULATOR_KEY},
        remote_override=RemoteOverride(endpoint_var="COSMOS_ENDPOINT", credential_vars={"key": "COSMOS_KEY"}),
        properties={
            "spring.cloud.azure.cosmos.endpoint": "{url}",
            "spring.cloud.azure.cosmos.key": "{credentials[key]}",
            "spring.cloud.azure.cosmos.database": "testdb",
            "azure.cosmos.uri": "{url}",
            "azure.cosmos.key": "{credentials[key]}",
        },
    )


def wiremock() -> ServiceDescriptor:
    return ServiceDescriptor(
        name="wiremock",
        image="wiremock/wiremock:3.1.0",
        network_alias="wiremock",
        exposed_ports=[8080],
        readiness_probe=HttpProbe(port=8080, path="/__admin/mappings"),
        startup_timeout=60,
        readiness_max_retries=30,
        url_template="http://{host}:{port}",
        properties={
            "wiremock.url": "http://{host}",
            "wiremock.port": "{port}",
        },
    )


BUILTIN_FACTORIES = {
    "zookeeper": zookeeper,
    "kafka": kafka,
    "cassandra": cassandra,
    "cosmos-cassandra": cosmos_cassandra,
    "cosmos-nosql": cosmos_nosql,
    "wiremock": wiremock,
}


def builtin_names() -> List[str]:
    return list(BUILTIN_FACTORIES)


def builtin_service(name: str) -> ServiceDescriptor:
    """
    Returns a fresh copy of a built-in descriptor.

    :raises KeyError: If there is no built-in service of that name.
    """
    return BUILTIN_FACTORIES[name]()


def builtin_services() -> Dict[str, ServiceDescriptor]:
    return {name: factory() for name, factory in BUILTIN_FACTORIES.items()}


def builtin_config() -> OrchestrationConfig:
    """
    Every built-in service; pair it with an opt-in selection.
    """
    return OrchestrationConfig(services=builtin_services())
