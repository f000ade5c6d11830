"""Tests for AWS discovery against fake boto3 clients."""

from __future__ import annotations

from typing import Any

import botocore.exceptions
import pytest

from ssm_tunnel import constants, discovery
from ssm_tunnel.discovery import Database, Instance


class _FakePaginator:
    def __init__(self, pages: list[dict[str, Any]]) -> None:
        self._pages = pages
        self.kwargs: dict[str, Any] = {}

    def paginate(self, **kwargs: Any) -> list[dict[str, Any]]:
        self.kwargs = kwargs
        return self._pages


class _FakeClient:
    def __init__(self, responses: dict[str, list[dict[str, Any]]], error: Exception | None = None) -> None:
        self._responses = responses
        self._error = error
        self.paginators: dict[str, _FakePaginator] = {}

    def get_paginator(self, operation: str) -> _FakePaginator:
        if self._error is not None:
            raise self._error
        paginator = _FakePaginator(self._responses.get(operation, [{}]))
        self.paginators[operation] = paginator
        return paginator


class _FakeSession:
    def __init__(self, **clients: _FakeClient) -> None:
        self._clients = clients

    def client(self, name: str) -> _FakeClient:
        return self._clients[name]


RDS = _FakeClient({
    "describe_db_subnet_groups": [{"DBSubnetGroups": [
        {"DBSubnetGroupName": "main", "VpcId": "vpc-1"},
        {"DBSubnetGroupName": "other", "VpcId": "vpc-2"},
    ]}],
    "describe_db_clusters": [{"DBClusters": [
        {
            "Engine": "aurora-postgresql",
            "DBSubnetGroup": "main",
            "Port": 5432,
            "Endpoint": "orders.cluster-abc.rds.amazonaws.com",
            "ReaderEndpoint": "orders.cluster-ro-abc.rds.amazonaws.com",
        },
        {"Engine": "mysql", "DBSubnetGroup": "main", "Endpoint": "multiaz.cluster.rds.amazonaws.com"},
    ]}],
    "describe_db_instances": [
        {"DBInstances": [
            {
                "Engine": "mysql",
                "Endpoint": {"Address": "legacy.rds.amazonaws.com", "Port": 3306},
                "DBSubnetGroup": {"VpcId": "vpc-2"},
            },
            {
                "Engine": "aurora-postgresql",
                "DBClusterIdentifier": "orders",
                "Endpoint": {"Address": "orders-1.rds.amazonaws.com", "Port": 5432},
            },
        ]},
        {"DBInstances": [
            {
                "Engine": "mysql",
                "ReadReplicaSourceDBInstanceIdentifier": "legacy",
                "Endpoint": {"Address": "legacy-replica.rds.amazonaws.com", "Port": 3306},
            },
        ]},
    ],
})

CACHE = _FakeClient({
    "describe_cache_subnet_groups": [{"CacheSubnetGroups": [{"CacheSubnetGroupName": "cache-main", "VpcId": "vpc-1"}]}],
    "describe_cache_clusters": [{"CacheClusters": [
        {"CacheClusterId": "sessions-001", "CacheSubnetGroupName": "cache-main"},
    ]}],
    "describe_replication_groups": [{"ReplicationGroups": [
        {
            "Engine": "redis",
            "MemberClusters": ["sessions-001", "sessions-002"],
            "NodeGroups": [{"NodeGroupMembers": [
                {"ReadEndpoint": {"Address": "sessions-001.cache.amazonaws.com"}, "CurrentRole": "primary"},
                {"ReadEndpoint": {"Address": "sessions-002.cache.amazonaws.com"}, "CurrentRole": "replica"},
                {"ReadEndpoint": {"Address": "sessions-001.cache.amazonaws.com"}, "CurrentRole": "primary"},
            ]}],
        },
        {"Engine": "memcached", "MemberClusters": []},
    ]}],
})


def test_fetch_databases_combines_rds_and_elasticache() -> None:
    dbs = discovery.fetch_databases(_FakeSession(rds=RDS, elasticache=CACHE))

    assert dbs == [
        Database("legacy.rds.amazonaws.com", 3306, "vpc-2", "instance", "mysql"),
        Database("orders.cluster-abc.rds.amazonaws.com", 5432, "vpc-1", "writer", "aurora-postgresql"),
        Database("orders.cluster-ro-abc.rds.amazonaws.com", 5432, "vpc-1", "reader", "aurora-postgresql"),
        Database("sessions-001.cache.amazonaws.com", 6379, "vpc-1", "redis-primary", "redis"),
        Database("sessions-002.cache.amazonaws.com", 6379, "vpc-1", "redis-replica", "redis"),
    ]


def test_elasticache_failure_degrades_to_rds_only() -> None:
    denied = botocore.exceptions.ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "nope"}}, "DescribeCacheSubnetGroups"
    )
    dbs = discovery.fetch_databases(_FakeSession(rds=RDS, elasticache=_FakeClient({}, error=denied)))

    assert {db.role for db in dbs} == {"instance", "writer", "reader"}


def test_rds_failure_becomes_discovery_error() -> None:
    denied = botocore.exceptions.ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "nope"}}, "DescribeDBClusters"
    )

    with pytest.raises(discovery.DiscoveryError):
        discovery.fetch_databases(_FakeSession(rds=_FakeClient({}, error=denied), elasticache=CACHE))


def test_fetch_instances_resolves_names_and_skips_hybrid_nodes() -> None:
    ssm = _FakeClient({"describe_instance_information": [{"InstanceInformationList": [
        {"InstanceId": "i-bbb"}, {"InstanceId": "mi-onprem"}, {"InstanceId": "i-aaa"},
    ]}]})
    ec2 = _FakeClient({"describe_instances": [{"Reservations": [{"Instances": [
        {"InstanceId": "i-bbb", "VpcId": "vpc-1", "Tags": [{"Key": "Name", "Value": "web"}]},
        {"InstanceId": "i-aaa", "VpcId": "vpc-2", "Tags": [{"Key": "Env", "Value": "prod"}, {"Key": "Name", "Value": "bastion"}]},
    ]}]}]})

    instances = discovery.fetch_instances(_FakeSession(ssm=ssm, ec2=ec2))

    assert instances == [Instance("i-aaa", "bastion", "vpc-2"), Instance("i-bbb", "web", "vpc-1")]
    assert ec2.paginators["describe_instances"].kwargs == {"InstanceIds": ["i-bbb", "i-aaa"]}


def test_fetch_instances_without_managed_nodes_skips_ec2() -> None:
    ssm = _FakeClient({"describe_instance_information": [{"InstanceInformationList": []}]})

    assert discovery.fetch_instances(_FakeSession(ssm=ssm)) == []


@pytest.mark.parametrize(
    ("engine", "port"),
    [("aurora-mysql", 3306), ("mariadb", 3306), ("aurora-postgresql", 5432), ("sqlserver-ee", 1433),
     ("oracle-se2", 1521), ("docdb-mongo", 27017), ("redis", 6379), ("mystery", 3306)],
)
def test_detect_port(engine: str, port: int) -> None:
    assert discovery.detect_port(engine) == port


def test_engine_for_port() -> None:
    assert discovery.engine_for_port(5432) == "PostgreSQL"
    assert discovery.engine_for_port(11211) == "Memcached"
    assert discovery.engine_for_port(1) == "Unknown"


def test_filter_pick_and_find_helpers() -> None:
    dbs = [
        Database("a", 5432, "vpc-1", "reader"),
        Database("b", 5432, "vpc-1", "instance"),
        Database("c", 5432, "vpc-1", "writer"),
        Database("d", 5432, "vpc-2", "writer"),
    ]
    same_vpc = discovery.filter_by_vpc(dbs, "vpc-1")

    assert [db.endpoint for db in same_vpc] == ["a", "b", "c"]
    assert discovery.pick_writer(same_vpc).endpoint == "c"
    assert discovery.pick_writer(same_vpc[:2]).endpoint == "b"
    assert discovery.pick_writer(same_vpc[:1]) is None

    instances = [Instance("i-1", "api-prod", "vpc-1"), Instance("i-2", "bastion-DEV", "vpc-1")]
    assert discovery.find_instance(instances, "dev").id == "i-2"
    assert discovery.find_instance(instances, "qa") is None


def test_with_sso_retry_logs_in_once(monkeypatch: pytest.MonkeyPatch) -> None:
    logins: list[str] = []
    calls: list[object] = []
    monkeypatch.setattr(discovery, "open_session", lambda profile: f"session-{len(calls)}")
    monkeypatch.setattr(discovery, "ensure_sso_login", logins.append)

    def _fetch(session: object) -> str:
        calls.append(session)
        if len(calls) == 1:
            raise botocore.exceptions.UnauthorizedSSOTokenError()
        return "ok"

    assert discovery.with_sso_retry("prod", _fetch) == "ok"
    assert logins == ["prod"]
    assert calls == ["session-0", "session-1"]


class _Completed:
    def __init__(self, returncode: int) -> None:
        self.returncode = returncode


def test_ensure_sso_login_skips_login_when_identity_works(monkeypatch: pytest.MonkeyPatch) -> None:
    commands: list[list[str]] = []

    def _run(cmd: list[str], **kwargs: Any) -> _Completed:
        commands.append(cmd)
        return _Completed(0)

    monkeypatch.setattr(discovery.subprocess, "run", _run)

    discovery.ensure_sso_login("prod")

    assert commands == [["aws", "sts", "get-caller-identity", "--profile", "prod"]]


def test_ensure_sso_login_raises_when_login_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    commands: list[list[str]] = []

    def _run(cmd: list[str], **kwargs: Any) -> _Completed:
        commands.append(cmd)
        return _Completed(1)

    monkeypatch.setattr(discovery.subprocess, "run", _run)

    with pytest.raises(discovery.DiscoveryError):
        discovery.ensure_sso_login("prod")

    assert commands[1] == ["aws", "sso", "login", "--profile", "prod"]


def test_ensure_sso_login_reports_missing_aws_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(constants.ENV_AWS_CLI, "/nonexistent/aws")

    with pytest.raises(discovery.DiscoveryError, match="/nonexistent/aws"):
        discovery.ensure_sso_login("prod")
