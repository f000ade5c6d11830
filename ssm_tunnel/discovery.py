"""AWS discovery: profiles, SSM-managed instances and reachable databases."""

from __future__ import annotations
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TypeVar

import boto3
import botocore

from ssm_tunnel import constants
from ssm_tunnel.errors import DiscoveryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SSO_TOKEN_ERRORS = (
    botocore.exceptions.UnauthorizedSSOTokenError,
    botocore.exceptions.TokenRetrievalError,
    botocore.exceptions.SSOTokenLoadError,
)


@dataclass(frozen=True)
class Instance:
    id: str
    name: str
    vpc_id: str


@dataclass(frozen=True)
class Database:
    endpoint: str
    port: int
    vpc_id: str
    role: str
    engine: str = ""


# ---------------- profiles & credentials ----------------
def fetch_profiles() -> List[str]:
    return sorted(boto3.Session().available_profiles or [])


def open_session(profile: str) -> boto3.Session:
    return boto3.Session(profile_name=profile)


def ensure_sso_login(profile: str) -> None:
    """Run ``aws sso login`` unless the profile already has working credentials."""
    aws = constants.aws_cli()
    try:
        check = subprocess.run(
            [aws, "sts", "get-caller-identity", "--profile", profile],
            stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        raise DiscoveryError(f"could not run {aws}: {e}") from e
    if check.returncode == 0:
        return
    logger.info("credentials for %s are not valid, starting SSO login", profile)
    try:
        login = subprocess.run([aws, "sso", "login", "--profile", profile])
    except OSError as e:
        raise DiscoveryError(f"could not run aws sso login: {e}") from e
    if login.returncode != 0:
        raise DiscoveryError(f"SSO login failed for profile '{profile}'")


def with_sso_retry(profile: str, fetch: Callable[[boto3.Session], T]) -> T:
    """Call ``fetch`` with a fresh session, logging in once if the SSO token expired."""
    try:
        return fetch(open_session(profile))
    except SSO_TOKEN_ERRORS as e:
        logger.info("SSO token problem for %s: %s", profile, e)
        ensure_sso_login(profile)
        return fetch(open_session(profile))


# ---------------- EC2 / SSM ----------------
def _name_tag(tags: Optional[List[dict]]) -> str:
    for tag in tags or []:
        if tag.get("Key") == "Name":
            return tag.get("Value", "")
    return ""


def fetch_instances(session: boto3.Session) -> List[Instance]:
    """Return SSM-managed EC2 instances sorted by Name tag."""
    ssm = session.client("ssm")
    ids: List[str] = []
    for page in ssm.get_paginator("describe_instance_information").paginate():
        for info in page.get("InstanceInformationList", []):
            instance_id = info.get("InstanceId", "")
            # hybrid activations (mi-*) have no EC2 counterpart
            if instance_id.startswith("i-"):
                ids.append(instance_id)
    if not ids:
        return []

    ec2 = session.client("ec2")
    result: List[Instance] = []
    for page in ec2.get_paginator("describe_instances").paginate(InstanceIds=ids):
        for reservation in page.get("Reservations", []):
            for inst in reservation.get("Instances", []):
                result.append(Instance(
                    id=inst["InstanceId"],
                    name=_name_tag(inst.get("Tags")),
                    vpc_id=inst.get("VpcId", ""),
                ))
    result.sort(key=lambda i: i.name)
    return result


# ---------------- RDS / ElastiCache ----------------
def detect_port(engine: str) -> int:
    engine = engine.lower()
    if "mysql" in engine or "mariadb" in engine:
        return 3306
    if "postgres" in engine:
        return 5432
    if "sqlserver" in engine:
        return 1433
    if "oracle" in engine:
        return 1521
    if "mongo" in engine:
        return 27017
    return constants.ENGINE_PORTS.get(engine, 3306)


def engine_for_port(port: int) -> str:
    return constants.PORT_ENGINES.get(int(port), "Unknown")


def _paginate(client, operation: str, key: str, **kwargs) -> List[dict]:
    items: List[dict] = []
    for page in client.get_paginator(operation).paginate(**kwargs):
        items.extend(page.get(key, []))
    return items


def fetch_rds(rds) -> List[Database]:
    subnet_vpc = {
        sg["DBSubnetGroupName"]: sg.get("VpcId", "")
        for sg in _paginate(rds, "describe_db_subnet_groups", "DBSubnetGroups")
    }

    result: List[Database] = []
    for cluster in _paginate(rds, "describe_db_clusters", "DBClusters"):
        engine = cluster.get("Engine", "").lower()
        if "aurora" not in engine:
            continue
        vpc = subnet_vpc.get(cluster.get("DBSubnetGroup", ""), "")
        port = cluster.get("Port") or detect_port(engine)
        if cluster.get("Endpoint"):
            result.append(Database(cluster["Endpoint"], port, vpc, "writer", engine))
        if cluster.get("ReaderEndpoint"):
            result.append(Database(cluster["ReaderEndpoint"], port, vpc, "reader", engine))

    for inst in _paginate(rds, "describe_db_instances", "DBInstances"):
        # cluster members and replicas are reached through the cluster endpoints
        if inst.get("ReadReplicaSourceDBInstanceIdentifier") or inst.get("DBClusterIdentifier"):
            continue
        endpoint = inst.get("Endpoint") or {}
        if not endpoint.get("Address"):
            continue
        engine = inst.get("Engine", "").lower()
        vpc = (inst.get("DBSubnetGroup") or {}).get("VpcId", "")
        port = endpoint.get("Port") or detect_port(engine)
        result.append(Database(endpoint["Address"], port, vpc, "instance", engine))
    return result


def fetch_elasticache(cache) -> List[Database]:
    group_vpc = {
        sg["CacheSubnetGroupName"]: sg.get("VpcId", "")
        for sg in _paginate(cache, "describe_cache_subnet_groups", "CacheSubnetGroups")
        if sg.get("CacheSubnetGroupName")
    }
    cluster_vpc: Dict[str, str] = {}
    for cc in _paginate(cache, "describe_cache_clusters", "CacheClusters", ShowCacheNodeInfo=True):
        if cc.get("CacheClusterId") and cc.get("CacheSubnetGroupName"):
            cluster_vpc[cc["CacheClusterId"]] = group_vpc.get(cc["CacheSubnetGroupName"], "")

    result: List[Database] = []
    seen = set()

    def add(address: str, role: str, vpc: str, engine: str) -> None:
        if address in seen:
            return
        seen.add(address)
        result.append(Database(address, constants.ENGINE_PORTS["redis"], vpc, f"{engine}-{role}", engine))

    for rg in _paginate(cache, "describe_replication_groups", "ReplicationGroups"):
        engine = rg.get("Engine", "redis").lower()
        if engine not in ("redis", "valkey"):
            continue
        members = rg.get("MemberClusters") or []
        vpc = cluster_vpc.get(members[0], "") if members else ""

        config_ep = rg.get("ConfigurationEndpoint") or {}
        if config_ep.get("Address"):
            add(config_ep["Address"], "primary", vpc, engine)
        for node_group in rg.get("NodeGroups", []):
            for member in node_group.get("NodeGroupMembers", []):
                address = (member.get("ReadEndpoint") or {}).get("Address")
                if not address:
                    continue
                role = "primary" if member.get("CurrentRole") == "primary" else "replica"
                add(address, role, vpc, engine)
    return result


def _elasticache_or_empty(cache) -> List[Database]:
    try:
        return fetch_elasticache(cache)
    except (botocore.exceptions.BotoCoreError, botocore.exceptions.ClientError) as e:
        logger.warning("skipping ElastiCache discovery: %s", e)
        return []


def fetch_databases(session: boto3.Session) -> List[Database]:
    """Fetch RDS and ElastiCache endpoints in parallel, sorted by endpoint."""
    # sessions are not thread safe, clients are
    rds = session.client("rds")
    cache = session.client("elasticache")
    with ThreadPoolExecutor(max_workers=2) as executor:
        rds_future = executor.submit(fetch_rds, rds)
        cache_future = executor.submit(_elasticache_or_empty, cache)
        try:
            dbs = rds_future.result() + cache_future.result()
        except botocore.exceptions.ClientError as e:
            raise DiscoveryError(f"describe databases failed: {e}") from e
    dbs.sort(key=lambda d: d.endpoint)
    return dbs


def filter_by_vpc(dbs: List[Database], vpc_id: str) -> List[Database]:
    return [db for db in dbs if db.vpc_id == vpc_id]


def find_instance(instances: List[Instance], keyword: str) -> Optional[Instance]:
    keyword = keyword.lower()
    for inst in instances:
        if keyword in inst.name.lower():
            return inst
    return None


def pick_writer(dbs: List[Database]) -> Optional[Database]:
    """First cluster writer, falling back to the first standalone instance."""
    for role in ("writer", "instance"):
        for db in dbs:
            if db.role == role:
                return db
    return None
