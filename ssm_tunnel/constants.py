"""Defaults and lookup tables shared across the tool."""

from __future__ import annotations
import os
from pathlib import Path

# Defaults - override via environment if you prefer
STATE_DIR_NAME = ".aws-ssm-connect"
PIDS_FILE_NAME = "pids.json"
LAST_SELECTION_FILE_NAME = "last-selections.json"
AWS_CLI_DEFAULT = "aws"

ENV_STATE_DIR = "AWS_SSM_TUNNEL_HOME"
ENV_AWS_CLI = "AWS_SSM_TUNNEL_AWS_CLI"

PORT_FORWARD_DOCUMENT = "AWS-StartPortForwardingSessionToRemoteHost"
SHELL_DOCUMENT = "AWS-StartInteractiveCommand"

DIR_MODE = 0o700
FILE_MODE = 0o600

ENGINE_PORTS = {
    "mysql": 3306,
    "mariadb": 3306,
    "aurora-mysql": 3306,
    "postgres": 5432,
    "aurora-postgresql": 5432,
    "sqlserver": 1433,
    "redis": 6379,
    "valkey": 6379,
    "memcached": 11211,
    "oracle": 1521,
    "mongodb": 27017,
}

PORT_ENGINES = {
    3306: "MySQL",
    5432: "PostgreSQL",
    1433: "SQL Server",
    6379: "Redis",
    11211: "Memcached",
    1521: "Oracle",
    27017: "MongoDB",
}


def state_dir() -> Path:
    override = os.environ.get(ENV_STATE_DIR)
    if override:
        return Path(override).expanduser()
    return Path.home() / STATE_DIR_NAME


def pids_file() -> Path:
    return state_dir() / PIDS_FILE_NAME


def last_selection_file() -> Path:
    return state_dir() / LAST_SELECTION_FILE_NAME


def aws_cli() -> str:
    return os.environ.get(ENV_AWS_CLI) or AWS_CLI_DEFAULT
