"""Erzeugt die boto3-Clients des Gateways (Bedrock Runtime, DynamoDB) mit
festen Timeouts."""
import boto3
from botocore.config import Config

from app.core.config import Settings, settings as default_settings


def boto_config(config: Settings = default_settings) -> Config:
    # Keine automatischen Retries: Fehler gehen direkt an den Aufrufer.
    return Config(
        region_name=config.aws_region,
        connect_timeout=config.connect_timeout_seconds,
        read_timeout=config.read_timeout_seconds,
        retries={"max_attempts": 1, "mode": "standard"},
    )


def get_bedrock_runtime_client(config: Settings = default_settings):
    return boto3.client("bedrock-runtime", config=boto_config(config))


def get_dynamodb_table(config: Settings = default_settings):
    dynamodb = boto3.resource("dynamodb", config=boto_config(config))
    return dynamodb.Table(config.table_name)
