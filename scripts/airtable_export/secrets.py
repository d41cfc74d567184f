"""Secret references in the environment.

The admin API key and the database password may be given as

  aws-secret://<name>          whole SecretString from AWS Secrets Manager
  aws-secret://<name>#<field>  one field of a JSON SecretString
  gcp-secret://<name>          latest version in GCP_PROJECT_ID
  gcp-secret://projects/<p>/secrets/<name>/versions/<v>

Anything else is taken literally.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Callable

logger = logging.getLogger("export.secrets")


def _resolve_aws_secret(ref: str) -> str:
    import boto3

    name, _, field = ref.partition("#")
    region = os.environ.get("AWS_REGION", "us-east-1")
    logger.info("Fetching %s from AWS Secrets Manager (%s)", name, region)
    secret = boto3.client("secretsmanager", region_name=region).get_secret_value(SecretId=name)
    payload = secret["SecretString"]
    return str(json.loads(payload)[field]) if field else payload


def _gcp_version_name(ref: str) -> str:
    if ref.startswith("projects/"):
        return ref
    project = os.environ.get("GCP_PROJECT_ID", "")
    if not project:
        raise RuntimeError(f"Cannot resolve gcp-secret://{ref} without GCP_PROJECT_ID")
    return f"projects/{project}/secrets/{ref}/versions/latest"


def _resolve_gcp_secret(ref: str) -> str:
    name = _gcp_version_name(ref)
    from google.cloud import secretmanager

    logger.info("Fetching %s from GCP Secret Manager", name)
    version = secretmanager.SecretManagerServiceClient().access_secret_version(
        request={"name": name}
    )
    return version.payload.data.decode("utf-8")


_SCHEMES: dict[str, Callable[[str], str]] = {
    "aws-secret://": lambda ref: _resolve_aws_secret(ref),
    "gcp-secret://": lambda ref: _resolve_gcp_secret(ref),
}


def resolve_secret(value: str) -> str:
    """Plaintext for ``value``, fetching it first if it is a secret reference."""
    for scheme, resolver in _SCHEMES.items():
        if value.startswith(scheme):
            return resolver(value[len(scheme):])
    return value


def resolve_database_url() -> str:
    """``DATABASE_URL`` if set, otherwise a DSN assembled from ``PG_*``."""
    url = os.environ.get("DATABASE_URL")
    if url:
        return resolve_secret(url)

    env = os.environ.get
    password = resolve_secret(env("PG_PASSWORD", "localdev-change-me"))
    return (
        f"postgresql://{env('PG_USER', 'export')}:{password}"
        f"@{env('PG_HOST', 'localhost')}:{env('PG_PORT', '5432')}"
        f"/{env('PG_DATABASE', 'airtable_export')}"
    )
