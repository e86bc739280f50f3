"""S3 client factory.

Creates boto3 S3 clients with the endpoint, credentials, region, addressing
style, checksum behaviour and signing scheme of a StoreConfig.

The signing scheme is chosen once here: botocore's 's3v4' signer for current
stores, or its legacy 's3' (signature version 2) signer for stores that still
require it. It is never changed after the client is built.
"""

from urllib.parse import quote

import boto3
from botocore.client import Config

from tarmover.models import StoreConfig

# Connections kept per client when the caller does not size the pool
DEFAULT_MAX_POOL_CONNECTIONS = 10


def endpoint_url(config: StoreConfig):
    """Return the endpoint as a URL, adding a scheme to bare host:port values."""
    if not config.endpoint:
        return None
    if "://" in config.endpoint:
        return config.endpoint
    scheme = "http" if config.disable_ssl else "https"
    return f"{scheme}://{config.endpoint}"


def build_s3_client(config: StoreConfig, max_pool_connections: int = DEFAULT_MAX_POOL_CONNECTIONS):
    """Build a boto3 S3 client for the given store configuration.

    Args:
        config: Store configuration (credentials, endpoint, toggles).
        max_pool_connections: HTTP connection pool size. Should be at least
            the transfer concurrency so workers do not wait on connections.

    Returns:
        A boto3 S3 client configured for the store.
    """
    checksum_mode = "when_required" if config.disable_checksum else "when_supported"

    boto_config = Config(
        signature_version=config.signing_version.value,
        s3={"addressing_style": "path" if config.path_style else "auto"},
        max_pool_connections=max(max_pool_connections, 1),
        request_checksum_calculation=checksum_mode,
        response_checksum_validation=checksum_mode,
    )

    return boto3.client(
        "s3",
        endpoint_url=endpoint_url(config),
        aws_access_key_id=config.access_key,
        aws_secret_access_key=config.secret_key,
        region_name=config.region,
        use_ssl=not config.disable_ssl,
        config=boto_config,
    )


def object_url(s3_client, bucket: str, key: str) -> str:
    """Path-style URL of an object, used as its reported location."""
    base = s3_client.meta.endpoint_url.rstrip("/")
    return f"{base}/{bucket}/{quote(key)}"
