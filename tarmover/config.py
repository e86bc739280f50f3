"""Configuration loading for tarmover.

Settings come from three sources, highest priority first:
1. Command-line flags
2. Environment variables (credentials only)
3. A JSON config file of option defaults

Environment Variables:
    AWS_ACCESS_KEY_ID=xxx
    AWS_SECRET_ACCESS_KEY=xxx

Config File Example:
    {
        "endpoint": "minio.local:9000",
        "region": "us-west-2",
        "path_style": true,
        "disable_ssl": true,
        "part_size": "16MiB",
        "concurrency": 8
    }

The result is a pair of frozen values (StoreConfig, TransferSettings) built
once before any transfer begins.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

from tarmover.errors import TarMoverError
from tarmover.models import Credentials, SigningVersion, StoreConfig, TransferSettings


class ConfigError(TarMoverError):
    """Raised when configuration is missing or invalid."""

    pass


# Options accepted in the config file
KNOWN_OPTIONS = {
    "access_key",
    "secret_key",
    "region",
    "endpoint",
    "bucket",
    "disable_ssl",
    "disable_checksum",
    "path_style",
    "signing_version",
    "part_size",
    "concurrency",
}

DEFAULT_REGION = "us-west-2"

ACCESS_KEY_VAR = "AWS_ACCESS_KEY_ID"
SECRET_KEY_VAR = "AWS_SECRET_ACCESS_KEY"

SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1000,
    "kb": 1000,
    "kib": 1024,
    "m": 1000**2,
    "mb": 1000**2,
    "mib": 1024**2,
    "g": 1000**3,
    "gb": 1000**3,
    "gib": 1024**3,
}

SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*([a-zA-Z]*)\s*$")


def load_from_json(config_path: str) -> dict[str, Any]:
    """Load option defaults from a JSON file.

    Args:
        config_path: Path to the config file.

    Returns:
        Dictionary of options found in the file.

    Raises:
        ConfigError: If the file doesn't exist, contains invalid JSON,
                    is not a JSON object or has unknown options.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a JSON object: {config_path}")

    unknown = sorted(set(data) - KNOWN_OPTIONS)
    if unknown:
        raise ConfigError(f"Unknown option(s) in config file: {', '.join(unknown)}")

    return data


def merge_options(
    file_options: Mapping[str, Any],
    overrides: Mapping[str, Any],
) -> dict[str, Any]:
    """Overlay explicit options on file options, ignoring unset (None) values."""
    merged = dict(file_options)
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return merged


def resolve_credentials(
    explicit_id: Optional[str],
    explicit_secret: Optional[str],
    environ: Mapping[str, str],
) -> Credentials:
    """Resolve static credentials from explicit values or the environment.

    Explicit values win; otherwise AWS_ACCESS_KEY_ID and
    AWS_SECRET_ACCESS_KEY are read from environ.

    Raises:
        ConfigError: If either value cannot be found.
    """
    access_key = explicit_id or environ.get(ACCESS_KEY_VAR)
    if not access_key:
        raise ConfigError(f"No access key given and {ACCESS_KEY_VAR} is not set")

    secret_key = explicit_secret or environ.get(SECRET_KEY_VAR)
    if not secret_key:
        raise ConfigError(f"No secret key given and {SECRET_KEY_VAR} is not set")

    return Credentials(access_key=access_key, secret_key=secret_key)


def parse_size(value: Any) -> int:
    """Parse a byte size such as 1048576, "64MiB" or "5mb".

    Raises:
        ConfigError: If the value is not a recognized size.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        return value

    match = SIZE_PATTERN.match(str(value))
    if not match:
        raise ConfigError(f"Invalid size: {value!r}")

    number, unit = match.groups()
    multiplier = SIZE_UNITS.get(unit.lower())
    if multiplier is None:
        raise ConfigError(f"Unknown size unit in {value!r}")
    return int(number) * multiplier


def parse_signing_version(value: Any) -> SigningVersion:
    """Map "v2"/"v4" (or a botocore signer name) to a SigningVersion."""
    if isinstance(value, SigningVersion):
        return value

    normalized = str(value).strip().lower()
    if normalized in ("v4", "4", "s3v4"):
        return SigningVersion.V4
    if normalized in ("v2", "2", "s3"):
        return SigningVersion.V2
    raise ConfigError(f"Unknown signing version: {value!r}")


def build_transfer_settings(part_size: Any, concurrency: Any) -> TransferSettings:
    """Validate tuning parameters.

    Raises:
        ConfigError: If part size or concurrency is not a positive integer.
    """
    size = parse_size(part_size)
    if size <= 0:
        raise ConfigError(f"Part size must be positive, got {size}")

    try:
        workers = int(concurrency)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Concurrency must be an integer, got {concurrency!r}") from e
    if workers <= 0:
        raise ConfigError(f"Concurrency must be positive, got {workers}")

    return TransferSettings(part_size=size, concurrency=workers)


def build_store_config(
    options: Mapping[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> StoreConfig:
    """Build the immutable store configuration from merged options.

    Args:
        options: Merged option values (see KNOWN_OPTIONS).
        environ: Environment used for credential fallback (defaults to os.environ).

    Raises:
        ConfigError: If credentials are missing or an option is invalid.
    """
    if environ is None:
        environ = os.environ

    creds = resolve_credentials(
        options.get("access_key"),
        options.get("secret_key"),
        environ,
    )

    return StoreConfig(
        access_key=creds.access_key,
        secret_key=creds.secret_key,
        region=options.get("region") or DEFAULT_REGION,
        endpoint=options.get("endpoint") or None,
        disable_ssl=bool(options.get("disable_ssl", False)),
        disable_checksum=bool(options.get("disable_checksum", False)),
        path_style=bool(options.get("path_style", False)),
        signing_version=parse_signing_version(options.get("signing_version", "v4")),
    )
