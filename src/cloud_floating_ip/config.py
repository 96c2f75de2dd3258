import os
import ipaddress
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

# Load environment variables from a .env file into the runtime environment
load_dotenv()

DEFAULT_CONFIG_FILE = '/etc/cloud-floating-ip.yaml'
ENV_PREFIX = 'CFI_'
SUPPORTED_HOSTERS = ('aws', 'gce')


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for one floating IP invocation.

    Values are layered from a YAML config file, CFI_* environment variables
    (optionally provided through a .env file) and command-line flags, in
    increasing order of precedence. See load_config().

    Attributes:
        Floating IP:
            - ip: The address to route to this instance. Only mandatory option.
            - hoster: Hosting provider ("aws", "gce") or "" to auto-detect.
            - dry_run: Report intended route changes without applying them.
            - quiet: Only display warnings and errors.

        Instance identity (guessed from instance metadata when omitted):
            - instance: Instance id (AWS) or name (GCE).
            - project: GCE project id.
            - region: AWS region.
            - zone: GCE zone.

        Endpoint selection (only needed for multi-interface instances):
            - interface: Network interface id (AWS ENI) or name (GCE nic0).
            - subnet: Subnet id (AWS) or subnetwork name/link (GCE).
            - target_ip: Private IP carried by the wanted interface.

        Route tables:
            - ignore_main_table: Skip tables associated as VPC main table.
            - route_tables: Only consider these table ids (empty: all).

        Credentials:
            - access_key / secret_key: AWS static keys (default chain otherwise).
            - gcp_credentials: Service account key file for GCE.
            - use_workload_identity: Force Application Default Credentials.

        Logging:
            - logger_name, log_level, log_file, log_max_bytes,
              log_backup_count, enable_structured_console.
    """
    ip: str = ''
    hoster: str = ''
    instance: str = ''
    dry_run: bool = False
    quiet: bool = False
    project: str = ''
    region: str = ''
    zone: str = ''
    ignore_main_table: bool = False
    interface: str = ''
    subnet: str = ''
    target_ip: str = ''
    route_tables: tuple = ()
    access_key: str = ''
    secret_key: str = ''

    gcp_credentials: Optional[str] = None
    use_workload_identity: bool = False

    logger_name: str = 'CLOUD_FLOATING_IP'
    log_level: str = 'INFO'
    log_file: Optional[str] = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5
    enable_structured_console: bool = False

    @property
    def address(self):
        """The floating IP as an ipaddress object (prefix suffix stripped)."""
        return ipaddress.ip_address(self.ip.split('/')[0].strip())

    @property
    def destination(self) -> str:
        """The floating IP as a single-address CIDR (a.b.c.d/32 or x::y/128)."""
        addr = self.address
        return f"{addr}/{addr.max_prefixlen}"


# Option name (as used on the command line and in the config file) -> field.
OPTION_FIELDS = {
    'ip': 'ip',
    'hoster': 'hoster',
    'instance': 'instance',
    'dry-run': 'dry_run',
    'quiet': 'quiet',
    'project': 'project',
    'region': 'region',
    'zone': 'zone',
    'ignore-main-table': 'ignore_main_table',
    'interface': 'interface',
    'subnet': 'subnet',
    'target-ip': 'target_ip',
    'route-tables': 'route_tables',
    'table': 'route_tables',
    'access-key': 'access_key',
    'aws-access-key-id': 'access_key',
    'secret-key': 'secret_key',
    'aws-secret-key': 'secret_key',
    'gcp-credentials': 'gcp_credentials',
    'use-workload-identity': 'use_workload_identity',
    'log-level': 'log_level',
    'log-file': 'log_file',
    'log-max-bytes': 'log_max_bytes',
    'log-backup-count': 'log_backup_count',
    'structured-console': 'enable_structured_console',
}

# Environment variables read without the CFI_ prefix, for parity with
# the tooling conventions of the cloud SDKs.
PLAIN_ENV_FIELDS = {
    'GOOGLE_APPLICATION_CREDENTIALS': 'gcp_credentials',
    'LOGGER_NAME': 'logger_name',
    'LOG_LEVEL': 'log_level',
}

_TRUE_VALUES = ('true', '1', 'yes', 'on')


def _coerce(field_name: str, value: Any) -> Any:
    """Convert a raw (string, list, bool) value to the type of the given field."""
    default = Config.__dataclass_fields__[field_name].default
    if value is None:
        return default
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES
    if isinstance(default, tuple):
        if isinstance(value, str):
            items = value.split(',')
        else:
            items = []
            for item in value:
                items.extend(str(item).split(','))
        return tuple(item.strip() for item in items if item and item.strip())
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as e:
            raise ConfigurationError(f"{field_name} must be numeric, got '{value}'") from e
    return str(value).strip()


def _from_mapping(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate option-named values into field-named, typed values."""
    out: Dict[str, Any] = {}
    for key, value in values.items():
        field_name = OPTION_FIELDS.get(key) or OPTION_FIELDS.get(key.replace('_', '-'))
        if field_name is None or value is None:
            continue
        out[field_name] = _coerce(field_name, value)
    return out


def _from_environ(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for env_name, field_name in PLAIN_ENV_FIELDS.items():
        if environ.get(env_name):
            out[field_name] = _coerce(field_name, environ[env_name])
    for option, field_name in OPTION_FIELDS.items():
        env_name = ENV_PREFIX + option.replace('-', '_').upper()
        if env_name in environ and environ[env_name] != '':
            out[field_name] = _coerce(field_name, environ[env_name])
    return out


def read_config_file(path: str) -> Dict[str, Any]:
    """
    Read a YAML config file whose keys are the command-line option names.

    Returns an empty mapping when the file is empty. Raises
    ConfigurationError when the file cannot be read or parsed.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def load_config(cli_values: Optional[Mapping[str, Any]] = None,
                environ: Optional[Mapping[str, str]] = None,
                config_file: Optional[str] = None) -> Config:
    """
    Build a Config from the config file, the environment and CLI values.

    Args:
        cli_values: Option-named values from the command line. None values
            are treated as "not supplied" and do not override lower layers.
        environ: Environment mapping, defaults to os.environ.
        config_file: Explicit YAML file. When omitted, DEFAULT_CONFIG_FILE is
            read if it exists.

    Returns:
        Config: The merged, immutable configuration (not yet validated).
    """
    environ = os.environ if environ is None else environ
    merged: Dict[str, Any] = {}

    path = config_file or environ.get(ENV_PREFIX + 'CONFIG')
    if path:
        merged.update(_from_mapping(read_config_file(path)))
    elif os.path.isfile(DEFAULT_CONFIG_FILE):
        merged.update(_from_mapping(read_config_file(DEFAULT_CONFIG_FILE)))

    merged.update(_from_environ(environ))
    merged.update(_from_mapping(cli_values or {}))

    known = {f.name for f in fields(Config)}
    return Config(**{k: v for k, v in merged.items() if k in known})


def validate_configuration(cfg: Config) -> list[str]:
    """
    Validates the loaded configuration for completeness and correctness.

    This includes:
    - Presence of the floating IP, which must be a single address.
    - Known hoster name (or empty for auto-detection).
    - Well-formed target IP.
    - AWS static keys supplied as a pair.
    - GCP credentials file existence and readability.
    - Log level name.

    Args:
        cfg (Config): Loaded configuration object.

    Returns:
        list[str]: Human-readable error strings. Empty list means validation passed.
    """
    errors: list[str] = []

    if not cfg.ip:
        errors.append("No IP provided")
    else:
        try:
            network = ipaddress.ip_network(cfg.ip.strip(), strict=False)
            if network.num_addresses != 1:
                errors.append(f"IP must be a single address, not a range: {cfg.ip}")
        except ValueError as e:
            errors.append(f"Invalid IP format: {e}")

    if cfg.hoster and cfg.hoster not in SUPPORTED_HOSTERS:
        errors.append(f"Unsupported hosting provider: '{cfg.hoster}'")

    if cfg.target_ip:
        try:
            ipaddress.ip_address(cfg.target_ip)
        except ValueError as e:
            errors.append(f"Invalid target IP format: {e}")

    if bool(cfg.access_key) != bool(cfg.secret_key):
        errors.append("AWS access key and secret key must be provided together")

    if logging.getLevelName(cfg.log_level.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL):
        errors.append(f"Unknown log level: {cfg.log_level}")

    creds = cfg.gcp_credentials
    if creds and not cfg.use_workload_identity:
        if not os.path.isfile(creds):
            errors.append(f"GCP credentials file not found: {creds}")
        elif not os.access(creds, os.R_OK):
            errors.append(f"GCP credentials file not readable: {creds}")

    return errors
