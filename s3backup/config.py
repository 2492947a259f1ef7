import os
import tempfile
from datetime import timedelta

from s3backup.models import BackupConfig, RetryPolicy


class ConfigError(Exception):
    """Raised when the configuration is incomplete or malformed."""
    pass


def _env_bool(name, default='false'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    """Base configuration"""

    # AWS
    ACCESS_KEY = os.environ.get('S3BACKUP_ACCESS_KEY') or os.environ.get('AWS_ACCESS_KEY_ID')
    SECRET_KEY = os.environ.get('S3BACKUP_SECRET_KEY') or os.environ.get('AWS_SECRET_ACCESS_KEY')
    BUCKET = os.environ.get('S3BACKUP_BUCKET')
    REGION = os.environ.get('S3BACKUP_REGION') or 'us-east-1'

    # What to back up and where
    S3_DIR = os.environ.get('S3BACKUP_S3_DIR')
    LOCAL_DIR = os.environ.get('S3BACKUP_LOCAL_DIR')

    # Scheduler
    INTERVAL_HOURS = os.environ.get('S3BACKUP_INTERVAL_HOURS') or '12'
    TIMEZONE = os.environ.get('S3BACKUP_TIMEZONE') or 'UTC'

    # Retention: twice a day, ~32 days
    MAX_BACKUPS = os.environ.get('S3BACKUP_MAX_BACKUPS') or '64'
    LIST_MAX_KEYS = os.environ.get('S3BACKUP_LIST_MAX_KEYS') or '1024'
    STRICT_LISTING = _env_bool('S3BACKUP_STRICT_LISTING')

    # Upload retries
    RETRY_ATTEMPTS = os.environ.get('S3BACKUP_RETRY_ATTEMPTS') or '2'
    RETRY_DELAY = os.environ.get('S3BACKUP_RETRY_DELAY') or '0.1'
    RETRY_BACKOFF = os.environ.get('S3BACKUP_RETRY_BACKOFF') or 'fixed'

    # Temp/Logs
    TEMP_DIR = os.environ.get('S3BACKUP_TEMP_DIR') or tempfile.gettempdir()
    LOG_DIR = os.environ.get('S3BACKUP_LOG_DIR')
    DEBUG = _env_bool('S3BACKUP_DEBUG')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = _env_bool('S3BACKUP_DEBUG')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def _number(config_cls, name, cast):
    value = getattr(config_cls, name)
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {value!r}")


def load_backup_config(config_cls=None) -> BackupConfig:
    """
    Build a BackupConfig from a configuration class.

    Args:
        config_cls: Configuration class (default: ProductionConfig)

    Returns:
        BackupConfig, not yet validated against the filesystem or S3

    Raises:
        ConfigError: If required settings are missing or malformed
    """
    config_cls = config_cls or config['default']

    required = ['ACCESS_KEY', 'SECRET_KEY', 'BUCKET', 'S3_DIR', 'LOCAL_DIR']
    missing = [name for name in required if not getattr(config_cls, name, None)]
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    try:
        retry_policy = RetryPolicy(
            max_attempts=_number(config_cls, 'RETRY_ATTEMPTS', int),
            delay=_number(config_cls, 'RETRY_DELAY', float),
            backoff=config_cls.RETRY_BACKOFF
        )
    except ValueError as e:
        raise ConfigError(f"Invalid retry policy: {e}")

    interval_hours = _number(config_cls, 'INTERVAL_HOURS', float)
    if interval_hours <= 0:
        raise ConfigError(f"INTERVAL_HOURS must be positive, got {interval_hours}")

    max_backups = _number(config_cls, 'MAX_BACKUPS', int)
    if max_backups < 0:
        raise ConfigError(f"MAX_BACKUPS must not be negative, got {max_backups}")

    list_max_keys = _number(config_cls, 'LIST_MAX_KEYS', int)
    if list_max_keys < 1:
        raise ConfigError(f"LIST_MAX_KEYS must be at least 1, got {list_max_keys}")

    return BackupConfig(
        access_key=config_cls.ACCESS_KEY,
        secret_key=config_cls.SECRET_KEY,
        bucket_name=config_cls.BUCKET,
        s3_dir=config_cls.S3_DIR,
        local_dir=config_cls.LOCAL_DIR,
        region=config_cls.REGION,
        max_backups_to_keep=max_backups,
        list_max_keys=list_max_keys,
        strict_listing=bool(config_cls.STRICT_LISTING),
        retry_policy=retry_policy,
        backup_interval=timedelta(hours=interval_hours),
        temp_dir=config_cls.TEMP_DIR
    )
