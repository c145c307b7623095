"""Class for handling environment configuration and defaults."""

from os import environ

from helloworld.lib.util import class_logger


class EnvBase:
    """Wraps environment configuration. Optionally, accepts dependencies."""

    class Error(Exception):
        pass

    def __init__(self):
        self.logger = class_logger(__name__, self.__class__.__name__)

    @classmethod
    def default(cls, envvar, default):
        return environ.get(envvar, default)

    @classmethod
    def boolean(cls, envvar, default):
        default = 'Yes' if default else ''
        value = cls.default(envvar, default).strip().lower()
        return value not in ('', '0', 'false', 'no')

    @classmethod
    def required(cls, envvar):
        value = environ.get(envvar)
        if value is None:
            raise cls.Error(f'required envvar {envvar} not set')
        return value

    @classmethod
    def integer(cls, envvar, default):
        value = environ.get(envvar)
        if value is None:
            return default
        try:
            return int(value)
        except Exception:
            raise cls.Error(f'cannot convert envvar {envvar} value {value} to an integer')

    @classmethod
    def custom(cls, envvar, default, parse):
        value = environ.get(envvar)
        if value is None:
            return default
        try:
            return parse(value)
        except Exception as e:
            raise cls.Error(f'cannot parse envvar {envvar} value {value}') from e


class Env(EnvBase):
    """Configuration of the HelloWorld overlay services."""

    TOPIC = 'tm_helloworld'
    SERVICE = 'ls_helloworld'

    def __init__(self):
        super().__init__()
        self.db_engine = self.default('DB_ENGINE', 'leveldb')
        self.db_dir = self.default('DB_DIRECTORY', '.')
        self.db_name = self.default('DB_NAME', 'helloworld')
        self.storage_timeout = self.custom('STORAGE_TIMEOUT', 10.0, float)
        if self.storage_timeout <= 0:
            raise self.Error('STORAGE_TIMEOUT must be positive')
        self.default_lookup_limit = self.integer('DEFAULT_LOOKUP_LIMIT', 50)
        self.max_lookup_limit = self.integer('MAX_LOOKUP_LIMIT', 1000)
        if self.default_lookup_limit < 0 or self.max_lookup_limit < 0:
            raise self.Error('lookup limits must be non-negative')
        self.rest_host = self.default('REST_HOST', '0.0.0.0')
        self.rest_port = self.integer('REST_PORT', 8080)
        self.log_level = self.default('LOG_LEVEL', 'info').upper()
        self.prometheus_enabled = self.boolean('PROMETHEUS_ENABLED', True)
        origins = self.default('ALLOWED_ORIGINS', '')
        self.allowed_origins = [o.strip() for o in origins.split(',') if o.strip()]
