"""
Gateway environment and credential resolution.

Built once when the application starts and injected into the gateway client.
Nothing else in the broker decides which Gateway a request goes to.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional
import logging

from services.common.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    SANDBOX = 'sandbox'
    PRODUCTION = 'production'

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional['Environment']:
        if value is None or value == '':
            return None
        normalized = str(value).strip().lower()
        aliases = {'dev': cls.SANDBOX, 'development': cls.SANDBOX, 'prod': cls.PRODUCTION}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(f"Unknown gateway environment: {value}")


@dataclass(frozen=True)
class ResolvedEnvironment:
    environment: Environment
    base_url: str
    api_key: Optional[str]
    simulation_allowed: bool

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)

    def describe(self) -> Dict[str, Any]:
        """Loggable view; never includes the key"""
        return {
            'environment': self.environment.value,
            'base_url': self.base_url,
            'credential_configured': self.has_credential,
            'simulation_allowed': self.simulation_allowed,
        }


class GatewayEnvironmentResolver:
    """
    Resolve the Gateway environment for one call.

    Precedence: the environment a campaign was created in, then the force-sandbox
    flag, then an explicit per-call override, then the deployment signal, then
    the configured default.
    """

    def __init__(self, base_urls: Mapping[Environment, str], api_keys: Mapping[Environment, Optional[str]],
                 default_environment: Environment = Environment.SANDBOX,
                 deployment_environment: Optional[Environment] = None,
                 force_sandbox: bool = True, allow_simulation: bool = False):
        self.base_urls = dict(base_urls)
        self.api_keys = dict(api_keys)
        self.default_environment = default_environment
        self.deployment_environment = deployment_environment
        self.force_sandbox = force_sandbox
        self.allow_simulation = allow_simulation

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'GatewayEnvironmentResolver':
        deployment = config.get('DEPLOYMENT_ENV')
        deployment_environment = Environment.PRODUCTION if deployment and \
            str(deployment).strip().lower() in ('production', 'prod') else None
        return cls(
            base_urls={
                Environment.SANDBOX: config['GATEWAY_SANDBOX_API_URL'],
                Environment.PRODUCTION: config['GATEWAY_PRODUCTION_API_URL'],
            },
            api_keys={
                Environment.SANDBOX: config.get('GATEWAY_SANDBOX_API_KEY'),
                Environment.PRODUCTION: config.get('GATEWAY_PRODUCTION_API_KEY'),
            },
            default_environment=Environment.parse(config.get('GATEWAY_DEFAULT_ENVIRONMENT')) or Environment.SANDBOX,
            deployment_environment=deployment_environment,
            force_sandbox=bool(config.get('GATEWAY_FORCE_SANDBOX', True)),
            allow_simulation=bool(config.get('GATEWAY_ALLOW_SIMULATION', False)),
        )

    def select(self, override: Optional[str] = None, pinned: Optional[str] = None) -> Environment:
        pinned_env = Environment.parse(pinned)
        if pinned_env is not None:
            return pinned_env
        if self.force_sandbox:
            if override and Environment.parse(override) == Environment.PRODUCTION:
                logger.warning("Production override ignored: gateway is forced to sandbox")
            return Environment.SANDBOX
        override_env = Environment.parse(override)
        if override_env is not None:
            return override_env
        if self.deployment_environment is not None:
            return self.deployment_environment
        return self.default_environment

    def resolve(self, override: Optional[str] = None, pinned: Optional[str] = None) -> ResolvedEnvironment:
        environment = self.select(override=override, pinned=pinned)
        base_url = self.base_urls.get(environment)
        if not base_url:
            raise ConfigurationError(f"No gateway base URL configured for {environment.value}")
        return ResolvedEnvironment(
            environment=environment,
            base_url=base_url.rstrip('/'),
            api_key=self.api_keys.get(environment) or None,
            simulation_allowed=self.allow_simulation and environment != Environment.PRODUCTION,
        )
