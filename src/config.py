"""Broker configuration management.

Configuration is loaded from a single YAML file:
- bosh: Director URL and credentials
- service_adapter: Path to the adapter executable
- service_deployment: Pinned releases and stemcells passed to the adapter
- credhub: Secret store access (presence enables secure manifests)
- features: Feature switches threaded into the deployer at construction
- service_catalog: Service offering and plans (incl. lifecycle errands)

Resolution order for the config path:
1. Explicit path argument
2. $ODB_BROKER_CONFIG environment variable
3. /var/vcap/jobs/broker/config/broker.yml (BOSH job layout)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_CONFIG_PATH = Path('/var/vcap/jobs/broker/config/broker.yml')


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class BoshSettings:
    """Director access settings."""
    url: str
    username: str = ''
    password: str = ''
    root_ca_cert: Optional[Path] = None
    disable_ssl_cert_verification: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'BoshSettings':
        data = data or {}
        if not data.get('url'):
            raise ConfigError("bosh.url can't be empty")
        basic = (data.get('authentication') or {}).get('basic') or {}
        ca_cert = data.get('root_ca_cert')
        return cls(
            url=data['url'],
            username=basic.get('username', ''),
            password=basic.get('password', ''),
            root_ca_cert=Path(ca_cert) if ca_cert else None,
            disable_ssl_cert_verification=data.get('disable_ssl_cert_verification', False),
        )


@dataclass
class ServiceAdapterSettings:
    """Service adapter executable settings."""
    path: Path
    timeout: int = 600

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ServiceAdapterSettings':
        data = data or {}
        if not data.get('path'):
            raise ConfigError("service_adapter.path can't be empty")
        return cls(path=Path(data['path']), timeout=data.get('timeout', 600))


@dataclass
class ServiceDeployment:
    """Releases and stemcells every generated manifest must use."""
    releases: list[dict] = field(default_factory=list)
    stemcells: list[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ServiceDeployment':
        data = data or {}
        stemcells = data.get('stemcells') or []
        # Single-stemcell form
        if not stemcells and data.get('stemcell'):
            stemcells = [data['stemcell']]
        deployment = cls(releases=data.get('releases') or [], stemcells=stemcells)
        deployment.validate()
        return deployment

    def validate(self) -> None:
        """Reject floating versions; pending-change detection needs exact pins."""
        for item in self.releases + self.stemcells:
            if str(item.get('version', '')).endswith('latest'):
                raise ConfigError(
                    "You must configure the exact release and stemcell versions in "
                    "service_deployment. Exact versions are required to detect pending "
                    f"changes; '{item.get('version')}' is not supported."
                )


@dataclass
class CredHubSettings:
    """Secret store settings."""
    url: str
    uaa_url: str
    client_id: str
    client_secret: str
    disable_ssl_cert_verification: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['CredHubSettings']:
        if not data:
            return None
        missing = [k for k in ('url', 'uaa_url', 'client_id', 'client_secret') if not data.get(k)]
        if missing:
            raise ConfigError(f"credhub config missing: {', '.join(missing)}")
        return cls(
            url=data['url'],
            uaa_url=data['uaa_url'],
            client_id=data['client_id'],
            client_secret=data['client_secret'],
            disable_ssl_cert_verification=data.get('disable_ssl_cert_verification', False),
        )


@dataclass
class Features:
    """Feature switches.

    Attributes:
        enable_optimised_upgrades: Let upgrades skip unchanged, healthy instances
        disable_bosh_configs: Do not read or write per-deployment director configs
    """
    enable_optimised_upgrades: bool = False
    disable_bosh_configs: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'Features':
        if not data:
            return cls()
        return cls(
            enable_optimised_upgrades=bool(data.get('enable_optimised_upgrades', False)),
            disable_bosh_configs=bool(data.get('disable_bosh_configs', False)),
        )


@dataclass
class Errand:
    """A lifecycle errand, optionally limited to some instances."""
    name: str
    instances: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> 'Errand':
        # Bare string form: "health-check"
        if isinstance(data, str):
            return cls(name=data)
        return cls(name=data['name'], instances=data.get('instances') or [])


@dataclass
class LifecycleErrands:
    """Ordered errands run after deploy and before delete."""
    post_deploy: list[Errand] = field(default_factory=list)
    pre_delete: list[Errand] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'LifecycleErrands':
        if not data:
            return cls()
        return cls(
            post_deploy=[Errand.from_dict(e) for e in _as_list(data.get('post_deploy'))],
            pre_delete=[Errand.from_dict(e) for e in _as_list(data.get('pre_delete'))],
        )


@dataclass
class Plan:
    """A catalog plan as seen by the deployment core.

    Attributes:
        plan_id: Catalog plan ID
        name: Plan name
        properties: Plan properties passed to the adapter
        instance_groups: Instance group sizing passed to the adapter
        update: Optional update block passed to the adapter
        lifecycle_errands: Post-deploy and pre-delete errands
    """
    plan_id: str
    name: str = ''
    properties: dict = field(default_factory=dict)
    instance_groups: list[dict] = field(default_factory=list)
    update: Optional[dict] = None
    lifecycle_errands: LifecycleErrands = field(default_factory=LifecycleErrands)

    def post_deploy_errands(self) -> list[Errand]:
        return self.lifecycle_errands.post_deploy

    def pre_delete_errands(self) -> list[Errand]:
        return self.lifecycle_errands.pre_delete

    def adapter_plan(self, global_properties: Optional[dict] = None) -> dict:
        """Render the plan in the shape the service adapter expects.

        Plan properties override global properties.
        """
        properties = dict(global_properties or {})
        properties.update(self.properties)
        d: dict[str, Any] = {
            'instance_groups': self.instance_groups,
            'properties': properties,
            'lifecycle_errands': {
                'post_deploy': [{'name': e.name, 'instances': e.instances}
                                for e in self.lifecycle_errands.post_deploy],
                'pre_delete': [{'name': e.name, 'instances': e.instances}
                               for e in self.lifecycle_errands.pre_delete],
            },
        }
        if self.update is not None:
            d['update'] = self.update
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'Plan':
        if not data.get('plan_id'):
            raise ConfigError("service_catalog.plans[].plan_id can't be empty")
        return cls(
            plan_id=data['plan_id'],
            name=data.get('name', ''),
            properties=data.get('properties') or {},
            instance_groups=data.get('instance_groups') or [],
            update=data.get('update'),
            lifecycle_errands=LifecycleErrands.from_dict(data.get('lifecycle_errands')),
        )


@dataclass
class ServiceOffering:
    """The service catalog entry served by this broker."""
    service_id: str
    name: str = ''
    plans: list[Plan] = field(default_factory=list)
    global_properties: dict = field(default_factory=dict)

    def find_plan(self, plan_id: str) -> Optional[Plan]:
        for plan in self.plans:
            if plan.plan_id == plan_id:
                return plan
        return None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ServiceOffering':
        data = data or {}
        if not data.get('id'):
            raise ConfigError("service_catalog.id can't be empty")

        plans = [Plan.from_dict(p) for p in data.get('plans') or []]
        seen: set[str] = set()
        for plan in plans:
            if plan.plan_id in seen:
                raise ConfigError(f"duplicate plan_id '{plan.plan_id}' in service_catalog")
            seen.add(plan.plan_id)

        return cls(
            service_id=data['id'],
            name=data.get('service_name', ''),
            plans=plans,
            global_properties=data.get('global_properties') or {},
        )


@dataclass
class BrokerConfig:
    """Complete broker configuration relevant to deployment orchestration."""
    bosh: BoshSettings
    service_adapter: ServiceAdapterSettings
    service_catalog: ServiceOffering
    service_deployment: ServiceDeployment = field(default_factory=ServiceDeployment)
    credhub: Optional[CredHubSettings] = None
    features: Features = field(default_factory=Features)

    @property
    def secure_manifests_enabled(self) -> bool:
        return self.credhub is not None

    @classmethod
    def from_dict(cls, data: dict) -> 'BrokerConfig':
        """Build and validate config from a parsed YAML mapping.

        Raises:
            ConfigError: On missing or invalid settings
        """
        return cls(
            bosh=BoshSettings.from_dict(data.get('bosh')),
            service_adapter=ServiceAdapterSettings.from_dict(data.get('service_adapter')),
            service_catalog=ServiceOffering.from_dict(data.get('service_catalog')),
            service_deployment=ServiceDeployment.from_dict(data.get('service_deployment')),
            credhub=CredHubSettings.from_dict(data.get('credhub')),
            features=Features.from_dict(data.get('features')),
        )


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return data


def get_config_path(path: Optional[Path] = None) -> Path:
    """Resolve the broker config file path."""
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist")
        return path

    if env_path := os.environ.get('ODB_BROKER_CONFIG'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"ODB_BROKER_CONFIG={env_path} does not exist")

    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH

    raise ConfigError(
        "broker config not found. "
        "Pass a path or set ODB_BROKER_CONFIG."
    )


def load_broker_config(path: Optional[Path] = None) -> BrokerConfig:
    """Load and validate the broker config."""
    return BrokerConfig.from_dict(_parse_yaml(get_config_path(path)))
