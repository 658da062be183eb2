"""Build deployment components from broker configuration.

Feature switches and secure-manifest support are decided here, once, and
threaded into the Deployer as constructor arguments.
"""

import logging
from typing import Optional

from boshdirector.client import BoshDirectorClient
from config import BrokerConfig
from deployer.deployer import Deployer
from deployer.generator import ServiceAdapterManifestGenerator
from deployer.pre_upgrade import PreUpgrade
from manifest_secrets import CredHubBulkSetter, ODBSecrets

logger = logging.getLogger(__name__)


def build_bosh_client(config: BrokerConfig) -> BoshDirectorClient:
    bosh = config.bosh
    return BoshDirectorClient(
        url=bosh.url,
        username=bosh.username,
        password=bosh.password,
        ca_cert=bosh.root_ca_cert,
        insecure=bosh.disable_ssl_cert_verification,
    )


def build_manifest_generator(config: BrokerConfig) -> ServiceAdapterManifestGenerator:
    return ServiceAdapterManifestGenerator(
        adapter_path=config.service_adapter.path,
        service_offering=config.service_catalog,
        service_deployment=config.service_deployment,
        timeout=config.service_adapter.timeout,
    )


def build_bulk_setter(config: BrokerConfig) -> Optional[CredHubBulkSetter]:
    """CredHub writer, or None when secure manifests are disabled."""
    if not config.secure_manifests_enabled:
        return None

    credhub = config.credhub
    return CredHubBulkSetter(
        url=credhub.url,
        uaa_url=credhub.uaa_url,
        client_id=credhub.client_id,
        client_secret=credhub.client_secret,
        insecure=credhub.disable_ssl_cert_verification,
    )


def build_pre_upgrade(
    config: BrokerConfig,
    bosh_client: BoshDirectorClient,
    manifest_generator: ServiceAdapterManifestGenerator,
) -> PreUpgrade:
    return PreUpgrade(
        manifest_generator=manifest_generator,
        bosh_client=bosh_client,
        enable_optimised_upgrades=config.features.enable_optimised_upgrades,
    )


def build_deployer(config: BrokerConfig) -> Deployer:
    """Wire a Deployer with production collaborators."""
    bosh_client = build_bosh_client(config)
    generator = build_manifest_generator(config)
    bulk_setter = build_bulk_setter(config)

    logger.info(
        f"Deployer for service {config.service_catalog.service_id}: "
        f"secure manifests {'enabled' if bulk_setter else 'disabled'}, "
        f"optimised upgrades {'enabled' if config.features.enable_optimised_upgrades else 'disabled'}, "
        f"bosh configs {'disabled' if config.features.disable_bosh_configs else 'enabled'}"
    )

    return Deployer(
        bosh_client=bosh_client,
        manifest_generator=generator,
        odb_secrets=ODBSecrets(config.service_catalog.service_id),
        bulk_setter=bulk_setter,
        pre_upgrade=build_pre_upgrade(config, bosh_client, generator),
        service_offering=config.service_catalog,
        disable_bosh_configs=config.features.disable_bosh_configs,
    )
