"""Shared pytest fixtures for deployment core tests."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from boshdirector.tasks import BoshTasks
from config import Errand, LifecycleErrands, Plan, ServiceOffering
from deployer.generator import GeneratedManifest

DEPLOYMENT_NAME = 'service-instance_a1b2c3'

DEPLOYED_MANIFEST = b"""
name: service-instance_a1b2c3
releases:
- name: redis
  version: "1.2.3"
stemcells:
- alias: default
  os: ubuntu-jammy
  version: "1.100"
instance_groups:
- name: redis-server
  instances: 1
  jobs:
  - name: redis
    release: redis
  update:
    canaries: 1
update:
  canaries: 1
  max_in_flight: 1
"""


@pytest.fixture
def deployed_manifest():
    """Manifest currently stored by the director."""
    return DEPLOYED_MANIFEST


@pytest.fixture
def plan():
    """Plan without lifecycle errands."""
    return Plan(plan_id='small', name='small', instance_groups=[{'name': 'redis-server', 'instances': 1}])


@pytest.fixture
def plan_with_errand():
    """Plan with one post-deploy errand."""
    return Plan(
        plan_id='small-errand',
        name='small-errand',
        lifecycle_errands=LifecycleErrands(post_deploy=[Errand(name='health-check')]),
    )


@pytest.fixture
def service_offering(plan, plan_with_errand):
    """Catalog with both plans."""
    return ServiceOffering(service_id='redis-offering', name='redis', plans=[plan, plan_with_errand])


@pytest.fixture
def bosh_client(deployed_manifest):
    """Director client mock with an existing, idle deployment."""
    client = MagicMock()
    client.get_tasks.return_value = BoshTasks()
    client.get_deployment.return_value = (deployed_manifest, True)
    client.get_configs.return_value = []
    client.deploy.return_value = 42
    return client


@pytest.fixture
def manifest_generator(deployed_manifest):
    """Generator mock that reproduces the deployed manifest."""
    generator = MagicMock()
    generator.generate_manifest.return_value = GeneratedManifest(manifest=deployed_manifest.decode())
    return generator


@pytest.fixture
def broker_config_file(tmp_path):
    """Write a complete broker config and return its path."""
    path = tmp_path / 'broker.yml'
    path.write_text("""
bosh:
  url: https://10.0.0.6:25555
  root_ca_cert: /var/vcap/jobs/broker/config/bosh.crt
  authentication:
    basic:
      username: admin
      password: secret
service_adapter:
  path: /var/vcap/packages/adapter/bin/service-adapter
service_deployment:
  releases:
  - name: redis
    version: "1.2.3"
    jobs: [redis]
  stemcells:
  - os: ubuntu-jammy
    version: "1.100"
credhub:
  url: https://credhub:8844
  uaa_url: https://uaa:8443
  client_id: broker
  client_secret: broker-secret
features:
  enable_optimised_upgrades: true
service_catalog:
  id: redis-offering
  service_name: redis
  global_properties:
    persistence: true
  plans:
  - plan_id: small
    name: small
    properties:
      persistence: false
    instance_groups:
    - name: redis-server
      instances: 1
    lifecycle_errands:
      post_deploy:
      - name: health-check
      pre_delete: cleanup
""")
    return path
