"""Deployer: create, update, upgrade and recreate one BOSH deployment.

Each operation first checks that no director task is running for the
deployment. Create, update and upgrade then generate a manifest through the
service adapter and submit exactly one deploy. The in-progress check is a
fail-fast guard, not a lock: the director itself only runs one deploy per
deployment at a time.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from boshdirector.tasks import BoshConfig, BoshTasks
from common import Log
from config import ServiceOffering
from deployer.errors import (
    DeployError,
    DeploymentNotFoundError,
    OperationAlreadyCompletedError,
    PendingChangesNotAppliedError,
    ServiceError,
    TaskInProgressError,
)
from deployer.generator import GenerateManifestProperties, ManifestGenerator, PlanNotFoundError
from deployer.pre_upgrade import PreUpgrade, TaskHistoryClient
from manifest import manifests_are_the_same
from manifest_secrets import BulkSetter, ODBSecrets

logger = logging.getLogger(__name__)

# Operation names
CREATE = 'create'
UPDATE = 'update'
UPGRADE = 'upgrade'
RECREATE = 'recreate'


class BoshClient(TaskHistoryClient, Protocol):
    """Director calls used by the deployer and its pre-upgrade check."""

    def deploy(self, manifest: bytes, context_id: str, log: Optional[Log] = None) -> int:
        """Submit a manifest, returning the task ID."""

    def get_tasks(self, name: str, log: Optional[Log] = None) -> BoshTasks:
        """All tasks for a deployment."""

    def get_deployment(self, name: str, log: Optional[Log] = None) -> tuple[bytes, bool]:
        """Current manifest and whether the deployment exists."""

    def get_configs(self, name: str, log: Optional[Log] = None) -> list[BoshConfig]:
        """Latest director configs named after the deployment."""

    def update_config(self, config_type: str, name: str, content: bytes, log: Optional[Log] = None) -> None:
        """Create or replace a director config."""

    def recreate(self, name: str, context_id: str, log: Optional[Log] = None) -> int:
        """Recreate all instances, returning the task ID."""


@dataclass
class Deployer:
    """Orchestrates state transitions for a single deployment.

    Attributes:
        bosh_client: Director access
        manifest_generator: Service adapter backed generator
        odb_secrets: Secret path generation (required when bulk_setter is set)
        bulk_setter: Secret store writer; None disables secure manifests
        pre_upgrade: Optional check letting upgrades skip up-to-date instances
        service_offering: Catalog used to resolve plans for pre_upgrade
        disable_bosh_configs: Do not read or write director configs
    """
    bosh_client: BoshClient
    manifest_generator: ManifestGenerator
    odb_secrets: Optional[ODBSecrets] = None
    bulk_setter: Optional[BulkSetter] = None
    pre_upgrade: Optional[PreUpgrade] = None
    service_offering: Optional[ServiceOffering] = None
    disable_bosh_configs: bool = False

    def __post_init__(self) -> None:
        if self.bulk_setter is not None and self.odb_secrets is None:
            raise ValueError("odb_secrets is required when a bulk_setter is configured")
        if self.pre_upgrade is not None and self.service_offering is None:
            raise ValueError("service_offering is required when pre_upgrade is configured")

    def create(
        self,
        deployment_name: str,
        plan_id: str,
        request_params: Optional[dict[str, Any]],
        bosh_context_id: str,
        log: Optional[Log] = None,
    ) -> tuple[int, bytes]:
        """Deploy a new service instance.

        Returns:
            (task_id, manifest) for the submitted deploy
        """
        log = log or logger
        self._assert_no_operations_in_progress(deployment_name, log)

        props = GenerateManifestProperties(
            deployment_name=deployment_name,
            plan_id=plan_id,
            request_params=request_params or {},
        )
        return self._do_deploy(props, CREATE, bosh_context_id, log)

    def update(
        self,
        deployment_name: str,
        plan_id: str,
        request_params: Optional[dict[str, Any]],
        previous_plan_id: Optional[str],
        bosh_context_id: str,
        secrets_map: Optional[dict[str, Any]] = None,
        log: Optional[Log] = None,
    ) -> tuple[int, bytes]:
        """Apply a user-requested change to an existing instance.

        Refuses when the catalog would already change the deployed manifest,
        so an operator change and a user change never ship in one deploy.

        Raises:
            TaskInProgressError: A director task is running
            DeploymentNotFoundError: No such deployment
            PendingChangesNotAppliedError: The instance needs an upgrade first
        """
        log = log or logger
        self._assert_no_operations_in_progress(deployment_name, log)

        old_manifest = self._get_deployment_manifest(deployment_name, UPDATE, log)
        old_configs = self._get_configs(deployment_name, UPDATE, log)

        self._check_for_pending_changes(
            deployment_name, plan_id, previous_plan_id, old_manifest, secrets_map, old_configs, log,
        )

        props = GenerateManifestProperties(
            deployment_name=deployment_name,
            plan_id=plan_id,
            previous_plan_id=previous_plan_id,
            request_params=request_params or {},
            old_manifest=old_manifest,
            secrets_map=secrets_map or {},
            previous_configs=old_configs,
        )
        return self._do_deploy(props, UPDATE, bosh_context_id, log)

    def upgrade(
        self,
        deployment_name: str,
        plan_id: str,
        previous_plan_id: Optional[str],
        bosh_context_id: str,
        log: Optional[Log] = None,
    ) -> tuple[int, bytes]:
        """Regenerate and redeploy an instance with no request params.

        Raises:
            TaskInProgressError: A director task is running
            DeploymentNotFoundError: No such deployment
            OperationAlreadyCompletedError: Pre-upgrade check found nothing to do
        """
        log = log or logger
        self._assert_no_operations_in_progress(deployment_name, log)

        old_manifest = self._get_deployment_manifest(deployment_name, UPGRADE, log)
        old_configs = self._get_configs(deployment_name, UPGRADE, log)

        props = GenerateManifestProperties(
            deployment_name=deployment_name,
            plan_id=plan_id,
            previous_plan_id=previous_plan_id,
            old_manifest=old_manifest,
            previous_configs=old_configs,
        )

        if self.pre_upgrade is not None:
            plan = self.service_offering.find_plan(plan_id)  # type: ignore[union-attr]
            if plan is None:
                err = PlanNotFoundError(plan_id)
                raise DeployError(UPGRADE, deployment_name, str(err)) from err
            if not self.pre_upgrade.should_upgrade(props, plan, log):
                raise OperationAlreadyCompletedError(deployment_name)

        return self._do_deploy(props, UPGRADE, bosh_context_id, log)

    def recreate(self, deployment_name: str, bosh_context_id: str, log: Optional[Log] = None) -> int:
        """Recreate all VMs of a deployment without regenerating its manifest."""
        log = log or logger
        self._assert_no_operations_in_progress(deployment_name, log)

        try:
            task_id = self.bosh_client.recreate(deployment_name, bosh_context_id, log)
        except Exception as e:
            log.error(f"failed to recreate deployment {deployment_name}: {e}")
            raise DeployError(RECREATE, deployment_name, str(e)) from e

        log.info(f"Submitted BOSH recreate with task ID {task_id} for deployment {deployment_name}")
        return task_id

    def _assert_no_operations_in_progress(self, deployment_name: str, log: Log) -> None:
        try:
            tasks = self.bosh_client.get_tasks(deployment_name, log)
        except Exception as e:
            raise ServiceError(f"error getting tasks for deployment {deployment_name}: {e}") from e

        incomplete = tasks.incomplete_tasks()
        if incomplete:
            log.info(f"deployment {deployment_name} is still in progress: tasks {incomplete.to_log()}")
            raise TaskInProgressError(deployment_name)

    def _get_deployment_manifest(self, deployment_name: str, operation: str, log: Log) -> bytes:
        try:
            manifest, found = self.bosh_client.get_deployment(deployment_name, log)
        except Exception as e:
            raise DeployError(operation, deployment_name, f"error getting manifest: {e}") from e

        if not found:
            raise DeploymentNotFoundError(deployment_name)
        return manifest

    def _get_configs(self, deployment_name: str, operation: str, log: Log) -> dict[str, str]:
        if self.disable_bosh_configs:
            return {}
        try:
            configs = self.bosh_client.get_configs(deployment_name, log)
        except Exception as e:
            raise DeployError(operation, deployment_name, f"error getting configs: {e}") from e
        return {c.type: c.content for c in configs}

    def _check_for_pending_changes(
        self,
        deployment_name: str,
        plan_id: str,
        previous_plan_id: Optional[str],
        old_manifest: bytes,
        secrets_map: Optional[dict[str, Any]],
        previous_configs: dict[str, str],
        log: Log,
    ) -> None:
        """Regenerate for the current plan without params and compare to what is deployed."""
        props = GenerateManifestProperties(
            deployment_name=deployment_name,
            plan_id=previous_plan_id or plan_id,
            previous_plan_id=previous_plan_id,
            request_params={},
            old_manifest=old_manifest,
            secrets_map=secrets_map or {},
            previous_configs=previous_configs,
        )
        try:
            regenerated = self.manifest_generator.generate_manifest(props, log)
            same = manifests_are_the_same(regenerated.manifest, old_manifest)
        except Exception as e:
            raise DeployError(UPDATE, deployment_name, f"error detecting pending changes: {e}") from e

        if not same:
            log.info(f"deployment {deployment_name} has pending changes")
            raise PendingChangesNotAppliedError(deployment_name)

    def _do_deploy(
        self,
        props: GenerateManifestProperties,
        operation: str,
        bosh_context_id: str,
        log: Log,
    ) -> tuple[int, bytes]:
        name = props.deployment_name

        try:
            generated = self.manifest_generator.generate_manifest(props, log)
        except Exception as e:
            raise DeployError(operation, name, f"error generating manifest: {e}") from e
        manifest = generated.manifest

        if self.bulk_setter is not None:
            secrets = self.odb_secrets.generate_secret_paths(  # type: ignore[union-attr]
                name, manifest, generated.odb_managed_secrets,
            )
            try:
                self.bulk_setter.bulk_set(secrets)
            except Exception as e:
                raise DeployError(operation, name, f"error storing secrets: {e}") from e
            manifest = self.odb_secrets.replace_odb_refs(manifest, secrets)  # type: ignore[union-attr]

        if self.disable_bosh_configs and generated.configs:
            raise DeployError(operation, name, "adapter returned bosh configs but feature is turned off")
        if not self.disable_bosh_configs:
            for config_type, content in generated.configs.items():
                try:
                    self.bosh_client.update_config(config_type, name, content.encode('utf-8'), log)
                except Exception as e:
                    raise DeployError(operation, name, f"error updating config: {e}") from e

        manifest_bytes = manifest.encode('utf-8')
        try:
            task_id = self.bosh_client.deploy(manifest_bytes, bosh_context_id, log)
        except Exception as e:
            raise DeployError(operation, name, f"error deploying instance: {e}") from e

        log.info(f"Bosh task ID for {operation} deployment {name} is {task_id}")
        return task_id, manifest_bytes
