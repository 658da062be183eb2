"""Pre-upgrade check for bulk upgrades.

Decides whether an upgrade pass may skip an instance. Skipping is only
allowed when it is fully verified: the regenerated manifest matches what is
deployed, and the last deploy plus its post-deploy errands all succeeded.
Any error, gap or ambiguity answers "upgrade", which is always safe.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from boshdirector.tasks import BoshEvent, BoshTask, BoshTasks
from common import Log
from config import Plan
from deployer.generator import GenerateManifestProperties, ManifestGenerator
from manifest import ManifestParseError, manifests_are_the_same

logger = logging.getLogger(__name__)

SHOULD_UPGRADE = True

# Director event actions consulted, in order
UPDATE_EVENT = 'update'
CREATE_EVENT = 'create'


class TaskHistoryClient(Protocol):
    """Director queries needed to inspect the last deploy."""

    def get_events(self, name: str, action: str, log: Optional[Log] = None) -> list[BoshEvent]:
        """Deployment events of one action, newest first."""

    def get_task(self, task_id: int, log: Optional[Log] = None) -> BoshTask:
        """A single task by ID."""

    def get_normalised_tasks_by_context(
        self, name: str, context_id: str, log: Optional[Log] = None,
    ) -> BoshTasks:
        """Tasks sharing a context ID, errand failures reported as errors."""


@dataclass
class PreUpgrade:
    """Decides per instance whether an upgrade can be skipped.

    Attributes:
        manifest_generator: Generates the candidate manifest
        bosh_client: Event and task queries
        enable_optimised_upgrades: When False, every instance is upgraded
    """
    manifest_generator: ManifestGenerator
    bosh_client: TaskHistoryClient
    enable_optimised_upgrades: bool = False

    def should_upgrade(
        self,
        props: GenerateManifestProperties,
        plan: Plan,
        log: Optional[Log] = None,
    ) -> bool:
        """Return False only if the instance is verifiably up to date."""
        log = log or logger
        name = props.deployment_name

        if not self.enable_optimised_upgrades:
            return SHOULD_UPGRADE

        try:
            generated = self.manifest_generator.generate_manifest(props, log)
        except Exception as e:
            log.warning(f"failed to generate manifest for {name}: {e}")
            return SHOULD_UPGRADE

        try:
            unchanged = manifests_are_the_same(generated.manifest, props.old_manifest)
        except ManifestParseError as e:
            log.warning(f"failed to compare manifests for {name}: {e}")
            return SHOULD_UPGRADE

        if not unchanged:
            log.info(f"manifest for {name} has changed, upgrading")
            return SHOULD_UPGRADE

        errands = plan.post_deploy_errands()
        if not errands:
            log.info(f"manifest is unchanged and there are no post-deploy errands for {name}, skipping upgrade")
            return not SHOULD_UPGRADE

        events = self._latest_deploy_events(name, log)
        if not events:
            return SHOULD_UPGRADE

        try:
            task_id = int(events[0].task_id)
        except ValueError:
            log.warning(f"event for {name} has invalid task ID '{events[0].task_id}', upgrading")
            return SHOULD_UPGRADE

        try:
            task = self.bosh_client.get_task(task_id, log)
        except Exception as e:
            log.warning(f"failed to get task for id {task_id} with cause '{e}'")
            return SHOULD_UPGRADE

        if task.is_empty:
            log.info(f"no task found for task ID {task_id}, upgrading {name}")
            return SHOULD_UPGRADE

        if not task.context_id:
            log.info(f"task {task_id} has no context ID, upgrading {name}")
            return SHOULD_UPGRADE

        try:
            tasks = self.bosh_client.get_normalised_tasks_by_context(name, task.context_id, log)
        except Exception as e:
            log.warning(f"failed to get tasks by context id '{task.context_id}' with cause '{e}'")
            return SHOULD_UPGRADE

        if not tasks:
            log.info(f"no tasks for context ID '{task.context_id}', upgrading {name}")
            return SHOULD_UPGRADE

        # One deploy task plus one task per post-deploy errand
        if len(tasks) != 1 + len(errands):
            log.info(
                f"expected {1 + len(errands)} tasks for context ID '{task.context_id}', "
                f"found {len(tasks)}, upgrading {name}"
            )
            return SHOULD_UPGRADE

        if not tasks.all_tasks_are_done():
            log.info(f"previous run for {name} did not complete successfully: {tasks.to_log()}, upgrading")
            return SHOULD_UPGRADE

        log.info(f"manifest is unchanged and all post-deploy errands ran successfully for {name}, skipping upgrade")
        return not SHOULD_UPGRADE

    def _latest_deploy_events(self, name: str, log: Log) -> list[BoshEvent]:
        """Update events, or create events if the deployment was never updated.

        The create fallback applies only when there are no update events at all.
        """
        for action in (UPDATE_EVENT, CREATE_EVENT):
            try:
                events = self.bosh_client.get_events(name, action, log)
            except Exception as e:
                log.warning(f"failed to get {action} deployment events for {name} with cause '{e}'")
                return []
            if events:
                return events
        log.info(f"no deployment events found for {name}, upgrading")
        return []
