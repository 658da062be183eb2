#!/usr/bin/env python3
"""Tests for deployer/pre_upgrade.py - skip decision for bulk upgrades.

Tests verify:
1. Skip only when the manifest is unchanged and the last run fully succeeded
2. Every error or empty director response answers "upgrade"
3. Plans without post-deploy errands never query the director
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from boshdirector.tasks import BoshEvent, BoshTask, BoshTasks
from deployer.generator import GeneratedManifest, GenerateManifestProperties
from deployer.pre_upgrade import PreUpgrade

NAME = 'service-instance_a1b2c3'


@pytest.fixture
def props(deployed_manifest):
    return GenerateManifestProperties(
        deployment_name=NAME,
        plan_id='small-errand',
        previous_plan_id='small-errand',
        old_manifest=deployed_manifest,
    )


@pytest.fixture
def history():
    """Director history of a successful deploy plus one errand."""
    client = MagicMock()
    client.get_events.side_effect = lambda name, action, log=None: (
        [BoshEvent(id='1', task_id='100', action='update', deployment=NAME)] if action == 'update' else []
    )
    client.get_task.return_value = BoshTask(id=100, state='done', context_id='ctx-1')
    client.get_normalised_tasks_by_context.return_value = BoshTasks([
        BoshTask(id=100, state='done', context_id='ctx-1'),
        BoshTask(id=101, state='done', context_id='ctx-1'),
    ])
    return client


@pytest.fixture
def pre_upgrade(manifest_generator, history):
    return PreUpgrade(manifest_generator, history, enable_optimised_upgrades=True)


class TestSkipDecision:
    """Test the happy paths."""

    def test_skips_when_last_run_succeeded(self, pre_upgrade, props, plan_with_errand, history):
        """Unchanged manifest, one errand, two done tasks: skip."""
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is False
        assert history.get_task.call_args[0][0] == 100
        history.get_normalised_tasks_by_context.assert_called_once()
        assert history.get_normalised_tasks_by_context.call_args[0][:2] == (NAME, 'ctx-1')

    def test_no_errands_skips_without_queries(self, pre_upgrade, props, plan, history):
        """Zero post-deploy errands: skip with no event or task queries."""
        assert pre_upgrade.should_upgrade(props, plan) is False
        history.get_events.assert_not_called()
        history.get_task.assert_not_called()
        history.get_normalised_tasks_by_context.assert_not_called()

    def test_disabled_always_upgrades(self, manifest_generator, history, props, plan):
        """Optimisation off: upgrade without generating."""
        checker = PreUpgrade(manifest_generator, history, enable_optimised_upgrades=False)
        assert checker.should_upgrade(props, plan) is True
        manifest_generator.generate_manifest.assert_not_called()

    def test_update_block_change_still_skips(self, pre_upgrade, manifest_generator, props, plan):
        """Update block differences are not changes."""
        manifest = props.old_manifest.decode().replace('max_in_flight: 1', 'max_in_flight: 5')
        manifest_generator.generate_manifest.return_value = GeneratedManifest(manifest=manifest)
        assert pre_upgrade.should_upgrade(props, plan) is False

    def test_falls_back_to_create_events(self, pre_upgrade, props, plan_with_errand, history):
        """A never-updated deployment uses its create event."""
        history.get_events.side_effect = lambda name, action, log=None: (
            [BoshEvent(id='1', task_id='100', action='create')] if action == 'create' else []
        )
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is False
        assert [c[0][1] for c in history.get_events.call_args_list] == ['update', 'create']

    def test_update_events_present_no_create_query(self, pre_upgrade, props, plan_with_errand, history):
        """Create events are only read when there are no update events."""
        history.get_normalised_tasks_by_context.return_value = BoshTasks([
            BoshTask(id=100, state='done'), BoshTask(id=101, state='error'),
        ])
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True
        assert [c[0][1] for c in history.get_events.call_args_list] == ['update']


class TestUpgradeDecision:
    """Test conditions that force an upgrade."""

    def test_changed_manifest(self, pre_upgrade, manifest_generator, props, plan, history):
        """Any structural change means upgrade."""
        manifest_generator.generate_manifest.return_value = GeneratedManifest(
            manifest=props.old_manifest.decode() + "tags:\n  product: redis\n",
        )
        assert pre_upgrade.should_upgrade(props, plan) is True
        history.get_events.assert_not_called()

    def test_boolean_to_integer_upgrades(self, pre_upgrade, manifest_generator, props, plan):
        """A property that changes from true to 1 is a change."""
        deployed = props.old_manifest + b"properties:\n  persistence: true\n"
        props.old_manifest = deployed
        manifest_generator.generate_manifest.return_value = GeneratedManifest(
            manifest=deployed.decode().replace("persistence: true", "persistence: 1"),
        )
        assert pre_upgrade.should_upgrade(props, plan) is True

    @pytest.mark.parametrize('state', ['error', 'processing', 'queued', 'cancelled', 'timeout'])
    def test_errand_task_not_done(self, pre_upgrade, props, plan_with_errand, history, state):
        """A failed or unfinished errand task means upgrade."""
        history.get_normalised_tasks_by_context.return_value = BoshTasks([
            BoshTask(id=100, state='done'), BoshTask(id=101, state=state),
        ])
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

    def test_deploy_task_not_done(self, pre_upgrade, props, plan_with_errand, history):
        """A failed deploy task means upgrade."""
        history.get_normalised_tasks_by_context.return_value = BoshTasks([
            BoshTask(id=100, state='error'), BoshTask(id=101, state='done'),
        ])
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

    def test_task_count_mismatch(self, pre_upgrade, props, plan_with_errand, history):
        """Fewer tasks than deploy plus errands means upgrade."""
        history.get_normalised_tasks_by_context.return_value = BoshTasks([BoshTask(id=100, state='done')])
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

    def test_non_integer_task_id(self, pre_upgrade, props, plan_with_errand, history):
        """An event with an unusable task ID means upgrade."""
        history.get_events.side_effect = None
        history.get_events.return_value = [BoshEvent(id='1', task_id='abc', action='update')]
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True
        history.get_task.assert_not_called()


class TestFailOpen:
    """Every error or empty response answers upgrade."""

    def test_generator_error(self, pre_upgrade, manifest_generator, props, plan):
        manifest_generator.generate_manifest.side_effect = RuntimeError("adapter crashed")
        assert pre_upgrade.should_upgrade(props, plan) is True

    def test_unparseable_manifest(self, pre_upgrade, manifest_generator, props, plan):
        manifest_generator.generate_manifest.return_value = GeneratedManifest(
            manifest="sjondfs. esdifnjk. not a valid yaml....",
        )
        assert pre_upgrade.should_upgrade(props, plan) is True

    def test_events_error(self, pre_upgrade, props, plan_with_errand, history):
        history.get_events.side_effect = RuntimeError("director down")
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

    def test_no_events(self, pre_upgrade, props, plan_with_errand, history):
        history.get_events.side_effect = None
        history.get_events.return_value = []
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True
        history.get_task.assert_not_called()

    def test_get_task_error(self, pre_upgrade, props, plan_with_errand, history):
        history.get_task.side_effect = RuntimeError("director down")
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

    def test_empty_task(self, pre_upgrade, props, plan_with_errand, history):
        history.get_task.return_value = BoshTask()
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

    def test_task_without_context(self, pre_upgrade, props, plan_with_errand, history):
        history.get_task.return_value = BoshTask(id=100, state='done')
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True
        history.get_normalised_tasks_by_context.assert_not_called()

    def test_tasks_by_context_error(self, pre_upgrade, props, plan_with_errand, history):
        history.get_normalised_tasks_by_context.side_effect = RuntimeError("director down")
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

    def test_no_tasks_for_context(self, pre_upgrade, props, plan_with_errand, history):
        history.get_normalised_tasks_by_context.return_value = BoshTasks()
        assert pre_upgrade.should_upgrade(props, plan_with_errand) is True

