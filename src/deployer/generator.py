"""Manifest generation through the external service adapter.

The adapter is an executable supplied by the service author. The broker
invokes ``<adapter> generate-manifest`` with JSON-serialised arguments and
reads the generated manifest (plus ODB-managed secrets and director
configs) from stdout.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

from common import Log, run_command
from config import Plan, ServiceDeployment, ServiceOffering
from manifest import ManifestParseError, parse_manifest

logger = logging.getLogger(__name__)

# Adapter exit code for an unimplemented subcommand
NOT_IMPLEMENTED_EXIT_CODE = 10


class AdapterError(Exception):
    """The service adapter failed or produced unusable output."""

    def __init__(self, message: str, user_message: str = ''):
        self.message = message
        self.user_message = user_message
        super().__init__(message)


class AdapterNotImplementedError(AdapterError):
    """The adapter does not implement generate-manifest."""


class PlanNotFoundError(Exception):
    """Plan ID is not in the service catalog."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"plan {plan_id} does not exist")


@dataclass
class GenerateManifestProperties:
    """Inputs for one manifest generation.

    Built fresh for each call; never persisted.

    Attributes:
        deployment_name: Target deployment (service-instance_<GUID>)
        plan_id: Plan to generate for
        previous_plan_id: Plan the instance is currently on (None on create)
        request_params: Arbitrary parameters from the platform request
        old_manifest: Currently deployed manifest (empty on create)
        secrets_map: Previously stored secrets, by name
        previous_configs: Current director configs, by type
        uaa_client: Service-instance UAA client definition for substitution
    """
    deployment_name: str
    plan_id: str
    previous_plan_id: Optional[str] = None
    request_params: dict[str, Any] = field(default_factory=dict)
    old_manifest: bytes = b''
    secrets_map: dict[str, Any] = field(default_factory=dict)
    previous_configs: dict[str, str] = field(default_factory=dict)
    uaa_client: Optional[dict[str, str]] = None


@dataclass
class GeneratedManifest:
    """Adapter output: manifest text, ODB-managed secrets, director configs."""
    manifest: str
    odb_managed_secrets: dict[str, Any] = field(default_factory=dict)
    configs: dict[str, str] = field(default_factory=dict)


class ManifestGenerator(Protocol):
    """Produces a manifest for a deployment."""

    def generate_manifest(
        self, props: GenerateManifestProperties, log: Optional[Log] = None,
    ) -> GeneratedManifest:
        """Generate a manifest, raising on adapter failure."""


@dataclass
class ServiceAdapterManifestGenerator:
    """ManifestGenerator that shells out to the service adapter.

    Attributes:
        adapter_path: Adapter executable
        service_offering: Catalog used to resolve plan IDs
        service_deployment: Pinned releases and stemcells
        timeout: Adapter run timeout in seconds
    """
    adapter_path: Path
    service_offering: ServiceOffering
    service_deployment: ServiceDeployment = field(default_factory=ServiceDeployment)
    timeout: int = 600

    def generate_manifest(
        self, props: GenerateManifestProperties, log: Optional[Log] = None,
    ) -> GeneratedManifest:
        log = log or logger
        plan, previous_plan = self._find_plans(props.plan_id, props.previous_plan_id)
        global_props = self.service_offering.global_properties

        service_deployment = {
            'deployment_name': props.deployment_name,
            'releases': self.service_deployment.releases,
            'stemcells': self.service_deployment.stemcells,
        }
        previous_manifest = props.old_manifest or b''
        if isinstance(previous_manifest, bytes):
            previous_manifest = previous_manifest.decode('utf-8')

        cmd = [
            str(self.adapter_path),
            'generate-manifest',
            json.dumps(service_deployment),
            json.dumps(plan.adapter_plan(global_props)),
            json.dumps(props.request_params or {}),
            previous_manifest,
            json.dumps(previous_plan.adapter_plan(global_props) if previous_plan else None),
            json.dumps(props.secrets_map or {}),
            json.dumps(props.previous_configs or {}),
            json.dumps(props.uaa_client or {}),
        ]

        log.info(f"service adapter will generate manifest for deployment {props.deployment_name}")
        rc, stdout, stderr = run_command(cmd, timeout=self.timeout)

        if rc == NOT_IMPLEMENTED_EXIT_CODE:
            raise AdapterNotImplementedError(
                f"command not implemented by service adapter {self.adapter_path}"
            )
        if rc != 0:
            log.error(
                f"external service adapter exited with {rc} at {self.adapter_path}: "
                f"stdout: '{stdout}', stderr: '{stderr}'"
            )
            raise AdapterError(
                f"service adapter {self.adapter_path} failed with exit code {rc}",
                user_message=stdout.strip(),
            )

        log.info(f"service adapter ran generate-manifest successfully, stderr logs: {stderr}")

        generated = _parse_output(stdout)
        self._validate(generated.manifest, props.deployment_name)
        return generated

    def _find_plans(self, plan_id: str, previous_plan_id: Optional[str]) -> tuple[Plan, Optional[Plan]]:
        plan = self.service_offering.find_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)

        if previous_plan_id is None:
            return plan, None

        previous_plan = self.service_offering.find_plan(previous_plan_id)
        if previous_plan is None:
            raise PlanNotFoundError(previous_plan_id)
        return plan, previous_plan

    def _validate(self, manifest: str, expected_name: str) -> None:
        if not isinstance(manifest, str):
            raise AdapterError(
                f"service adapter {self.adapter_path} returned a {type(manifest).__name__} "
                "manifest, expected a YAML string"
            )

        try:
            doc = parse_manifest(manifest)
        except ManifestParseError as e:
            raise AdapterError(
                f"service adapter {self.adapter_path} returned invalid YAML: {e.detail}"
            ) from e

        name = doc.get('name')
        if name != expected_name:
            raise AdapterError(
                f"service adapter {self.adapter_path} returned a manifest for deployment "
                f"'{name}', expected '{expected_name}'"
            )

        for item in (doc.get('releases') or []) + (doc.get('stemcells') or []):
            version = str((item or {}).get('version', ''))
            if version.endswith('latest'):
                raise AdapterError(
                    f"service adapter {self.adapter_path} returned version '{version}'; "
                    "only exact release and stemcell versions are supported"
                )


def _parse_output(stdout: str) -> GeneratedManifest:
    """Read adapter stdout.

    Current adapters print a JSON object with manifest, secrets and configs;
    older ones print the bare YAML manifest.
    """
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        return GeneratedManifest(manifest=stdout)

    if not isinstance(data, dict) or 'manifest' not in data:
        return GeneratedManifest(manifest=stdout)

    return GeneratedManifest(
        manifest=data['manifest'],
        odb_managed_secrets=data.get('secrets') or {},
        configs=data.get('configs') or {},
    )
