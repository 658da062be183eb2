"""HTTP client for the BOSH director API.

Covers the calls the deployment core needs: task and event queries,
manifest fetch, deploy submission and per-deployment configs. Retries and
token refresh are not handled here; callers see every failure.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional

import requests

from boshdirector.tasks import TASK_DONE, TASK_ERROR, BoshConfig, BoshEvent, BoshTask, BoshTasks
from common import Log
from manifest import deployment_name

logger = logging.getLogger(__name__)

_TASK_LOCATION = re.compile(r'/tasks/(\d+)$')


class BoshRequestError(Exception):
    """Director request failed or returned an unexpected status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class BoshDirectorClient:
    """Director client backed by a requests session."""

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        ca_cert: Optional[Path] = None,
        insecure: bool = False,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize director client.

        Args:
            url: Director URL (e.g., https://10.0.0.6:25555)
            username: Basic auth user
            password: Basic auth password
            token: Bearer token (used instead of basic auth when set)
            ca_cert: CA certificate used to verify the director
            insecure: Skip TLS verification
            timeout: Per-request timeout in seconds
            session: Preconfigured session (tests)
        """
        self.url = url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'
        elif username:
            self.session.auth = (username, password or '')

        if insecure:
            self.session.verify = False
        elif ca_cert:
            self.session.verify = str(ca_cert)

    def _request(
        self,
        method: str,
        path: str,
        expected: tuple[int, ...] = (200,),
        **kwargs,
    ) -> requests.Response:
        url = f'{self.url}{path}'
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise BoshRequestError(f"error reaching bosh director at {url}: {e}") from e

        if resp.status_code not in expected:
            raise BoshRequestError(
                f"unexpected status {resp.status_code} from {method} {path}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp

    def _get_tasks(self, name: str, context_id: str = '') -> BoshTasks:
        params = {'deployment': name, 'verbose': 1}
        if context_id:
            params['context_id'] = context_id
        resp = self._request('GET', '/tasks', params=params)
        return BoshTasks.from_list(resp.json())

    def get_tasks(self, name: str, log: Optional[Log] = None) -> BoshTasks:
        log = log or logger
        log.info(f"getting tasks for deployment {name} from bosh")
        return self._get_tasks(name)

    def get_task(self, task_id: int, log: Optional[Log] = None) -> BoshTask:
        log = log or logger
        log.info(f"getting task {task_id} from bosh")
        resp = self._request('GET', f'/tasks/{task_id}')
        return BoshTask.from_dict(resp.json() or {})

    def get_task_output(self, task_id: int, log: Optional[Log] = None) -> list[dict]:
        """Fetch the result output of a task.

        The director streams one JSON object per line.
        """
        log = log or logger
        log.info(f"getting task output for task {task_id} from bosh")
        resp = self._request('GET', f'/tasks/{task_id}/output', params={'type': 'result'})

        outputs = []
        for line in resp.text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                outputs.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise BoshRequestError(f"invalid output for task {task_id}: {e}") from e
        return outputs

    def get_normalised_tasks_by_context(
        self, name: str, context_id: str, log: Optional[Log] = None,
    ) -> BoshTasks:
        """Fetch tasks sharing a context ID, with errand failures marked as errors.

        The director reports a failed errand run as 'done'; the exit code in
        the task's result output is what tells success from failure.
        """
        log = log or logger
        log.info(f"getting tasks for deployment {name} with context {context_id} from bosh")
        tasks = self._get_tasks(name, context_id)

        for task in tasks:
            if task.state != TASK_DONE:
                continue
            outputs = self.get_task_output(task.id, log)
            if outputs and outputs[0].get('exit_code', 0) != 0:
                task.state = TASK_ERROR
        return tasks

    def get_deployment(self, name: str, log: Optional[Log] = None) -> tuple[bytes, bool]:
        """Fetch the current manifest of a deployment.

        Returns:
            (manifest, found) tuple; manifest is empty when not found
        """
        log = log or logger
        log.info(f"getting manifest from bosh for deployment {name}")
        resp = self._request('GET', f'/deployments/{name}', expected=(200, 404))
        if resp.status_code == 404:
            return b'', False
        manifest = (resp.json() or {}).get('manifest', '')
        return manifest.encode('utf-8'), True

    def deploy(self, manifest: bytes, context_id: str, log: Optional[Log] = None) -> int:
        """Submit a manifest and return the resulting task ID."""
        log = log or logger
        name = deployment_name(manifest)
        log.info(f"deploying to bosh director for deployment {name}")

        headers = {'Content-Type': 'text/yaml'}
        if context_id:
            headers['X-Bosh-Context-Id'] = context_id

        resp = self._request(
            'POST', '/deployments',
            expected=(301, 302, 303),
            data=manifest,
            headers=headers,
            allow_redirects=False,
        )
        return _task_id_from_location(resp.headers.get('Location', ''))

    def recreate(self, name: str, context_id: str, log: Optional[Log] = None) -> int:
        """Recreate every instance of a deployment and return the task ID.

        The director needs the current manifest in the request body.
        """
        log = log or logger
        manifest, found = self.get_deployment(name, log)
        if not found:
            raise BoshRequestError(f"could not recreate deployment {name}: not found", status_code=404)

        log.info(f"recreating deployment {name}")
        headers = {'Content-Type': 'text/yaml'}
        if context_id:
            headers['X-Bosh-Context-Id'] = context_id

        resp = self._request(
            'PUT', f'/deployments/{name}/jobs/*',
            expected=(301, 302, 303),
            params={'state': 'recreate'},
            data=manifest,
            headers=headers,
            allow_redirects=False,
        )
        return _task_id_from_location(resp.headers.get('Location', ''))

    def get_events(self, name: str, action: str, log: Optional[Log] = None) -> list[BoshEvent]:
        """Fetch deployment events of one action type, newest first."""
        log = log or logger
        log.info(f"getting {action} events for deployment {name} from bosh")
        params = {'deployment': name, 'action': action, 'object_type': 'deployment'}
        resp = self._request('GET', '/events', params=params)
        return [BoshEvent.from_dict(e) for e in (resp.json() or [])]

    def get_configs(self, name: str, log: Optional[Log] = None) -> list[BoshConfig]:
        log = log or logger
        log.info(f"getting configs for deployment {name} from bosh")
        resp = self._request('GET', '/configs', params={'name': name, 'latest': 'true'})
        return [BoshConfig.from_dict(c) for c in (resp.json() or [])]

    def update_config(self, config_type: str, name: str, content: bytes, log: Optional[Log] = None) -> None:
        log = log or logger
        log.info(f"updating {config_type} config {name}")
        if isinstance(content, bytes):
            content = content.decode('utf-8')
        self._request(
            'POST', '/configs',
            expected=(200, 201),
            json={'type': config_type, 'name': name, 'content': content},
        )


def _task_id_from_location(location: str) -> int:
    match = _TASK_LOCATION.search(location)
    if not match:
        raise BoshRequestError(f"no task ID in director redirect: '{location}'")
    return int(match.group(1))
