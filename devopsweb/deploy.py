"""Deploy a built image to Kubernetes, updating or creating the deployment."""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from devopsweb.build import CICD_REPO_ADDR, CommandError, image_name, run_command, timestamp_dir

logger = logging.getLogger(__name__)

LOCAL_DEPLOY_BASE_DIR = "/data/devops/deploy/"
DEPLOYMENT_TEMPLATE = "deployment.yaml"
APP_CONTAINER = "app"

_NOT_FOUND = re.compile(r"NotFound|not found")

_PAYLOAD_KEYS = {
    "app_name": "app_name",
    "group": "group",
    "namespace": "namespace",
    "project_type": "project_type",
    "project_env": "env",
    "tag_or_branch": "tag",
}


def replace_all_in_file(path: str | os.PathLike, old: str, new: str) -> None:
    """Replace ``old`` with ``new`` on every line of a file, rewriting it in place."""
    with open(path, encoding="utf-8", newline="") as source:
        content = source.read()
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    replaced = "".join(line.removesuffix("\r").replace(old, new) + "\n" for line in lines)

    directory = os.path.dirname(os.path.abspath(path))
    fd, temporary = tempfile.mkstemp(prefix="tmp-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as target:
            target.write(replaced)
        shutil.copymode(path, temporary)
        os.replace(temporary, path)
    except BaseException:
        if os.path.exists(temporary):
            os.unlink(temporary)
        raise


def _payload_strings(data: object) -> dict[str, str]:
    if not isinstance(data, Mapping):
        raise ValueError("payload must be a JSON object")
    values = {}
    for key, attribute in _PAYLOAD_KEYS.items():
        value = data.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"payload field {key!r} must be a string")
        values[attribute] = value
    return values


@dataclass
class K8sDeploy:
    """One deployment of an application image to a namespace."""

    app_name: str = ""
    group: str = ""
    namespace: str = ""
    project_type: str = ""
    env: str = ""
    tag: str = ""
    work_dir: str = ""
    image: str = ""
    base_dir: str = LOCAL_DEPLOY_BASE_DIR
    cicd_repo: str = CICD_REPO_ADDR
    kubectl: str = "kubectl"

    @classmethod
    def from_payload(cls, data: object) -> K8sDeploy:
        """Create a deployment from a decoded JSON request body."""
        return cls(**_payload_strings(data))

    def set_all(self, now: datetime | None = None) -> None:
        """Derive the image name and the local work directory."""
        self.image = image_name(self.app_name, self.env, self.tag)
        self.work_dir = os.path.join(
            self.base_dir, self.namespace, self.app_name, timestamp_dir(now)
        )

    def _kubectl(self, *args: str, input_text: str | None = None) -> subprocess.CompletedProcess:
        command = [self.kubectl, *args]
        try:
            return subprocess.run(
                command, capture_output=True, text=True, input=input_text, check=False
            )
        except OSError as exc:
            raise CommandError(command, reason=str(exc)) from exc

    def fetch_deployment(self) -> dict | None:
        """Return the deployment from the cluster, or None when it does not exist."""
        args = ("get", "deployment", self.app_name, "-n", self.namespace, "-o", "json")
        result = self._kubectl(*args)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if _NOT_FOUND.search(stderr):
                return None
            logger.error(
                "get deploy namespace=%s name=%s msg=%s", self.namespace, self.app_name, stderr
            )
            raise CommandError([self.kubectl, *args], result.returncode, stderr)
        return json.loads(result.stdout)

    def update_image(self, deployment: Mapping) -> dict:
        """Point the ``app`` container (or the first one) at the new image and replace it."""
        updated = copy.deepcopy(dict(deployment))
        containers = (
            updated.get("spec", {}).get("template", {}).get("spec", {}).get("containers") or []
        )
        if not containers:
            raise ValueError(f"deployment {self.app_name!r} has no containers")
        index = next(
            (i for i, container in enumerate(containers) if container.get("name") == APP_CONTAINER),
            0,
        )
        containers[index]["image"] = self.image
        updated.setdefault("metadata", {}).pop("resourceVersion", None)

        result = self._kubectl("replace", "-f", "-", input_text=json.dumps(updated))
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.error(
                "update deploy namespace=%s name=%s msg=%s", self.namespace, self.app_name, stderr
            )
            raise CommandError([self.kubectl, "replace", "-f", "-"], result.returncode, stderr)
        return updated

    def do_deploy(self) -> str:
        """Update the running deployment, or create it from the CI/CD templates.

        Returns ``"updated"`` or ``"created"``.
        """
        deployment = self.fetch_deployment()
        if deployment and deployment.get("metadata", {}).get("name"):
            logger.info(
                "DoDeploy update deployment namespace=%s name=%s", self.namespace, self.app_name
            )
            self.update_image(deployment)
            logger.info("DoDeploy update deployment namespace=%s name=%s msg=success",
                        self.namespace, self.app_name)
            return "updated"

        logger.info(
            "DoDeploy not found on k8s cluster namespace=%s name=%s msg=use devops/cicd config",
            self.namespace, self.app_name,
        )
        try:
            os.makedirs(self.work_dir, exist_ok=True)
        except OSError as exc:
            logger.error("deploy mkdir all path=%s msg=%s", self.work_dir, exc)
            raise
        run_command(["git", "clone", "-b", "main", "--depth=1", self.cicd_repo, self.work_dir])

        yaml_dir = os.path.join(self.work_dir, "jobs", self.group, self.app_name, "deploy", self.env)
        template = os.path.join(yaml_dir, DEPLOYMENT_TEMPLATE)
        placeholders = {
            "#{AppName}": self.app_name,
            "#{Namespace}": self.namespace,
            "#{Image}": self.image,
        }
        for old, new in placeholders.items():
            replace_all_in_file(template, old, new)

        run_command([self.kubectl, "apply", "-f", DEPLOYMENT_TEMPLATE], cwd=yaml_dir)
        logger.info("DoDeploy create deployment namespace=%s name=%s msg=success",
                    self.namespace, self.app_name)
        return "created"