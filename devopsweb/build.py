"""Clone a project, build its docker image and push it to the registry."""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

TCR_HOST = "ccr.ccs.tencentyun.com"
TCR_NAMESPACE = "devops_scq"
LOCAL_BUILD_BASE_DIR = "/data/devops/build/"
CICD_REPO_ADDR = "ssh://git@gitlab.example.com:522/devops/cicd.git"
CICD_REPO_LOCAL_PATH = "devops_cicd"
DEFAULT_DOCKERFILE = "Dockerfile"

_PAYLOAD_KEYS = {
    "project_name": "project_name",
    "group": "group",
    "repo_ssh": "repo_ssh",
    "project_type": "project_type",
    "project_env": "env",
    "tag_or_branch": "tag",
}


@dataclass(frozen=True)
class CICDConfig:
    """Settings shared by all builds."""

    build_history_reserve: int = 10


class CommandError(RuntimeError):
    """An external command could not be started or exited with a failure."""

    def __init__(
        self, command: Sequence[str], returncode: int | None = None, reason: str = ""
    ) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.reason = reason
        detail = reason or f"exit status {returncode}"
        super().__init__(f"{' '.join(self.command)}: {detail}")


def image_name(name: str, env: str, tag: str) -> str:
    """Registry image reference for a project, environment and tag."""
    return posixpath.normpath(posixpath.join(TCR_HOST, TCR_NAMESPACE, f"{name}:{env}-{tag}"))


def timestamp_dir(now: datetime | None = None) -> str:
    """Directory name of one build, ``t_`` followed by a millisecond timestamp."""
    now = now or datetime.now()
    return f"t_{now:%Y%m%d%H%M%S}.{now.microsecond // 1000:03d}"


def run_command(args: Sequence[str], cwd: str | os.PathLike | None = None) -> None:
    """Run ``args`` with inherited stdout and stderr; raise CommandError on failure."""
    command = [str(arg) for arg in args]
    try:
        result = subprocess.run(command, cwd=cwd, check=False)
    except OSError as exc:
        raise CommandError(command, reason=str(exc)) from exc
    if result.returncode != 0:
        raise CommandError(command, returncode=result.returncode)


def _payload_strings(data: object, keys: Mapping[str, str]) -> dict[str, str]:
    if not isinstance(data, Mapping):
        raise ValueError("payload must be a JSON object")
    values = {}
    for key, attribute in keys.items():
        value = data.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"payload field {key!r} must be a string")
        values[attribute] = value
    return values


def _remove_entry(path: str) -> None:
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except OSError as exc:
        logger.error("remove dir name=%s msg=%s", os.path.basename(path), exc)
        return
    logger.info("remove dir path=%s msg=success", os.path.basename(path))


def _copy_into(source: str, directory: str) -> None:
    target = os.path.join(directory, os.path.basename(source))
    if os.path.isdir(source) and not os.path.islink(source):
        shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target, follow_symlinks=False)


@dataclass
class DockerBuild:
    """One build of a project: where it is cloned, and the image it produces."""

    project_name: str = ""
    group: str = ""
    repo_ssh: str = ""
    project_type: str = ""
    env: str = ""
    tag: str = ""
    project_local_path: str = ""
    timestamp_now_dir: str = ""
    work_dir: str = ""
    image: str = ""
    base_dir: str = LOCAL_BUILD_BASE_DIR
    cicd_repo: str = CICD_REPO_ADDR

    @classmethod
    def from_payload(cls, data: object) -> DockerBuild:
        """Create a build from a decoded JSON request body."""
        return cls(**_payload_strings(data, _PAYLOAD_KEYS))

    def set_all_paths(self, now: datetime | None = None) -> None:
        """Derive the image name and the local directories of this build."""
        self.image = image_name(self.project_name, self.env, self.tag)
        self.project_local_path = os.path.join(self.base_dir, self.group, self.project_name)
        self.timestamp_now_dir = timestamp_dir(now)
        self.work_dir = os.path.join(self.project_local_path, self.timestamp_now_dir)

    def do_clone(self, config: CICDConfig | None = None) -> None:
        """Prune old build directories, then clone the project and the CI/CD repository."""
        config = config or CICDConfig()
        try:
            os.makedirs(self.work_dir, exist_ok=True)
        except OSError as exc:
            logger.error("build mkdir all path=%s msg=%s", self.work_dir, exc)
            raise

        entries = sorted(os.listdir(self.project_local_path))
        excess = len(entries) - config.build_history_reserve
        if excess > 0 and "t_" in self.work_dir and self.work_dir.startswith(self.base_dir):
            for name in entries[:excess]:
                _remove_entry(os.path.join(self.project_local_path, name))

        run_command(["git", "clone", "-b", self.tag, "--depth=1", self.repo_ssh, self.work_dir])
        run_command(
            [
                "git", "clone", "-b", "main", "--depth=1",
                self.cicd_repo, os.path.join(self.work_dir, CICD_REPO_LOCAL_PATH),
            ]
        )

    def do_build(self) -> str:
        """Build the image in the work directory; return the Dockerfile that was used."""
        source = os.path.join(
            self.work_dir, CICD_REPO_LOCAL_PATH, "jobs", self.group, self.project_name, "build"
        )
        try:
            names = sorted(os.listdir(source))
        except OSError as exc:
            logger.warning("build use devops/cicd dir path=%s msg=%s", source, exc)
            names = []

        dockerfile = DEFAULT_DOCKERFILE
        if names:
            for name in names:
                _copy_into(os.path.join(source, name), self.work_dir)
            with_env = f"{DEFAULT_DOCKERFILE}_{self.env}"
            if with_env in names:
                dockerfile = with_env
            logger.info("build use dockerfile msg=devops_cicd.%s", dockerfile)
        else:
            logger.info("build use dockerfile msg=repo.Dockerfile")

        run_command(
            ["docker", "build", "-t", self.image, "-f", dockerfile, "."], cwd=self.work_dir
        )
        return dockerfile

    def do_push(self) -> None:
        """Push the built image to the registry."""
        run_command(["docker", "push", self.image])