import json
import os
import subprocess
from datetime import datetime
from unittest.mock import patch

import pytest

from devopsweb.build import CommandError, image_name, timestamp_dir
from devopsweb.deploy import K8sDeploy, replace_all_in_file

NOW = datetime(2024, 1, 2, 3, 4, 5)


def _done(command, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(command, returncode, stdout, stderr)


def _make_deploy(tmp_path):
    deploy = K8sDeploy(
        app_name="go-micro",
        group="backend",
        namespace="default",
        project_type="go",
        env="dev",
        tag="v0.0.1",
        base_dir=str(tmp_path / "deploy"),
    )
    deploy.set_all(NOW)
    return deploy


def _deployment(containers, resource_version="42"):
    return {
        "metadata": {"name": "go-micro", "resourceVersion": resource_version},
        "spec": {"template": {"spec": {"containers": containers}}},
    }


def test_replace_all_in_file(tmp_path):
    path = tmp_path / "deployment.yaml"
    path.write_text("name: #{AppName}\nlabel: #{AppName}-x\n")
    replace_all_in_file(path, "#{AppName}", "go-micro")
    assert path.read_text() == "name: go-micro\nlabel: go-micro-x\n"


def test_replace_all_in_file_normalises_line_endings(tmp_path):
    path = tmp_path / "deployment.yaml"
    path.write_bytes(b"a: old\r\nb: old")
    replace_all_in_file(path, "old", "new")
    assert path.read_bytes() == b"a: new\nb: new\n"


def test_replace_all_in_file_leaves_no_temporary_files(tmp_path):
    path = tmp_path / "deployment.yaml"
    path.write_text("x\n")
    replace_all_in_file(path, "x", "y")
    assert path.read_text() == "y\n"
    assert os.listdir(tmp_path) == ["deployment.yaml"]


def test_replace_all_in_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        replace_all_in_file(tmp_path / "absent.yaml", "a", "b")


def test_from_payload():
    deploy = K8sDeploy.from_payload(
        {
            "app_name": "go-micro",
            "group": "backend",
            "namespace": "default",
            "project_type": "go",
            "project_env": "dev",
            "tag_or_branch": "v0.0.1",
        }
    )
    assert (deploy.app_name, deploy.namespace, deploy.env, deploy.tag) == (
        "go-micro", "default", "dev", "v0.0.1",
    )


def test_from_payload_rejects_non_object():
    with pytest.raises(ValueError):
        K8sDeploy.from_payload(["go-micro"])


def test_set_all(tmp_path):
    deploy = _make_deploy(tmp_path)
    assert deploy.image == image_name("go-micro", "dev", "v0.0.1")
    assert deploy.work_dir == os.path.join(
        str(tmp_path / "deploy"), "default", "go-micro", timestamp_dir(NOW)
    )


def test_fetch_deployment_parses_json(tmp_path):
    deploy = _make_deploy(tmp_path)
    found = _deployment([{"name": "app", "image": "old"}])
    with patch("subprocess.run", return_value=_done([], stdout=json.dumps(found))) as run:
        assert deploy.fetch_deployment() == found
    assert run.call_args.args[0] == [
        "kubectl", "get", "deployment", "go-micro", "-n", "default", "-o", "json",
    ]


def test_fetch_deployment_not_found(tmp_path):
    deploy = _make_deploy(tmp_path)
    stderr = 'Error from server (NotFound): deployments.apps "go-micro" not found'
    with patch("subprocess.run", return_value=_done([], 1, stderr=stderr)):
        assert deploy.fetch_deployment() is None


def test_fetch_deployment_other_error(tmp_path):
    deploy = _make_deploy(tmp_path)
    with patch("subprocess.run", return_value=_done([], 1, stderr="connection refused")):
        with pytest.raises(CommandError) as info:
            deploy.fetch_deployment()
    assert info.value.returncode == 1


def test_update_image_targets_app_container(tmp_path):
    deploy = _make_deploy(tmp_path)
    original = _deployment([{"name": "sidecar", "image": "proxy"}, {"name": "app", "image": "old"}])
    with patch("subprocess.run", return_value=_done([])) as run:
        updated = deploy.update_image(original)
    sent = json.loads(run.call_args.kwargs["input"])
    assert sent == updated
    assert [c["image"] for c in sent["spec"]["template"]["spec"]["containers"]] == ["proxy", deploy.image]
    assert "resourceVersion" not in sent["metadata"]
    assert original["metadata"]["resourceVersion"] == "42"
    assert run.call_args.args[0] == ["kubectl", "replace", "-f", "-"]


def test_update_image_falls_back_to_first_container(tmp_path):
    deploy = _make_deploy(tmp_path)
    with patch("subprocess.run", return_value=_done([])):
        updated = deploy.update_image(_deployment([{"name": "web", "image": "old"}, {"name": "db"}]))
    containers = updated["spec"]["template"]["spec"]["containers"]
    assert containers[0]["image"] == deploy.image
    assert "image" not in containers[1]


def test_update_image_without_containers(tmp_path):
    deploy = _make_deploy(tmp_path)
    with pytest.raises(ValueError):
        deploy.update_image(_deployment([]))


def test_update_image_replace_failure(tmp_path):
    deploy = _make_deploy(tmp_path)
    with patch("subprocess.run", return_value=_done([], 1, stderr="conflict")):
        with pytest.raises(CommandError) as info:
            deploy.update_image(_deployment([{"name": "app"}]))
    assert info.value.reason == "conflict"


def test_do_deploy_updates_existing(tmp_path):
    deploy = _make_deploy(tmp_path)
    found = json.dumps(_deployment([{"name": "app", "image": "old"}]))
    commands = []

    def fake_run(command, **kwargs):
        commands.append(command)
        return _done(command, stdout=found if command[1] == "get" else "")

    with patch("subprocess.run", side_effect=fake_run):
        assert deploy.do_deploy() == "updated"
    assert [command[1] for command in commands] == ["get", "replace"]
    assert not os.path.exists(deploy.work_dir)


def test_do_deploy_creates_from_templates(tmp_path):
    deploy = _make_deploy(tmp_path)
    yaml_dir = os.path.join(deploy.work_dir, "jobs", "backend", "go-micro", "deploy", "dev")
    applied = []

    def fake_run(command, **kwargs):
        if command[:2] == ["kubectl", "get"]:
            return _done(command, 1, stderr="Error from server (NotFound): not found")
        if command[0] == "git":
            assert command[-1] == deploy.work_dir
            os.makedirs(yaml_dir)
            with open(os.path.join(yaml_dir, "deployment.yaml"), "w") as handle:
                handle.write("name: #{AppName}\nnamespace: #{Namespace}\nimage: #{Image}\n")
            return _done(command)
        applied.append((command, kwargs.get("cwd")))
        return _done(command)

    with patch("subprocess.run", side_effect=fake_run):
        assert deploy.do_deploy() == "created"
    with open(os.path.join(yaml_dir, "deployment.yaml")) as handle:
        content = handle.read()
    assert content == f"name: go-micro\nnamespace: default\nimage: {deploy.image}\n"
    assert applied == [(["kubectl", "apply", "-f", "deployment.yaml"], yaml_dir)]


def test_do_deploy_missing_template(tmp_path):
    deploy = _make_deploy(tmp_path)

    def fake_run(command, **kwargs):
        if command[1] == "get":
            return _done(command, 1, stderr="NotFound")
        return _done(command)

    with patch("subprocess.run", side_effect=fake_run):
        with pytest.raises(FileNotFoundError):
            deploy.do_deploy()