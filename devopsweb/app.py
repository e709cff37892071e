"""The web application: example, load-test and CI/CD endpoints."""

from __future__ import annotations

import argparse
import logging
import os

from flask import Flask, Response, current_app, jsonify, request

from devopsweb.build import CICD_REPO_ADDR, LOCAL_BUILD_BASE_DIR, CICDConfig, CommandError, DockerBuild
from devopsweb.deploy import LOCAL_DEPLOY_BASE_DIR, K8sDeploy
from devopsweb.examples import register_example_routes
from devopsweb.loadtest import register_loadtest_routes

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
BIND_FAILURE_STATUS = 482
EXAMPLE_NAME = "scq"
DEFAULT_SEC_USER = "user01"
DEFAULT_SEC_PASSWORD = "password"

CORS_ALLOW_METHODS = "GET,POST,PUT,PATCH,DELETE,HEAD,OPTIONS"
CORS_ALLOW_HEADERS = "Origin,Content-Length,Content-Type"
CORS_MAX_AGE = "43200"


def _failure() -> Response:
    return Response(status=BIND_FAILURE_STATUS)


def _enable_cors(app: Flask) -> Flask:
    """Allow every origin, answering preflight requests directly."""

    @app.before_request
    def _preflight():
        if request.method == "OPTIONS" and request.headers.get("Origin"):
            response = Response(status=204)
            response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
            response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
            response.headers["Access-Control-Max-Age"] = CORS_MAX_AGE
            return response
        return None

    @app.after_request
    def _allow_origin(response):
        if request.headers.get("Origin"):
            response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    return app


def register_cicd_routes(app: Flask) -> Flask:
    """Add POST /cicd/build and POST /cicd/deploy to ``app``."""
    app.config.setdefault("BUILD_BASE_DIR", LOCAL_BUILD_BASE_DIR)
    app.config.setdefault("DEPLOY_BASE_DIR", LOCAL_DEPLOY_BASE_DIR)
    app.config.setdefault("CICD_REPO", CICD_REPO_ADDR)
    app.config.setdefault("KUBECTL", "kubectl")
    app.config.setdefault("BUILD_HISTORY_RESERVE", CICDConfig().build_history_reserve)

    @app.post("/cicd/build")
    def cicd_build():
        config = current_app.config
        try:
            build = DockerBuild.from_payload(request.get_json(silent=True))
        except ValueError as exc:
            logger.error("build bind to DockerBuild msg=%s", exc)
            return _failure()
        build.base_dir = config["BUILD_BASE_DIR"]
        build.cicd_repo = config["CICD_REPO"]
        build.set_all_paths()

        steps = (
            ("clone", lambda: build.do_clone(CICDConfig(config["BUILD_HISTORY_RESERVE"]))),
            ("docker build", build.do_build),
            ("docker push", build.do_push),
        )
        for step, action in steps:
            try:
                action()
            except (OSError, CommandError) as exc:
                logger.error("main %s image=%s msg=%s", step, build.image, exc)
                return _failure()

        return jsonify(
            {
                "project_name": build.project_name,
                "project_group": build.group,
                "project_env": build.env,
                "push_image": build.image,
                "msg": "build and push success.",
            }
        )

    @app.post("/cicd/deploy")
    def cicd_deploy():
        config = current_app.config
        try:
            deploy = K8sDeploy.from_payload(request.get_json(silent=True))
        except ValueError as exc:
            logger.error("deploy bind to K8sDeploy msg=%s", exc)
            return _failure()
        deploy.base_dir = config["DEPLOY_BASE_DIR"]
        deploy.cicd_repo = config["CICD_REPO"]
        deploy.kubectl = config["KUBECTL"]
        deploy.set_all()

        try:
            deploy.do_deploy()
        except (OSError, CommandError, ValueError) as exc:
            logger.error(
                "main k8s deploy namespace=%s name=%s env=%s msg=%s",
                deploy.namespace, deploy.app_name, deploy.env, exc,
            )
            return Response(status=200)

        return jsonify(
            {
                "project_name": deploy.app_name,
                "project_group": deploy.group,
                "project_env": deploy.env,
                "push_image": deploy.image,
                "msg": "deploy to k8s success.",
            }
        )

    return app


def create_app() -> Flask:
    """Build the application with all of its routes."""
    app = Flask(__name__)
    _enable_cors(app)

    user = os.environ.get("DEVOPSWEB_SEC_USER", DEFAULT_SEC_USER)
    secret_value = os.environ.get("DEVOPSWEB_SEC_PASSWORD", DEFAULT_SEC_PASSWORD)
    register_example_routes(app, EXAMPLE_NAME, {user: secret_value})
    register_cicd_routes(app)
    register_loadtest_routes(app)
    return app


def main(argv=None) -> None:
    """Start the web server."""
    parser = argparse.ArgumentParser(description="Serve the devops web endpoints.")
    parser.add_argument("--host", default="0.0.0.0", help="address to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    create_app().run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()