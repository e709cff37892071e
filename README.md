# devopsweb

A small Flask service that puts a few everyday DevOps chores behind HTTP
endpoints:

- cloning a Git repository, building a Docker image from it and pushing the
  image to a registry,
- rolling a new image out to a Kubernetes deployment, or creating the
  deployment from a template when it does not exist yet,
- generating CPU and memory load on the host for capacity tests,
- a few example endpoints, one of them behind HTTP basic auth.

Build and deploy call `git`, `docker` and `kubectl`, which must be installed
on the host.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running the server

```
devopsweb
devopsweb --host 127.0.0.1 --port 9000
```

`--host` defaults to `0.0.0.0` and `--port` to `8080`. The server uses
Flask's built-in development server and logs at INFO level.

The user and password for `/sec/info` come from the environment variables
`DEVOPSWEB_SEC_USER` (default `user01`) and `DEVOPSWEB_SEC_PASSWORD`
(default `password`).

All responses allow any origin (CORS). `OPTIONS` requests that carry an
`Origin` header get an empty `204` answer.

## Endpoints

| Method | Path               | What it does                                            |
|--------|--------------------|---------------------------------------------------------|
| GET    | `/getname`         | Returns `{"name": "scq"}`; adds `version` from `?version=` |
| GET    | `/json`            | Returns a small sample list                             |
| GET    | `/sec/info`        | Sample data behind HTTP basic auth (401 otherwise)      |
| POST   | `/cicd/build`      | Clones, builds and pushes a Docker image                |
| POST   | `/cicd/deploy`     | Updates or creates a Kubernetes deployment              |
| GET    | `/loadtest/cpu`    | Burns CPU on 10 threads; `?duration=` seconds (default 60) |
| GET    | `/loadtest/memory` | Holds memory; `?size=` MB (default 512), `?duration=` seconds (default 60) |

The load-test endpoints answer at once and run the load in a background
thread. A `duration` or `size` that is not an integer falls back to the
default.

### Build request body

```json
{
  "project_name": "go-micro",
  "group": "backend",
  "repo_ssh": "ssh://git@git.example.com:522/backend/go-micro.git",
  "project_type": "go",
  "project_env": "dev",
  "tag_or_branch": "v0.0.1"
}
```

The image is named `ccr.ccs.tencentyun.com/devops_scq/<name>:<env>-<tag>`.
Each build gets its own directory `<base>/<group>/<name>/t_<timestamp>`;
before cloning, the oldest entries of `<base>/<group>/<name>` beyond the ten
most recent are removed. The project is cloned at `tag_or_branch`, and the
shared CI/CD repository (branch `main`) is cloned into `devops_cicd` inside it.

If `jobs/<group>/<name>/build` in the CI/CD repository holds files, they are
all copied into the build directory, and `Dockerfile_<env>` is used when it is
among them, `Dockerfile` otherwise. If that directory is missing or empty, the
project's own `Dockerfile` is used.

On success the endpoint returns the project name, group, environment and the
pushed image. A malformed body or a failed step gives an empty response with
status `482`.

### Deploy request body

```json
{
  "app_name": "go-micro",
  "group": "backend",
  "namespace": "default",
  "project_type": "go",
  "project_env": "dev",
  "tag_or_branch": "v0.0.1"
}
```

When `kubectl get deployment` finds the deployment, the image of its `app`
container (or of its first container if none is named `app`) is set to the
new image and the deployment is replaced with `kubectl replace`. Otherwise the
CI/CD repository is cloned, the placeholders `#{AppName}`, `#{Namespace}` and
`#{Image}` in `jobs/<group>/<name>/deploy/<env>/deployment.yaml` are filled
in, and the file is applied with `kubectl apply`.

A malformed body gives an empty `482` response; a failed deploy is logged and
answered with an empty `200` response.

### Configuration

`register_cicd_routes` reads these keys from the Flask app config, with these
defaults:

| Key                     | Default                  |
|-------------------------|--------------------------|
| `BUILD_BASE_DIR`        | `/data/devops/build/`    |
| `DEPLOY_BASE_DIR`       | `/data/devops/deploy/`   |
| `CICD_REPO`             | the shared CI/CD repository address |
| `KUBECTL`               | `kubectl`                |
| `BUILD_HISTORY_RESERVE` | `10`                     |

## Using the pieces from Python

```python
from devopsweb.app import create_app
from devopsweb.build import DockerBuild, image_name
from devopsweb.deploy import K8sDeploy, replace_all_in_file
from devopsweb.loadtest import burn_cpu, burn_memory

app = create_app()                      # a ready Flask application
app.config["BUILD_BASE_DIR"] = "/tmp/builds/"

image_name("go-micro", "dev", "v1")     # 'ccr.ccs.tencentyun.com/devops_scq/go-micro:dev-v1'
burn_cpu(5, 4)                          # 5 seconds on 4 threads; returns rounds done
burn_memory(2, 64)                      # hold 64 MB for 2 seconds; returns bytes held
replace_all_in_file("deployment.yaml", "#{Image}", "registry/app:dev-v1")
```

`DockerBuild.from_payload` and `K8sDeploy.from_payload` take a decoded JSON
body and raise `ValueError` when it is not an object of strings. Failed
external commands raise `devopsweb.build.CommandError`.

### Middleware

`devopsweb.middleware` has helpers that `create_app` does not install but
that can be added to any Flask app:

- `RequestLimiter(interval).register(app)` answers `429` with
  `{"error": "Request too frequently"}` when a request comes less than
  `interval` seconds after the last accepted one (across the whole app);
- `trace_middleware(app, name)` logs `start <name>` and `end <name>` around
  each request and keeps them in `flask.g.middleware_trail`;
- `query_spend_time(app)` logs how many milliseconds each request took.

### Single active replica

`devopsweb.redis_lock.RedisLock` is a Redis key with a 25-second expiry, set
only when absent (`set_lock`) and refreshed only when present
(`update_lock`). `HighAvailability(lock).start()` tries to take it and then,
every 20 seconds, refreshes it while master or retries taking it while
standby; `should_run_as_master` tells which. `stop()` ends the loop.

## What it does not do

- The server does not take part in leader election by itself: `create_app`
  and the `devopsweb` command never use the Redis lock, so every replica
  serves requests.
- There are no database endpoints and nothing is stored; build and deploy
  results exist only in the response and the log.
- There is no metrics endpoint.