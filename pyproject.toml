[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "devopsweb"
version = "0.1.0"
description = "A small Flask service with image build, Kubernetes deploy and load-test endpoints"
requires-python = ">=3.10"
keywords = ["flask", "devops", "docker", "kubernetes", "load-test", "redis", "ci", "cd"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "flask",
    "redis",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
devopsweb = "devopsweb.app:main"

[tool.hatch.build.targets.wheel]
packages = ["devopsweb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
