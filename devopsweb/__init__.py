"""Flask service with image build, Kubernetes deploy, load-test and example endpoints."""

__version__ = "0.1.0"