"""sitedeploy — static-site upload and deployment tracking service."""

__version__ = "0.1.0"
