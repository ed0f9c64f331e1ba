"""eksorch -- dependency-graph executor for a managed Kubernetes cluster composition."""

__version__ = "0.1.0"
