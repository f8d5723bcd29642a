"""hybridctl - provisioning pipeline for hybrid K3s clusters."""

__version__ = "0.1.0"
