"""Resource lifecycle orchestrator: ordered provisioning with guaranteed teardown."""

__version__ = "0.1.0"
