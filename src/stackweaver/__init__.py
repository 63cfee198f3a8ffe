"""stackweaver: idempotent, dependency-ordered infrastructure provisioning."""

__version__ = "0.1.0"
