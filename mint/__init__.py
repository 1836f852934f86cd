"""mint: lifecycle management for single-tenant EC2 development VMs."""

__version__ = "0.1.0"
