"""Provisioner for the RHEL8 STIG image-builder Google Cloud project."""

__version__ = "0.1.0"
