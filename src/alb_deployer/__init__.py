"""Provision AKS with an ALB-managed Application Gateway for Containers."""

__version__ = "0.1.0"
