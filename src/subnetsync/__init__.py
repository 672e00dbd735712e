"""Reconciles NSX VPC subnets with Kubernetes Subnet and SubnetSet resources."""

__version__ = "0.1.0"
