"""Shellbox - run shell scripts in disposable, resource-bounded containers."""

__version__ = "0.1.0"
