"""Smartwatch Monitor - abnormal event alerts for a child-safety wearable."""

__version__ = "1.0.0"
