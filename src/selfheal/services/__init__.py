"""Healing services: classification, strategy generation, execution and learning."""
