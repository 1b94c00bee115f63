"""
CEP definition deployer.

Manages event type and event pattern definitions through the
draft → staged → deployed lifecycle and tells the downstream CEP engine
what to deploy or undeploy over a message broker.
"""

__version__ = "0.1.0"
