"""
agentdeploy: provision and deploy agent workloads.

Creates agents from a starter template and deploys them either as local
Docker Compose services or into a remote TEE cloud, then waits for the
agent's health endpoint to come up.
"""

import os

__version__ = "0.1.0"
__author__ = "Tangle Network"

AGENTDEPLOY_HOME = os.environ.get("AGENTDEPLOY_HOME", "~/.agentdeploy")
