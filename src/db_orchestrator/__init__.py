"""
Database Orchestrator - Local database instance lifecycle management

Installs database engine binaries through the system package manager,
allocates conflict-free ports, supervises the engine processes and
persists their configuration and runtime status.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
