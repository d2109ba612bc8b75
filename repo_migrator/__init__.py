#!/usr/bin/env python3
"""
Repository migration orchestrator
"""

__version__ = "0.1.0"

from repo_migrator.core.batch_executor import BatchExecutor, classify
from repo_migrator.core.config import load_config
from repo_migrator.core.health import HealthMonitor
from repo_migrator.core.monitor_loop import MonitoringLoop
from repo_migrator.core.state import MigrationStateTracker
from repo_migrator.notifications.dispatcher import AlertDispatcher
from repo_migrator.services.gateway import ServiceGateway
