"""
Analysis Services reconciler.

Reconciles Azure Analysis Services servers against Resource Manager.
"""

from plugins.reconcilers.analysis_services.client import AnalysisServicesClient
from plugins.reconcilers.analysis_services.models import FirewallRule, ServerState
from plugins.reconcilers.analysis_services.plugin import (
    AnalysisServicesReconcilerPlugin,
)
from plugins.reconcilers.analysis_services.reconciler import ServerReconciler

__all__ = [
    "AnalysisServicesClient",
    "AnalysisServicesReconcilerPlugin",
    "FirewallRule",
    "ServerReconciler",
    "ServerState",
]
