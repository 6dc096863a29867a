# src/emergency_connect/services/analysis/__init__.py
"""Risk and urgency analysis with an always-available rule-based fallback."""

from .base import Analyzer
from .engine import AnalysisEngine, build_analysis_engine, get_analysis_engine
from .rule_based import RuleBasedAnalyzer

__all__ = [
    "Analyzer",
    "AnalysisEngine",
    "RuleBasedAnalyzer",
    "build_analysis_engine",
    "get_analysis_engine",
]
