"""时间线导出：体积分类、后端选择与导出编排。"""

from src.services.export.orchestrator import ExportOrchestrator
from src.services.export.size_classifier import InputPayloads, SizeClassifier, select_backend

__all__ = ["ExportOrchestrator", "InputPayloads", "SizeClassifier", "select_backend"]
