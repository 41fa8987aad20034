"""
Lifecycle interface for long-lived planner components.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class BaseService(ABC):
    """Component with an explicit initialize/shutdown lifecycle and a health report."""

    @abstractmethod
    def initialize(self, config: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def shutdown(self) -> None:
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    def is_initialized(self) -> bool:
        return getattr(self, '_initialized', False)

    def health_metrics(self) -> Dict[str, Any]:
        """Service-specific numbers included in the health report."""
        return {}

    def get_service_health(self) -> Dict[str, Any]:
        """
        Report whether the service is usable.

        Returns:
            Dict with 'status' ('healthy', 'degraded' or 'unhealthy'),
            'details' and 'metrics'
        """
        if not self.is_initialized:
            return {'status': 'unhealthy', 'details': f"{self.name} is not initialized", 'metrics': {}}

        try:
            metrics = self.health_metrics()
        except Exception as e:
            return {'status': 'degraded', 'details': f"{self.name} metrics unavailable: {e}", 'metrics': {}}
        return {'status': 'healthy', 'details': f"{self.name} is initialized", 'metrics': metrics}

    def __enter__(self):
        if not self.is_initialized:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
