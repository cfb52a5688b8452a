"""Domain Services.

This package contains domain services that implement business logic
without infrastructure dependencies.
"""

from src.domain.services.category_resolver import CategoryResolver
from src.domain.services.reference_resolver import ReferenceResolutionEngine
from src.domain.services.case_service import CaseService

__all__ = ['CategoryResolver', 'ReferenceResolutionEngine', 'CaseService']
