"""Services for the ERP kernel (write side)."""

from erp_kernel.services.base import BaseService
from erp_kernel.services.retry_service import is_transient, run_with_retry
from erp_kernel.services.sequence_service import DocumentCodeService, DocumentSequenceModel

__all__ = [
    "BaseService",
    "DocumentCodeService",
    "DocumentSequenceModel",
    "is_transient",
    "run_with_retry",
]
