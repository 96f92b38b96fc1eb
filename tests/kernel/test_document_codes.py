"""
Tests for document code allocation.

Codes come from locked counter rows, restart every month and are kept per
branch for branch-specific document types.
"""

from datetime import date

import pytest

from erp_kernel.exceptions import ValidationError
from erp_kernel.services.sequence_service import DocumentCodeService, format_document_code


class TestFormat:

    def test_plain_code(self):
        assert format_document_code("GR", date(2025, 3, 14), 7) == "GR-2503-0007"

    def test_branch_code(self):
        assert format_document_code("WB", date(2025, 3, 14), 12, "JKT") == "WB-JKT-2503-0012"


class TestNextCode:
    """Allocation through the counter table."""

    def test_numbers_increase_within_a_month(self, session):
        codes = DocumentCodeService(session)
        first = codes.next_code("goods_receipt", date(2025, 3, 1))
        second = codes.next_code("goods_receipt", date(2025, 3, 28))
        assert first == "GR-2503-0001"
        assert second == "GR-2503-0002"

    def test_numbering_restarts_each_month(self, session):
        codes = DocumentCodeService(session)
        codes.next_code("goods_receipt", date(2025, 3, 1))
        assert codes.next_code("goods_receipt", date(2025, 4, 1)) == "GR-2504-0001"

    def test_branches_have_separate_counters(self, session):
        codes = DocumentCodeService(session)
        assert codes.next_code("waybill", date(2025, 3, 1), "JKT") == "WB-JKT-2503-0001"
        assert codes.next_code("waybill", date(2025, 3, 1), "SBY") == "WB-SBY-2503-0001"
        assert codes.next_code("waybill", date(2025, 3, 2), "JKT") == "WB-JKT-2503-0002"

    def test_branch_specific_type_requires_initial(self, session):
        codes = DocumentCodeService(session)
        with pytest.raises(ValidationError) as exc_info:
            codes.next_code("sales_invoice", date(2025, 3, 1))
        assert exc_info.value.field_errors == [{"field": "branch_initial", "message": "required"}]

    def test_non_branch_type_ignores_initial(self, session):
        codes = DocumentCodeService(session)
        assert codes.next_code("supplier_invoice", date(2025, 3, 1), "JKT") == "PI-2503-0001"

    def test_prefix_override(self, session):
        codes = DocumentCodeService(session, prefixes={"goods_receipt": "RCV"})
        assert codes.next_code("goods_receipt", date(2025, 3, 1)) == "RCV-2503-0001"

    def test_unknown_document_type(self, session):
        with pytest.raises(KeyError):
            DocumentCodeService(session).next_code("credit_note", date(2025, 3, 1))

    def test_rolled_back_allocation_is_reused(self, session):
        """The counter only advances when the enclosing transaction commits."""
        codes = DocumentCodeService(session)
        nested = session.begin_nested()
        codes.next_code("goods_receipt", date(2025, 3, 1))
        nested.rollback()
        assert codes.next_code("goods_receipt", date(2025, 3, 1)) == "GR-2503-0001"
