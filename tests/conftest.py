"""
Pytest fixtures for the ERP engine test suite.

Database tests run against ``DATABASE_URL`` when it is set (PostgreSQL in
CI) and against a throwaway SQLite file otherwise.  The schema is created
once per session; each test runs inside an outer transaction that is rolled
back at teardown, and every Session a test opens joins that transaction
through a SAVEPOINT, so ``session.commit()`` in the command layer only
releases the savepoint.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.db.engine import build_engine, create_tables, drop_tables
from erp_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.domain.values import Location
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from erp_kernel.services.sequence_service import DocumentCodeService
from erp_modules._orm_registry import import_all_orm_models
from erp_modules.billing.models import BillingKind
from erp_modules.billing.payments import PaymentService
from erp_modules.billing.service import BillingService
from erp_modules.catalog.service import CatalogService
from erp_modules.fulfillment.models import (
    FulfillmentKind,
    FulfillmentLineRequest,
    OrderLineRequest,
    SourceOrderKind,
)
from erp_modules.fulfillment.orders import SourceOrderService
from erp_modules.fulfillment.service import FulfillmentService
from erp_modules.inventory.models import AdjustmentLine, AdjustmentType
from erp_modules.inventory.service import InventoryService

TEST_ACTOR_ID = UUID("00000000-0000-4000-a000-000000000001")
SUPPLIER_ID = UUID("00000000-0000-4000-a000-000000000101")
OTHER_SUPPLIER_ID = UUID("00000000-0000-4000-a000-000000000102")
CUSTOMER_ID = UUID("00000000-0000-4000-a000-000000000201")
OTHER_CUSTOMER_ID = UUID("00000000-0000-4000-a000-000000000202")
WAREHOUSE_ID = UUID("00000000-0000-4000-a000-000000000301")
OTHER_WAREHOUSE_ID = UUID("00000000-0000-4000-a000-000000000302")
BRANCH_ID = UUID("00000000-0000-4000-a000-000000000401")

DOC_DATE = date(2025, 3, 1)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture erp_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, erp):
            erp.goods_receipt(...)
            logs = captured_logs()
            assert any(r["message"] == "fulfillment_document_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("erp_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


@pytest.fixture(scope="session")
def database_url(tmp_path_factory) -> str:
    """DATABASE_URL when set, otherwise a SQLite file private to this run."""
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{tmp_path_factory.mktemp('db') / 'erp_test.db'}"


@pytest.fixture(scope="session")
def db_engine(database_url):
    engine = build_engine(database_url)
    yield engine
    engine.dispose()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create the schema once and install the immutability listeners."""
    import_all_orm_models()
    drop_tables(db_engine)
    create_tables(db_engine)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables(db_engine)


@pytest.fixture
def db_connection(db_engine, db_tables):
    """One connection per test wrapped in a transaction that never commits."""
    connection = db_engine.connect()
    transaction = connection.begin()
    yield connection
    if transaction.is_active:
        transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(db_connection):
    """Sessions bound to the test connection; commit releases a savepoint."""
    return sessionmaker(
        bind=db_connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )


@pytest.fixture
def session(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def supplier_id() -> UUID:
    return SUPPLIER_ID


@pytest.fixture
def customer_id() -> UUID:
    return CUSTOMER_ID


@pytest.fixture
def warehouse() -> Location:
    return Location.warehouse(WAREHOUSE_ID)


@pytest.fixture
def other_warehouse() -> Location:
    return Location.warehouse(OTHER_WAREHOUSE_ID)


@pytest.fixture
def branch() -> Location:
    return Location.branch(BRANCH_ID)


def _decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class ErpBuilder:
    """
    Creates master data and documents through the real services.

    Quantities and prices may be given as ints or strings; they are turned
    into Decimal before reaching a service.
    """

    def __init__(self, session: Session, clock: DeterministicClock, actor_id: UUID):
        self.session = session
        self.clock = clock
        self.actor_id = actor_id
        self.codes = DocumentCodeService(session)
        self.catalog = CatalogService(session, clock)
        self.orders = SourceOrderService(session, clock, self.codes)
        self.fulfillment = FulfillmentService(session, clock, self.codes)
        self.billing = BillingService(session, clock, self.codes)
        self.payments = PaymentService(session, clock, self.codes, self.billing)
        self.inventory = InventoryService(session, clock, self.codes)

    def item(self, *, standard_unit="pcs", wholesale_unit=None, factor=None, name=None):
        code = f"ITM-{uuid4().hex[:8].upper()}"
        return self.catalog.create_item(
            code=code,
            name=name or f"Item {code}",
            standard_unit=standard_unit,
            wholesale_unit=wholesale_unit,
            wholesale_conversion_factor=_decimal(factor) if factor is not None else None,
            actor_id=self.actor_id,
        )

    def _order(self, kind, lines, party_id, tax_rate, location, branch_initial):
        return self.orders.create_source_order(
            kind=kind,
            party_id=party_id,
            order_date=DOC_DATE,
            lines=[
                OrderLineRequest(item.id, _decimal(quantity), _decimal(price))
                for item, quantity, price in lines
            ],
            actor_id=self.actor_id,
            tax_rate=_decimal(tax_rate) if tax_rate is not None else None,
            location=location,
            branch_initial=branch_initial,
        )

    def purchase_order(self, lines, *, supplier_id=SUPPLIER_ID, tax_rate=None):
        """``lines`` is a list of (item, quantity, unit_price)."""
        return self._order(
            SourceOrderKind.PURCHASE_ORDER, lines, supplier_id, tax_rate,
            Location.warehouse(WAREHOUSE_ID), "HQ",
        )

    def sales_order(self, lines, *, customer_id=CUSTOMER_ID):
        return self._order(
            SourceOrderKind.SALES_ORDER, lines, customer_id, None,
            Location.branch(BRANCH_ID), "JKT",
        )

    def _fulfill(self, kind, draws, location, branch_initial):
        order_ids = []
        for source_line, _ in draws:
            if source_line.source_order_id not in order_ids:
                order_ids.append(source_line.source_order_id)
        party_id = draws[0][0].source_order.party_id
        return self.fulfillment.create_fulfillment(
            kind=kind,
            source_order_ids=order_ids,
            lines=[
                FulfillmentLineRequest(source_line.id, _decimal(quantity))
                for source_line, quantity in draws
            ],
            document_date=DOC_DATE,
            location=location,
            party_id=party_id,
            actor_id=self.actor_id,
            branch_initial=branch_initial,
        )

    def goods_receipt(self, draws, *, warehouse=None):
        """``draws`` is a list of (source order line, quantity)."""
        return self._fulfill(
            FulfillmentKind.GOODS_RECEIPT, draws, warehouse or Location.warehouse(WAREHOUSE_ID), None,
        )

    def waybill(self, draws, *, branch=None):
        return self._fulfill(
            FulfillmentKind.WAYBILL, draws, branch or Location.branch(BRANCH_ID), "JKT",
        )

    def stock_in(self, item, location, quantity):
        return self.inventory.adjust_stock(
            location=location,
            lines=[AdjustmentLine(item.id, AdjustmentType.INCREASED, _decimal(quantity), "opening")],
            adjustment_date=DOC_DATE,
            actor_id=self.actor_id,
            branch_initial="HQ",
        )

    def supplier_invoice(self, lines, *, supplier_id=SUPPLIER_ID, **kwargs):
        return self.billing.create_billing(
            kind=BillingKind.SUPPLIER_INVOICE,
            fulfillment_line_ids=[line.id for line in lines],
            party_id=supplier_id,
            billing_date=DOC_DATE,
            actor_id=self.actor_id,
            **kwargs,
        )

    def sales_invoice(self, lines, *, customer_id=CUSTOMER_ID, tax_rate="11", **kwargs):
        return self.billing.create_billing(
            kind=BillingKind.SALES_INVOICE,
            fulfillment_line_ids=[line.id for line in lines],
            party_id=customer_id,
            billing_date=DOC_DATE,
            actor_id=self.actor_id,
            tax_rate=_decimal(tax_rate) if tax_rate is not None else None,
            branch_initial="JKT",
            **kwargs,
        )

    def pay(self, billing, amount, *, method="transfer"):
        return self.payments.record_payment(
            billing.id,
            amount=_decimal(amount),
            method=method,
            payment_date=DOC_DATE,
            actor_id=self.actor_id,
            branch_initial="HQ",
        )


@pytest.fixture
def erp(session, deterministic_clock, test_actor_id) -> ErpBuilder:
    return ErpBuilder(session, deterministic_clock, test_actor_id)
