"""
Property-based tests for the conservation rules.

Quantities are kept to a few decimal places and modest magnitudes so that
examples stay readable when a conservation check fails.
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from erp_engines.totals import Discount, LineAmount, TaxMode, compute_totals
from erp_engines.units import UnitSpec, to_standard, to_wholesale
from erp_kernel.db.types import ZERO, round_quantity
from erp_kernel.domain.values import DocumentReference
from erp_kernel.exceptions import NegativeStockError, OverReceiptError
from erp_modules.fulfillment.quantity_ledger import QuantityLedger
from erp_modules.inventory.ledger import StockLedger
from erp_modules.inventory.models import MovementType

quantities = st.decimals(
    min_value=Decimal("0.001"), max_value=Decimal("500"), places=3,
    allow_nan=False, allow_infinity=False,
)
money = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("1000000"), places=2,
    allow_nan=False, allow_infinity=False,
)

DB_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)


class TestUnitConversion:

    @given(
        quantity=st.decimals(min_value=Decimal("0"), max_value=Decimal("1000000"), places=9,
                             allow_nan=False, allow_infinity=False),
        factor=st.integers(min_value=1, max_value=10000),
    )
    def test_standard_wholesale_round_trip(self, quantity, factor):
        unit = UnitSpec("P-01", "pcs", "box", Decimal(factor))
        assert to_standard(to_wholesale(quantity, unit), unit) == round_quantity(quantity)


class TestTotals:

    @given(
        prices=st.lists(money, min_size=1, max_size=8),
        percent=st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2,
                            allow_nan=False, allow_infinity=False),
        tax_rate=st.sampled_from([None, Decimal("0"), Decimal("10"), Decimal("11")]),
        misc=money,
    )
    def test_grand_total_identity(self, prices, percent, tax_rate, misc):
        totals = compute_totals(
            [LineAmount(price) for price in prices],
            Discount.percentage(percent),
            TaxMode.ON_DISCOUNTED_SUBTOTAL,
            tax_rate=tax_rate,
            miscellaneous_cost=misc,
        )
        assert totals.subtotal == sum(prices, ZERO)
        assert ZERO <= totals.discount_amount <= totals.subtotal
        assert totals.grand_total == (
            totals.subtotal - totals.discount_amount + totals.tax_amount + totals.miscellaneous_cost
        )


class TestQuantityConservation:

    @DB_SETTINGS
    @given(ordered=quantities, draws=st.lists(quantities, min_size=1, max_size=6))
    def test_received_never_exceeds_ordered(self, erp, ordered, draws):
        item = erp.item()
        order = erp.purchase_order([(item, ordered, "1")])
        line = order.lines[0]
        ledger = QuantityLedger(erp.session)

        accepted = ZERO
        for draw in draws:
            fits = accepted + draw <= ordered
            if fits:
                erp.goods_receipt([(line, draw)])
                accepted += draw
            else:
                with pytest.raises(OverReceiptError):
                    with erp.session.begin_nested():
                        erp.goods_receipt([(line, draw)])
            assert ledger.received(line.id) == accepted
            assert ledger.remaining(line.id) == ordered - accepted


class TestStockChain:

    movements = st.lists(
        st.tuples(
            st.sampled_from([MovementType.IN, MovementType.OUT, MovementType.DECREASED, MovementType.BALANCED]),
            quantities,
        ),
        min_size=1,
        max_size=10,
    )

    @DB_SETTINGS
    @given(steps=movements)
    def test_chain_reconciles_after_any_sequence(self, erp, warehouse, steps):
        item = erp.item()
        ledger = StockLedger(erp.session, erp.clock)
        reference = DocumentReference("stock_adjustment", "SA-HQ-2503-9999")
        expected = ZERO

        for movement_type, quantity in steps:
            if movement_type.sign < 0 and quantity > expected:
                with pytest.raises(NegativeStockError):
                    with erp.session.begin_nested():
                        ledger.append(item.id, warehouse, movement_type, quantity, reference, erp.actor_id)
                continue
            ledger.append(item.id, warehouse, movement_type, quantity, reference, erp.actor_id)
            if movement_type.sign > 0:
                expected += quantity
            elif movement_type.sign < 0:
                expected -= quantity
            else:
                expected = quantity

        assert ledger.current_level(item.id, warehouse) == expected
        assert ledger.verify_chain(item.id, warehouse) == len(ledger.entries_for(item.id, warehouse))
        assert expected >= ZERO
