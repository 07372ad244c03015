"""
Tests for invoice, payment and order documents.

Covers:
- Invoice amount invariants
- apply_payment producing a new version
- Payment reconciliation of applications + unapplied
- Order billability
"""

from dataclasses import replace
from datetime import date

import pytest

from billing_kernel.domain.documents import (
    Invoice,
    InvoiceStatus,
    OrderStatus,
    Payment,
    PaymentApplication,
    PaymentMethod,
)
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import InvoiceInvariantError, PaymentInvariantError


class TestInvoice:
    def test_issue_starts_unpaid(self):
        invoice = Invoice.issue(
            id="inv-1",
            customer_id="cust-1",
            invoice_number="INV-0001",
            invoice_date=date(2024, 1, 1),
            subtotal=Money.of("90.00"),
            tax_amount=Money.of("10.00"),
        )

        assert invoice.total == Money.of("100.00")
        assert invoice.balance_due == Money.of("100.00")
        assert invoice.amount_paid.is_zero
        assert invoice.status is InvoiceStatus.SENT
        assert invoice.version == 1
        assert invoice.is_open

    def test_total_must_equal_subtotal_plus_tax(self, make_invoice):
        good = make_invoice("inv-1", amount="100.00")
        with pytest.raises(InvoiceInvariantError) as exc_info:
            replace(good, total=Money.of("99.00"), balance_due=Money.of("99.00"))

        assert exc_info.value.code == "INVOICE_INVARIANT"
        assert exc_info.value.invoice_id == "inv-1"

    def test_overpaid_invoice_rejected(self, make_invoice):
        with pytest.raises(InvoiceInvariantError):
            make_invoice("inv-1", amount="100.00", paid="100.01")

    def test_balance_must_match(self, make_invoice):
        good = make_invoice("inv-1", amount="100.00", paid="40.00")
        with pytest.raises(InvoiceInvariantError):
            replace(good, balance_due=Money.of("50.00"))

    def test_voided_invoice_cannot_carry_payments(self, make_invoice):
        with pytest.raises(InvoiceInvariantError):
            make_invoice("inv-1", amount="100.00", paid="10.00", status=InvoiceStatus.VOIDED)

    def test_voided_invoice_is_not_open(self, make_invoice):
        invoice = make_invoice("inv-1", status=InvoiceStatus.VOIDED)
        assert not invoice.is_open

    def test_effective_due_date_falls_back_to_invoice_date(self, make_invoice):
        assert make_invoice("a", invoice_date=date(2024, 1, 5)).effective_due_date == date(2024, 1, 5)
        assert make_invoice(
            "b", invoice_date=date(2024, 1, 5), due_date=date(2024, 2, 4)
        ).effective_due_date == date(2024, 2, 4)

    def test_apply_partial_payment(self, make_invoice):
        invoice = make_invoice("inv-1", amount="100.00")

        updated = invoice.apply_payment("pay-1", Money.of("40.00"))

        assert updated.amount_paid == Money.of("40.00")
        assert updated.balance_due == Money.of("60.00")
        assert updated.status is InvoiceStatus.PARTIALLY_PAID
        assert updated.payments == ("pay-1",)
        assert updated.version == invoice.version + 1
        # Original untouched
        assert invoice.balance_due == Money.of("100.00")

    def test_apply_full_payment_marks_paid(self, make_invoice):
        invoice = make_invoice("inv-1", amount="100.00", paid="40.00")

        updated = invoice.apply_payment("pay-2", Money.of("60.00"))

        assert updated.balance_due.is_zero
        assert updated.status is InvoiceStatus.PAID
        assert not updated.is_open


class TestPayment:
    def test_applications_plus_unapplied_must_equal_amount(self):
        with pytest.raises(PaymentInvariantError) as exc_info:
            Payment(
                id="pay-1",
                customer_id="cust-1",
                payment_date=date(2024, 2, 1),
                amount=Money.of("50.00"),
                method=PaymentMethod.CASH,
                applications=(PaymentApplication("inv-1", "INV-1", Money.of("30.00")),),
                unapplied_amount=Money.of("10.00"),
            )

        assert exc_info.value.code == "PAYMENT_INVARIANT"

    def test_zero_amount_rejected(self):
        with pytest.raises(PaymentInvariantError):
            Payment(
                id="pay-1",
                customer_id="cust-1",
                payment_date=date(2024, 2, 1),
                amount=Money(0),
                method=PaymentMethod.CASH,
            )

    def test_zero_application_rejected(self):
        with pytest.raises(PaymentInvariantError):
            Payment(
                id="pay-1",
                customer_id="cust-1",
                payment_date=date(2024, 2, 1),
                amount=Money.of("10.00"),
                method=PaymentMethod.CASH,
                applications=(PaymentApplication("inv-1", "INV-1", Money(0)),),
                unapplied_amount=Money.of("10.00"),
            )

    def test_applied_to(self, make_payment):
        payment = make_payment(
            "pay-1",
            amount="130.00",
            applied=[("inv-1", "INV-1", "100.00"), ("inv-2", "INV-2", "30.00")],
        )

        assert payment.total_applied == Money.of("130.00")
        assert payment.applied_to("inv-2") == Money.of("30.00")
        assert payment.applied_to("inv-9").is_zero


class TestOrder:
    @pytest.mark.parametrize("status,billable", [
        (OrderStatus.DRAFT, False),
        (OrderStatus.ORDERED, True),
        (OrderStatus.READY_FOR_PICKUP, True),
        (OrderStatus.PICKED_UP, True),
        (OrderStatus.INVOICED, False),
        (OrderStatus.VOIDED, False),
    ])
    def test_billable_statuses(self, make_order, status, billable):
        assert make_order("ord-1", status=status).is_billable is billable
