import json

import httpx
import pytest
from pydantic import ValidationError

from src.exceptions import InsufficientFunds, InvalidBookingState, PaymentProviderError
from src.models import LedgerEntry, Ticket
from src.bookings.schemas import PosBookingRequest
from src.payments.pawapay_service import MOCK_DEPOSIT_PREFIX, PawaPayClient, format_amount
from src.payments.pos_service import PointOfSaleService
from src.payments.settlement_service import PaymentSettlementService, extract_order_id

PROVIDER_URL = "https://pawapay.test"


@pytest.fixture
def mock_client():
    return PawaPayClient(token="", environment="development")


@pytest.fixture
def settlement(db, booking_service, mock_client):
    return PaymentSettlementService(db, booking_service=booking_service, client=mock_client)


@pytest.fixture
def booking(trip, booking_service, make_request):
    return booking_service.create_booking(make_request())


def provider_client(handler, token="secret-token"):
    return PawaPayClient(
        base_url=PROVIDER_URL,
        token=token,
        environment="production",
        transport=httpx.MockTransport(handler)
    )


# ================================
# Settlement
# ================================
def test_mock_initiation_records_deposit(settlement, booking, booking_service):
    initiation = settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA")

    assert initiation.deposit_id.startswith(MOCK_DEPOSIT_PREFIX)
    assert initiation.amount == 2100
    assert initiation.currency == "GHS"

    stored = booking_service.require_booking(booking.booking_id)
    assert stored.payment_reference == initiation.deposit_id
    assert stored.payment_method == "MOBILE_MONEY"
    assert stored.payment_status == "PENDING"


def test_completed_callback_is_idempotent(db, settlement, booking, booking_service):
    deposit_id = settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA").deposit_id
    payload = {"depositId": deposit_id, "status": "COMPLETED"}

    first = settlement.handle_deposit_callback(payload)
    second = settlement.handle_deposit_callback(payload)

    assert first.action == "confirmed"
    assert first.ticket_id is not None
    assert second.action == "duplicate"

    stored = booking_service.require_booking(booking.booking_id)
    assert stored.status == "CONFIRMED"
    assert stored.payment_status == "PAID"
    assert db.query(Ticket).filter(Ticket.booking_id == booking.booking_id).count() == 1
    assert db.query(LedgerEntry).filter(LedgerEntry.entry_type == "CREDIT").count() == 1


def test_callback_matched_through_order_id_metadata(settlement, booking, booking_service):
    outcome = settlement.handle_deposit_callback({
        "depositId": "dep-123",
        "status": "COMPLETED",
        "metadata": [{"fieldName": "orderId", "fieldValue": booking.booking_id}]
    })

    assert outcome.action == "confirmed"
    assert outcome.booking_id == booking.booking_id
    assert booking_service.require_booking(booking.booking_id).payment_reference == "dep-123"


def test_failed_callback_marks_payment_failed(settlement, booking, booking_service):
    deposit_id = settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA").deposit_id

    outcome = settlement.handle_deposit_callback({"depositId": deposit_id, "status": "FAILED"})

    assert outcome.action == "failed"
    stored = booking_service.require_booking(booking.booking_id)
    assert stored.payment_status == "FAILED"
    assert stored.status == "PENDING"

    # A new attempt puts the booking back to PENDING payment
    settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA")
    assert booking_service.require_booking(booking.booking_id).payment_status == "PENDING"


def test_failure_of_superseded_deposit_is_ignored(settlement, booking, booking_service):
    first = settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA").deposit_id
    second = settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA").deposit_id

    outcome = settlement.handle_deposit_callback({
        "depositId": first,
        "status": "FAILED",
        "metadata": [{"fieldName": "orderId", "fieldValue": booking.booking_id}]
    })

    assert outcome.action == "ignored"
    assert outcome.booking_id == booking.booking_id
    stored = booking_service.require_booking(booking.booking_id)
    assert stored.payment_reference == second
    assert stored.payment_status == "PENDING"

    assert settlement.handle_deposit_callback({"depositId": second, "status": "COMPLETED"}).action == "confirmed"


def test_intermediate_status_is_pending(settlement, booking):
    deposit_id = settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA").deposit_id
    assert settlement.handle_deposit_callback({"depositId": deposit_id, "status": "SUBMITTED"}).action == "pending"


def test_completion_for_cancelled_booking(settlement, booking, booking_service):
    deposit_id = settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA").deposit_id
    booking_service.cancel_booking(booking.booking_id, "USER-1")

    outcome = settlement.handle_deposit_callback({"depositId": deposit_id, "status": "COMPLETED"})

    assert outcome.action == "cancelled_booking"
    assert booking_service.require_booking(booking.booking_id).status == "CANCELLED"


def test_unknown_deposit_and_missing_id(settlement, booking):
    assert settlement.handle_deposit_callback({"depositId": "nobody", "status": "COMPLETED"}).action == "not_found"
    assert settlement.handle_deposit_callback({"status": "COMPLETED"}).action == "ignored"


def test_polling_settles_mock_deposit(settlement, booking, booking_service):
    settlement.initiate_mobile_money_payment(booking.booking_id, "+233240000000", "MTN_MOMO_GHA")

    outcome = settlement.poll_payment_status(booking.booking_id)
    assert outcome.action == "confirmed"
    assert booking_service.require_booking(booking.booking_id).status == "CONFIRMED"

    assert settlement.poll_payment_status(booking.booking_id).action == "duplicate"


def test_polling_without_a_deposit(settlement, booking):
    with pytest.raises(InvalidBookingState):
        settlement.poll_payment_status(booking.booking_id)


def test_extract_order_id_shapes():
    assert extract_order_id([{"fieldName": "orderId", "fieldValue": "BKG-1"}]) == "BKG-1"
    assert extract_order_id({"orderId": "BKG-2"}) == "BKG-2"
    assert extract_order_id([{"fieldName": "other", "fieldValue": "x"}]) is None
    assert extract_order_id(None) is None


# ================================
# Point of sale
# ================================
@pytest.fixture
def pos(db, booking_service, settlement):
    return PointOfSaleService(db, booking_service=booking_service, settlement=settlement)


def pos_request(**overrides):
    data = dict(
        trip_id="TRIP-1",
        from_stop_id="S1",
        to_stop_id="S2",
        seat_number="5a",
        passenger_name="Yaw Asante",
        passenger_phone="+233 24 000 0000",
        booked_by="AGENT-1",
        booked_by_role="operator"
    )
    data.update(overrides)
    return PosBookingRequest(**data)


def test_cash_pos_booking_is_paid_at_once(trip, pos):
    result = pos.create_pos_booking(pos_request())

    assert result.payment_status == "PAID"
    assert result.ticket is not None
    booking = result.booking
    assert booking.status == "CONFIRMED"
    assert booking.booking_channel == "POS"
    assert booking.seat_number == "5A"
    assert booking.user_id == "GUEST-233240000000"
    assert booking.booked_by == "AGENT-1"
    assert booking.payment_method == "CASH"
    assert booking.payment_reference == f"POS-{booking.booking_id}"


def test_mobile_money_pos_booking_sends_prompt(trip, pos, settlement, booking_service):
    result = pos.create_pos_booking(pos_request(payment_method="MOBILE_MONEY", user_id="USER-9"))

    assert result.payment_status == "PENDING_AUTHORIZATION"
    assert result.ticket is None
    assert result.deposit_id.startswith(MOCK_DEPOSIT_PREFIX)
    assert result.booking.user_id == "USER-9"
    assert result.booking.status == "PENDING"
    assert result.booking.payment_method == "MOBILE_MONEY"

    outcome = settlement.handle_deposit_callback({"depositId": result.deposit_id, "status": "COMPLETED"})
    assert outcome.action == "confirmed"
    assert booking_service.require_booking(result.booking.booking_id).status == "CONFIRMED"


def test_pos_booking_kept_when_prompt_fails(db, trip, booking_service):
    def handler(request):
        return httpx.Response(200, json={
            "status": "REJECTED",
            "rejectionReason": {"rejectionCode": "INSUFFICIENT_BALANCE", "rejectionMessage": "Not enough funds"}
        })

    settlement = PaymentSettlementService(db, booking_service=booking_service, client=provider_client(handler))
    pos = PointOfSaleService(db, booking_service=booking_service, settlement=settlement)

    result = pos.create_pos_booking(pos_request(payment_method="MOBILE_MONEY"))

    assert result.payment_status == "FAILED"
    assert result.message == "Booking created but payment failed: Not enough funds"
    stored = booking_service.require_booking(result.booking.booking_id)
    assert stored.status == "PENDING"
    assert stored.payment_status == "PENDING"
    assert "5A" in booking_service.trips.require_trip("TRIP-1").booked_seat_list


def test_pos_sales_take_cash_or_mobile_money_only():
    with pytest.raises(ValidationError):
        pos_request(payment_method="CARD")
    with pytest.raises(ValidationError):
        pos_request(booked_by=None)


# ================================
# Provider client
# ================================
def test_format_amount():
    assert format_amount(1250) == "12.50"
    assert format_amount(2100) == "21.00"
    assert format_amount(5) == "0.05"


def test_mock_mode_only_outside_production():
    assert PawaPayClient(token="", environment="development").mock_mode is True
    assert PawaPayClient(token="", environment="production").mock_mode is False
    assert PawaPayClient(token="tok", environment="development").mock_mode is False


def test_deposit_request_shape():
    captured = []

    def handler(request):
        body = json.loads(request.content)
        captured.append((request, body))
        return httpx.Response(200, json={"depositId": body["depositId"], "status": "ACCEPTED"})

    result = provider_client(handler).initiate_deposit(
        amount_minor=2100,
        currency="GHS",
        phone_number="233240000000",
        correspondent="MTN_MOMO_GHA",
        description="Ticket BKG-ABCDEF and more",
        order_id="BKG-ABCDEF"
    )

    request, body = captured[0]
    assert request.method == "POST"
    assert str(request.url) == f"{PROVIDER_URL}/deposits"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert body["amount"] == "21.00"
    assert body["payer"] == {"type": "MSISDN", "address": {"value": "233240000000"}}
    assert body["metadata"] == [{"fieldName": "orderId", "fieldValue": "BKG-ABCDEF"}]
    assert len(body["statementDescription"]) <= 20
    assert result.status == "ACCEPTED"
    assert result.deposit_id == body["depositId"]


def test_insufficient_funds_rejection():
    def handler(request):
        return httpx.Response(200, json={
            "status": "REJECTED",
            "rejectionReason": {"rejectionCode": "INSUFFICIENT_BALANCE", "rejectionMessage": "Not enough funds"}
        })

    with pytest.raises(InsufficientFunds) as exc_info:
        provider_client(handler).initiate_deposit(2100, "GHS", "233240000000", "MTN_MOMO_GHA", "Ticket", "BKG-1")
    assert exc_info.value.message == "Not enough funds"


def test_other_rejection_is_a_provider_error():
    def handler(request):
        return httpx.Response(200, json={
            "status": "REJECTED",
            "rejectionReason": {"rejectionCode": "INVALID_CORRESPONDENT"}
        })

    with pytest.raises(PaymentProviderError):
        provider_client(handler).initiate_deposit(2100, "GHS", "233240000000", "NOPE", "Ticket", "BKG-1")


def test_provider_http_error():
    def handler(request):
        return httpx.Response(500, json={"message": "upstream exploded"})

    with pytest.raises(PaymentProviderError) as exc_info:
        provider_client(handler).check_status("dep-1")
    assert exc_info.value.details == {"status_code": 500}
    assert exc_info.value.message == "upstream exploded"


def test_provider_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentProviderError) as exc_info:
        provider_client(handler).check_status("dep-1")
    assert exc_info.value.message == "Payment provider unreachable"


def test_status_check_reads_first_listed_deposit():
    def handler(request):
        assert request.url.path == "/deposits/dep-9"
        return httpx.Response(200, json=[{"depositId": "dep-9", "status": "COMPLETED"}])

    assert provider_client(handler).check_status("dep-9") == "COMPLETED"
    assert PawaPayClient(token="", environment="development").check_status(f"{MOCK_DEPOSIT_PREFIX}x") == "COMPLETED"
