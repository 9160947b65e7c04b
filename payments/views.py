import logging
from django.db import IntegrityError, transaction
from rest_framework import viewsets, status, permissions
from rest_framework.decorators import action
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema

from core.exceptions import ConflictError, NotFoundError
from .models import Transaction
from .reconciliation import get_status_payload, reconcile_callback, reconcile_gateway_status
from .utils import PesaFluxService
from .serializers import (
    InitiatePaymentSerializer,
    StatusQuerySerializer,
    TransactionStatusSerializer,
    WebhookSerializer,
)

logger = logging.getLogger(__name__)


@extend_schema(tags=["Payments"])
class PaymentViewSet(viewsets.GenericViewSet):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def get_serializer_class(self):
        if self.action == "initiate":
            return InitiatePaymentSerializer
        elif self.action in ("check_status", "refresh"):
            return StatusQuerySerializer
        elif self.action == "webhook":
            return WebhookSerializer
        return TransactionStatusSerializer

    @extend_schema(
        summary="Initiate STK Push",
        request=InitiatePaymentSerializer,
        responses={200: {"description": "Push dispatched; returns the request id to poll"}},
    )
    @action(detail=False, methods=["post"])
    def initiate(self, request):
        """
        Validates the checkout form and asks PesaFlux to prompt the payer.
        """
        serializer = InitiatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if Transaction.objects.filter(reference=data["reference"]).exists():
            raise ConflictError("A payment with this reference already exists.")

        pesaflux = PesaFluxService()
        result = pesaflux.stk_push(
            phone=data["phone"],
            amount=data["amount"],
            email=data["email"],
            reference=data["reference"],
        )

        try:
            with transaction.atomic():
                txn = Transaction.objects.create(
                    reference=data["reference"],
                    transaction_request_id=result["transaction_request_id"],
                    amount=data["amount"],
                    phone=data["phone"],
                    email=data["email"],
                    status=Transaction.Status.PENDING,
                    gateway_response=result["raw"],
                )
        except IntegrityError:
            logger.error(
                f"Push for {data['reference']} was dispatched but the record already exists "
                f"(request id {result['transaction_request_id']})"
            )
            if Transaction.objects.filter(reference=data["reference"]).exists():
                raise ConflictError("A payment with this reference already exists.")
            raise ConflictError(
                "The payment service returned a request id that is already recorded."
            )

        logger.info(
            f"Payment initiated for {txn.phone} - Ref: {txn.reference} "
            f"- Request: {txn.transaction_request_id}"
        )

        return Response(
            {
                "message": "Check your phone for the M-Pesa prompt.",
                "success": True,
                "request_id": txn.transaction_request_id,
                "transaction_request_id": txn.transaction_request_id,
                "reference": txn.reference,
                "status": txn.status,
            },
            status=status.HTTP_200_OK,
        )

    @extend_schema(
        summary="Poll Payment Status",
        request=StatusQuerySerializer,
        responses={200: TransactionStatusSerializer},
    )
    @action(detail=False, methods=["post"], url_path="status", url_name="status")
    def check_status(self, request):
        """
        Returns the stored status. Unknown request ids read as pending.
        """
        serializer = StatusQuerySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payload = get_status_payload(serializer.validated_data["transaction_request_id"])
        return Response({"message": f"Transaction is {payload['status']}", **payload})

    @extend_schema(
        summary="Refresh Status From Gateway",
        request=StatusQuerySerializer,
        responses={200: TransactionStatusSerializer},
    )
    @action(detail=False, methods=["post"])
    def refresh(self, request):
        """
        Asks PesaFlux directly and reconciles the answer into the stored record.
        """
        serializer = StatusQuerySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        request_id = serializer.validated_data["transaction_request_id"]

        if not Transaction.objects.filter(transaction_request_id=request_id).exists():
            raise NotFoundError()

        gateway_data = PesaFluxService().transaction_status(request_id)

        try:
            txn = reconcile_gateway_status(request_id, gateway_data)
        except Transaction.DoesNotExist:
            raise NotFoundError()

        payload = TransactionStatusSerializer(txn).data
        return Response({"message": f"Transaction is {txn.status}", **payload})

    @extend_schema(
        summary="Webhook Handler",
        request=WebhookSerializer,
        responses={200: {"description": "Webhook acknowledged"}},
    )
    @action(detail=False, methods=["post"])
    def webhook(self, request):
        """
        Server-side webhook handler called by PesaFlux.
        Anything past JSON parsing is acknowledged with 200 so the gateway
        does not keep retrying.
        """
        payload = request.data
        logger.info(f"PesaFlux webhook received: {payload}")

        serializer = WebhookSerializer(data=payload)
        if not serializer.is_valid():
            logger.error(f"Invalid webhook payload: {serializer.errors}")
            return Response({"message": "Webhook received"}, status=status.HTTP_200_OK)

        raw = payload.dict() if hasattr(payload, "dict") else payload

        try:
            txn = reconcile_callback(serializer.validated_data, raw=raw)
        except Exception as e:
            logger.error(f"Webhook processing failed: {str(e)}", exc_info=True)
            return Response(
                {"message": "Webhook received but processing failed"},
                status=status.HTTP_200_OK,
            )

        if txn is None:
            return Response({"message": "Webhook received"}, status=status.HTTP_200_OK)

        return Response(
            {"message": "Webhook processed successfully", "reference": txn.reference},
            status=status.HTTP_200_OK,
        )
