import uuid
from django.db import models
from django.utils import timezone


class OrderModel(models.Model):
    # UUID PK exposed in API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # ORD-YYYYMMDD-NNNN; uniqueness enforced here, regenerated by the repository
    order_number = models.CharField(max_length=20, unique=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        COMPLETED = "completed"
        CANCELLED = "cancelled"

    class PaymentMethod(models.TextChoices):
        CASH = "cash"
        CARD = "card"
        MOBILE = "mobile"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        PAID = "paid"
        REFUNDED = "refunded"

    customer_id = models.UUIDField(null=True, blank=True)
    customer_name = models.CharField(max_length=120)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    notes = models.CharField(max_length=500, blank=True, null=True)

    # Saved order whose stock decrement did not complete
    needs_reconciliation = models.BooleanField(default=False)
    reconciliation_reason = models.CharField(max_length=500, blank=True, default="")

    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"]),
        ]


class OrderLineModel(models.Model):
    order = models.ForeignKey(OrderModel, related_name="items", on_delete=models.PROTECT)
    # Plain reference: the product may live in the remote inventory service
    product_id = models.CharField(max_length=64)
    name = models.CharField(max_length=100)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField()
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    position = models.PositiveSmallIntegerField(default=0)

    class Meta:
        db_table = "order_items"
        ordering = ["position"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
