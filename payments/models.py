import uuid
from django.db import models
from django.utils import timezone


class UserType(models.TextChoices):
    PATIENT = 'patient', 'Patient'
    DOCTOR = 'doctor', 'Doctor'


class Transaction(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=128)
    user_type = models.CharField(max_length=16, choices=UserType.choices)
    amount = models.PositiveIntegerField()  # whole KES
    plan = models.CharField(max_length=128)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    phone_number = models.CharField(max_length=16)  # +2547XXXXXXXX

    # Gateway references
    checkout_request_id = models.CharField(max_length=128, unique=True)
    merchant_request_id = models.CharField(max_length=128, blank=True, null=True)
    result_code = models.IntegerField(blank=True, null=True)
    result_desc = models.CharField(max_length=256, blank=True, null=True)
    mpesa_receipt_number = models.CharField(max_length=64, blank=True, null=True)

    raw_callback = models.JSONField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user_id', 'user_type'], name='payments_txn_user_idx'),
            models.Index(fields=['status'], name='payments_txn_status_idx'),
        ]

    def __str__(self):
        return f"{self.checkout_request_id} {self.amount} KES - {self.status}"


class Subscriber(models.Model):
    user_id = models.CharField(max_length=128)
    user_type = models.CharField(max_length=16, choices=UserType.choices)
    subscribed = models.BooleanField(default=False)
    subscription_tier = models.CharField(max_length=128, blank=True, null=True)
    subscription_end = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user_id', 'user_type'], name='unique_subscriber_per_user'),
        ]

    def __str__(self):
        return f"{self.user_type}:{self.user_id} {self.subscription_tier} - {'active' if self.is_active else 'inactive'}"

    @property
    def is_active(self):
        return bool(
            self.subscribed
            and self.subscription_end is not None
            and self.subscription_end > timezone.now()
        )
