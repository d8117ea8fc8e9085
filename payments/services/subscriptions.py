import logging
from datetime import timedelta

from django.conf import settings
from django.db import DatabaseError, transaction as db_transaction
from django.utils import timezone

from ..exceptions import PersistenceError, ValidationError
from ..models import Subscriber
from ..validators import validate_identifier, validate_user_type

logger = logging.getLogger(__name__)

TRIAL_TIER = 'Free Trial'


def activate_subscription(txn, now=None):
    """Subscribe the owner of a completed transaction to its plan."""
    now = now or timezone.now()
    subscriber, _ = Subscriber.objects.update_or_create(
        user_id=txn.user_id,
        user_type=txn.user_type,
        defaults={
            'subscribed': True,
            'subscription_tier': txn.plan,
            'subscription_end': now + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS),
        },
    )
    logger.info(
        "Subscription %r active for %s:%s until %s",
        txn.plan, txn.user_type, txn.user_id, subscriber.subscription_end.isoformat(),
    )
    return subscriber


def get_subscription(user_id, user_type):
    user_id = validate_identifier(user_id, "userId")
    user_type = validate_user_type(user_type)
    try:
        return Subscriber.objects.filter(user_id=user_id, user_type=user_type).first()
    except DatabaseError as e:
        raise PersistenceError("Subscription lookup failed") from e


def activate_trial(user_id, user_type, now=None):
    """Start the user's one free trial.

    Refused once the user has ever been subscribed, paid or trial, whether or
    not that subscription has since expired.
    """
    user_id = validate_identifier(user_id, "userId")
    user_type = validate_user_type(user_type)
    now = now or timezone.now()

    try:
        with db_transaction.atomic():
            subscriber, _ = Subscriber.objects.select_for_update().get_or_create(
                user_id=user_id, user_type=user_type,
            )
            if subscriber.is_active:
                raise ValidationError("You already have an active subscription")
            if subscriber.subscribed or subscriber.subscription_tier == TRIAL_TIER:
                raise ValidationError("Free trial has already been used")
            subscriber.subscribed = True
            subscriber.subscription_tier = TRIAL_TIER
            subscriber.subscription_end = now + timedelta(days=settings.TRIAL_PERIOD_DAYS)
            subscriber.save()
    except DatabaseError as e:
        raise PersistenceError("Trial could not be activated") from e

    logger.info("Free trial activated for %s:%s until %s", user_type, user_id, subscriber.subscription_end.isoformat())
    return subscriber
