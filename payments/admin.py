from django.contrib import admin
from .models import Subscriber, Transaction

@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ('checkout_request_id', 'user_type', 'user_id', 'plan', 'amount', 'status', 'created_at')
    search_fields = ('checkout_request_id', 'merchant_request_id', 'phone_number', 'user_id', 'mpesa_receipt_number')
    list_filter = ('status', 'user_type')
    readonly_fields = [f.name for f in Transaction._meta.fields]

    # Transactions are an audit trail; settled only by the gateway callback.
    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Subscriber)
class SubscriberAdmin(admin.ModelAdmin):
    list_display = ('user_type', 'user_id', 'subscription_tier', 'subscribed', 'subscription_end')
    search_fields = ('user_id',)
    list_filter = ('subscribed', 'user_type', 'subscription_tier')
