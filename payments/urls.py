from django.urls import path
from . import views

urlpatterns = [
    path('mpesa/initiate/', views.mpesa_initiate, name='mpesa_initiate'),
    path('mpesa/callback/', views.mpesa_callback, name='mpesa_callback'),
    path('mpesa/status/<str:checkout_request_id>/', views.transaction_status, name='transaction_status'),
    path('mpesa/status/<str:checkout_request_id>/query/', views.gateway_status_query, name='gateway_status_query'),
    path('transactions/', views.transactions_list, name='transactions_list'),
    path('subscriptions/', views.subscription_status, name='subscription_status'),
    path('subscriptions/trial/', views.free_trial, name='free_trial'),
]
