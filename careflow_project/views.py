from django.http import JsonResponse

def index(request):
    return JsonResponse({
        "message": "CareFlow Vision Payments API",
        "endpoints": {
            "admin": "/admin/",
            "mpesa_initiate": "/payments/mpesa/initiate/",
            "mpesa_callback": "/payments/mpesa/callback/",
            "transaction_status": "/payments/mpesa/status/<checkout_request_id>/",
            "gateway_query": "/payments/mpesa/status/<checkout_request_id>/query/",
            "transactions": "/payments/transactions/?userId=&userType=",
            "subscription": "/payments/subscriptions/?userId=&userType=",
            "free_trial": "/payments/subscriptions/trial/",
        }
    })
