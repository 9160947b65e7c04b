from django.http import JsonResponse


def health_check(request):
    return JsonResponse({"status": "healthy"})


def root_view(request):
    return JsonResponse(
        {
            "status": "success",
            "status_code": 200,
            "message": "PesaFlux checkout API.",
            "data": {
                "initiate": "/api/v1/payments/initiate/",
                "status": "/api/v1/payments/status/",
                "refresh": "/api/v1/payments/refresh/",
                "webhook": "/api/v1/payments/webhook/",
                "docs": "/api/docs/",
            },
        }
    )
