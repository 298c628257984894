"""
URL configuration for chamba_backend project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path
from rest_framework_simplejwt.views import TokenRefreshView

from core.schema import ChambaSchemaView


def api_root(_request):
    return JsonResponse({
        'status': 'ok',
        'message': 'Chamba Tutorías backend is running',
        'schema': '/api/schema/',
    })


urlpatterns = [
    path('', api_root, name='api_root'),
    path('admin/', admin.site.urls),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/schema/', ChambaSchemaView.as_view(), name='api-schema'),
    path('api/', include('core.urls')),
]
