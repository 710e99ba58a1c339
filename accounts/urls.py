from django.urls import path
from . import views

urlpatterns = [
    path('api/auth/me/', views.me, name='auth-me'),
]
