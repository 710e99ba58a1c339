from django.urls import path
from . import views

urlpatterns = [
    path('health/mpesa/', views.mpesa_health, name='mpesa-health'),
    path('api/payments/mpesa/stkpush/', views.initiate_stk_push, name='mpesa-stkpush'),
    path('api/payments/mpesa/callback/', views.mpesa_callback, name='mpesa-callback'),
    path('api/payments/transactions/query/', views.query_transaction, name='transaction-query'),
    path('api/payments/transactions/<str:order_id>/', views.order_transactions, name='order-transactions'),
    path('api/admin/payments/b2b/', views.b2b_payment, name='mpesa-b2b'),
]
