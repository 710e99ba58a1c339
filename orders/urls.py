from django.urls import path
from . import views

urlpatterns = [
    path('api/orders/', views.create_order, name='create-order'),
    path('api/orders/my-orders/', views.get_user_orders, name='my-orders'),
    path('api/orders/number/<str:order_number>/', views.get_order_by_number, name='order-by-number'),
    path('api/orders/<str:order_id>/', views.get_order, name='order-detail'),
    path('api/orders/<str:order_id>/cancel/', views.cancel_order, name='cancel-order'),
    path('api/admin/orders/', views.list_orders, name='admin-orders'),
    path('api/admin/orders/analytics/', views.order_analytics, name='admin-order-analytics'),
    path('api/admin/orders/<str:order_id>/', views.delete_order, name='admin-delete-order'),
    path('api/admin/orders/<str:order_id>/status/', views.update_order_status, name='admin-order-status'),
    path('api/admin/orders/<str:order_id>/shipping/', views.update_shipping_status, name='admin-order-shipping'),
    path('api/webhooks/payment/', views.payment_webhook, name='payment-webhook'),
]
