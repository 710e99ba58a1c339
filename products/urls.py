from django.urls import path
from . import views

urlpatterns = [
    path('api/products/', views.products, name='products'),
    path('api/products/<str:product_id>/', views.get_product, name='product-detail'),
]
