from django.urls import path
from . import views

urlpatterns = [
    path('', views.orders_collection, name='orders'),
    path('avg-order-value/', views.avg_order_value, name='avg-order-value'),
    path('user/my-orders/', views.my_orders, name='my-orders'),
    path('user/my-orders/count/', views.my_orders_count, name='my-orders-count'),
    path('admin/count/', views.count_orders, name='admin-order-count'),
    path('admin/users-with-orders/', views.users_with_orders, name='users-with-orders'),
    path('<str:order_id>/', views.order_detail, name='order-detail'),
]
