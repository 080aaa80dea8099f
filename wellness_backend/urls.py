from django.urls import include, path

from orders import views

urlpatterns = [
    path('api/v1/orders/', include('orders.urls')),
    path('api/v1/total-amount/', views.total_spent_amount, name='total-amount'),
]
