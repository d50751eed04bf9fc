from django.urls import path
from .views import CustomTokenObtainPairView, CustomTokenRefreshView, user_me, activity_log_list

urlpatterns = [
    # Auth endpoints
    path('auth/login/', CustomTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('auth/me/', user_me, name='user-me'),

    # ActivityLog endpoints
    path('activity-logs/', activity_log_list, name='activity-log-list'),
]
