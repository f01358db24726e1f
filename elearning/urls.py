"""
E-Learning Application URL Configuration

URL Structure:
- /api/elearning/token/: Cookie based JWT login, refresh and logout
- /api/elearning/courses/: Public course catalog

Author: DSP Development Team
Version: 1.0.0
"""

from typing import List
from django.urls import path, include, URLPattern

from .accounts import views as account_views
from .courses import views as course_views

app_name = 'elearning'

# --- Authentication and Token Management ---

token_urlpatterns: List[URLPattern] = [
    path('', account_views.CookieTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('refresh/', account_views.CookieTokenRefreshView.as_view(), name='token_refresh'),
    path('logout/', account_views.LogoutView.as_view(), name='logout'),
]

# --- Course Catalog ---

courses_urlpatterns: List[URLPattern] = [
    path('', course_views.CourseListView.as_view(), name='course-list'),
    path('<int:pk>/', course_views.CourseDetailView.as_view(), name='course-detail'),
]

urlpatterns: List[URLPattern] = [
    path('token/', include(token_urlpatterns)),
    path('courses/', include(courses_urlpatterns)),
]
