"""
E-Learning Authentication Views

Cookie based JWT login for buyers. Tokens never appear in response bodies;
the payment API reads the ``access_token`` cookie (see
``backend.custom_auth.JWTAuthentication``).

Views:
- CookieTokenObtainPairView: Login, sets access and refresh cookies
- CookieTokenRefreshView: Issues a new access token from the refresh cookie
- LogoutView: Clears both cookies

Author: DSP Development Team
Version: 1.0.0
"""

from django.conf import settings
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.views import TokenObtainPairView

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def _set_token_cookie(response: Response, name: str, value: str, lifetime) -> None:
    response.set_cookie(
        name,
        value,
        httponly=True,
        secure=not settings.DEBUG,
        samesite="Lax",
        path="/",
        max_age=int(lifetime.total_seconds()),
    )


class CookieTokenObtainPairView(TokenObtainPairView):
    """
    SimpleJWT login that moves both tokens into HTTP-only cookies.
    """

    def post(self, request, *args, **kwargs):
        response = super().post(request, *args, **kwargs)
        if response.status_code == status.HTTP_200_OK:
            refresh = response.data.pop("refresh", None)
            access = response.data.pop("access", None)
            if refresh:
                _set_token_cookie(response, REFRESH_COOKIE, refresh, settings.SIMPLE_JWT["REFRESH_TOKEN_LIFETIME"])
            if access:
                _set_token_cookie(response, ACCESS_COOKIE, access, settings.SIMPLE_JWT["ACCESS_TOKEN_LIFETIME"])
        return response


class CookieTokenRefreshView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        refresh_token = request.COOKIES.get(REFRESH_COOKIE)
        if not refresh_token:
            return Response({"detail": "Refresh token not provided"}, status=status.HTTP_400_BAD_REQUEST)

        serializer = TokenRefreshSerializer(data={"refresh": refresh_token})
        try:
            serializer.is_valid(raise_exception=True)
        except TokenError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        response = Response(status=status.HTTP_200_OK)
        if data.get("refresh"):
            _set_token_cookie(response, REFRESH_COOKIE, data["refresh"], settings.SIMPLE_JWT["REFRESH_TOKEN_LIFETIME"])
        if data.get("access"):
            _set_token_cookie(response, ACCESS_COOKIE, data["access"], settings.SIMPLE_JWT["ACCESS_TOKEN_LIFETIME"])
        return response


class LogoutView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        response = Response({"detail": "Logged out"}, status=status.HTTP_200_OK)
        response.delete_cookie(ACCESS_COOKIE, path="/")
        response.delete_cookie(REFRESH_COOKIE, path="/")
        return response
