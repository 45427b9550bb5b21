"""
Authentication REST API views.

Login exchanges credentials for a JWT; every other endpoint expects it in
the Authorization header together with X-TENANT-ID.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.logging import SecurityLogger
from apps.rbac.services import AuthService
from apps.rbac.serializers import LoginSerializer


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password and receive a JWT.

**No authentication required** - this is a public endpoint.
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Login Request',
            value={
                'email': 'user@example.com',
                'password': 'SecurePass123!'
            },
            request_only=True
        ),
        OpenApiExample(
            'Success Response',
            value={
                'user': {
                    'id': '123e4567-e89b-12d3-a456-426614174000',
                    'email': 'user@example.com',
                    'first_name': 'John',
                    'last_name': 'Doe',
                    'full_name': 'John Doe',
                },
                'token': 'eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...',
            },
            response_only=True
        ),
    ]
)
class LoginView(APIView):
    """
    POST /v1/auth/login

    Authenticate user and return JWT token.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = AuthService.login(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password']
        )

        if not result:
            SecurityLogger.log_failed_login(
                email=serializer.validated_data['email'],
                ip_address=request.META.get('REMOTE_ADDR', 'unknown'),
                reason='Invalid credentials'
            )
            return Response(
                {
                    'error': {
                        'code': 'INVALID_CREDENTIALS',
                        'message': 'Invalid email or password',
                    }
                },
                status=status.HTTP_401_UNAUTHORIZED
            )

        user = result['user']
        return Response(
            {
                'user': {
                    'id': str(user.id),
                    'email': user.email,
                    'first_name': user.first_name,
                    'last_name': user.last_name,
                    'full_name': user.get_full_name(),
                },
                'token': result['token'],
            },
            status=status.HTTP_200_OK
        )
