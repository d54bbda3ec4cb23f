"""
Custom permission classes for the Farm Equipment Rental Marketplace.
"""

from rest_framework import permissions


class IsFarmer(permissions.BasePermission):
    """
    Allows only users with user_type='farmer'.

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, IsFarmer]
    """

    message = 'Only farmers can perform this action.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        return getattr(request.user, 'user_type', None) == 'farmer'


class IsProvider(permissions.BasePermission):
    """
    Allows only users with user_type='provider'.

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, IsProvider]
    """

    message = 'Only equipment providers can perform this action.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        return getattr(request.user, 'user_type', None) == 'provider'
