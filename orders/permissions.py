import enum
import logging
from dataclasses import dataclass
from functools import wraps

import jwt
from bson import ObjectId
from django.conf import settings
from django.db import models
from django.http import JsonResponse

from . import services
from .models import UserProfile

logger = logging.getLogger(__name__)


class Role(models.TextChoices):
    CUSTOMER = 'customer', 'Customer'
    DOCTOR = 'doctor', 'Doctor'
    INFLUENCER = 'influencer', 'Influencer'
    ADMIN = 'admin', 'Admin'
    SUPER_ADMIN = 'super_admin', 'Super admin'

    @classmethod
    def parse(cls, value):
        """Unknown roles get the least privileged one."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown role '{value}', treating as {cls.CUSTOMER.label}.")
            return cls.CUSTOMER


class Capability(enum.Enum):
    PLACE_ORDERS = 'place_orders'
    VIEW_OWN_ORDERS = 'view_own_orders'
    VIEW_ALL_ORDERS = 'view_all_orders'
    MANAGE_ORDERS = 'manage_orders'
    VIEW_ORDER_REPORTS = 'view_order_reports'


_SHOPPER = frozenset({Capability.PLACE_ORDERS, Capability.VIEW_OWN_ORDERS})
_STAFF = _SHOPPER | {Capability.VIEW_ALL_ORDERS, Capability.MANAGE_ORDERS, Capability.VIEW_ORDER_REPORTS}

ROLE_CAPABILITIES = {
    Role.CUSTOMER: _SHOPPER,
    Role.DOCTOR: _SHOPPER,
    Role.INFLUENCER: _SHOPPER,
    Role.ADMIN: _STAFF,
    Role.SUPER_ADMIN: _STAFF,
}


@dataclass
class Caller:
    """The authenticated user behind a request."""
    profile: UserProfile
    role: Role

    @property
    def id(self) -> ObjectId:
        return self.profile.id

    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, frozenset())


def _unauthorized(message):
    return JsonResponse({'success': False, 'message': message}, status=401)


def login_required(view):
    """
    Verifies the `Authorization: Bearer <jwt>` header against the shared secret,
    loads the user named by the token's `id` (or `_id`) claim and attaches it
    to the request as `request.caller`.
    """
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            logger.warning("login_required: Missing or invalid Authorization header")
            return _unauthorized("Could not find authentication token. Please log in again.")

        token = auth_header[len('Bearer '):].strip()
        if not token:
            return _unauthorized("Token missing")

        if not settings.JWT_SECRET:
            logger.error("JWT_SECRET is not configured; cannot verify tokens.")
            return JsonResponse({'success': False, 'message': "Authentication is not configured."}, status=500)

        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=settings.JWT_ALGORITHMS)
        except jwt.InvalidTokenError as e:
            logger.warning(f"login_required: Rejected token: {e}")
            return _unauthorized("Invalid or expired token")

        raw_id = payload.get('id') or payload.get('_id')
        if not raw_id or not ObjectId.is_valid(str(raw_id)):
            logger.warning("login_required: Token carries no usable user id")
            return _unauthorized("Invalid or expired token")

        try:
            profile = services.get_order_store().get_user(ObjectId(str(raw_id)))
        except Exception as e:
            logger.error(f"login_required: Failed to load user {raw_id}: {e}")
            return JsonResponse({'success': False, 'message': "Failed to authenticate user.", 'error': str(e)}, status=500)

        if profile is None:
            logger.warning(f"login_required: User not found for token ID: {raw_id}")
            return _unauthorized("User not found")

        request.caller = Caller(profile=profile, role=Role.parse(profile.role))
        return view(request, *args, **kwargs)

    return wrapper


def capability_required(capability, message):
    """Answers 403 with `message` unless the caller's role grants `capability`. Needs login_required first."""
    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            caller = request.caller
            if not caller.can(capability):
                logger.warning(f"User {caller.id} with role {caller.role} denied {capability.value}")
                return JsonResponse({'success': False, 'message': message}, status=403)
            return view(request, *args, **kwargs)
        return wrapper
    return decorator
