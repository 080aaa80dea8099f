from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = 'Pending', 'Pending'
    PROCESSING = 'Processing', 'Processing'
    SHIPPED = 'Shipped', 'Shipped'
    DELIVERED = 'Delivered', 'Delivered'
    CANCELLED = 'Cancelled', 'Cancelled'
    RETURNED = 'Returned', 'Returned'
    FAILED = 'Failed', 'Failed'


class PaymentStatus(models.TextChoices):
    UNPAID = 'Unpaid', 'Unpaid'
    PAID = 'Paid', 'Paid'
    REFUNDED = 'Refunded', 'Refunded'
    FAILED = 'Failed', 'Failed'


# Fields an admin may change after checkout.
UPDATABLE_ORDER_FIELDS = ('status', 'paymentStatus', 'trackingNumber', 'shippingAddress')


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes coming back from MongoDB are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str_id(value) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class OrderItem:
    product: str
    quantity: int
    price: float

    @classmethod
    def from_document(cls, doc: dict) -> "OrderItem":
        return cls(
            product=_str_id(doc.get('product')),
            quantity=int(doc.get('quantity', 0)),
            price=float(doc.get('price', 0)),
        )

    def to_dict(self) -> dict:
        return {'product': self.product, 'quantity': self.quantity, 'price': self.price}


@dataclass
class Order:
    """
    One purchase transaction as stored in the 'orders' collection.

    `subtotal` and `total_amount` are fixed when the order is created; admins
    may only touch status and tracking fields afterwards.
    """
    id: ObjectId
    user: ObjectId
    total_amount: float
    status: str = OrderStatus.PENDING
    payment_status: str = PaymentStatus.UNPAID
    order_number: Optional[str] = None
    items: list = field(default_factory=list)
    subtotal: float = 0.0
    shipping_fee: float = 0.0
    shipping_address: Optional[dict] = None
    tracking_number: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[ObjectId] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict) -> "Order":
        return cls(
            id=doc.get('_id'),
            user=doc.get('user'),
            total_amount=float(doc.get('totalAmount') or 0),
            status=doc.get('status', OrderStatus.PENDING),
            payment_status=doc.get('paymentStatus', PaymentStatus.UNPAID),
            order_number=doc.get('orderNumber'),
            items=[OrderItem.from_document(item) for item in doc.get('items', [])],
            subtotal=float(doc.get('subtotal') or 0),
            shipping_fee=float(doc.get('shippingFee') or 0),
            shipping_address=doc.get('shippingAddress'),
            tracking_number=doc.get('trackingNumber'),
            is_deleted=bool(doc.get('isDeleted', False)),
            deleted_at=as_utc(doc.get('deletedAt')),
            deleted_by=doc.get('deletedBy'),
            created_at=as_utc(doc.get('createdAt')),
            updated_at=as_utc(doc.get('updatedAt')),
        )

    def to_document(self) -> dict:
        doc = {
            'orderNumber': self.order_number,
            'user': self.user,
            'items': [
                {'product': ObjectId(item.product) if ObjectId.is_valid(item.product) else item.product,
                 'quantity': item.quantity,
                 'price': item.price}
                for item in self.items
            ],
            'subtotal': self.subtotal,
            'shippingFee': self.shipping_fee,
            'totalAmount': self.total_amount,
            'status': str(self.status),
            'paymentStatus': str(self.payment_status),
            'shippingAddress': self.shipping_address,
            'trackingNumber': self.tracking_number,
            'isDeleted': self.is_deleted,
            'deletedAt': self.deleted_at,
            'deletedBy': self.deleted_by,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }
        if self.id is not None:
            doc['_id'] = self.id
        return doc

    def to_dict(self) -> dict:
        return {
            '_id': _str_id(self.id),
            'orderNumber': self.order_number,
            'user': _str_id(self.user),
            'items': [item.to_dict() for item in self.items],
            'subtotal': self.subtotal,
            'shippingFee': self.shipping_fee,
            'totalAmount': self.total_amount,
            'status': str(self.status),
            'paymentStatus': str(self.payment_status),
            'shippingAddress': self.shipping_address,
            'trackingNumber': self.tracking_number,
            'createdAt': _isoformat(self.created_at),
            'updatedAt': _isoformat(self.updated_at),
        }

    def __str__(self):
        return f"Order {self.order_number or self.id} for user {self.user} - {self.status}"


@dataclass
class UserProfile:
    """Display attributes of a user; the password is never loaded."""
    id: ObjectId
    role: str = 'customer'
    first_name: str = ''
    last_name: str = ''
    email: str = ''
    phone: str = ''
    image_url: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_document(cls, doc: dict) -> "UserProfile":
        return cls(
            id=doc.get('_id'),
            role=doc.get('role') or 'customer',
            first_name=doc.get('firstName') or '',
            last_name=doc.get('lastName') or '',
            email=doc.get('email') or '',
            phone=doc.get('phone') or '',
            image_url=doc.get('imageUrl'),
        )
