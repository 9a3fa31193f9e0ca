from app.models.cart_candidate import CartCandidate
from app.models.cart_item import CartItem
from app.models.coupon import Coupon, CouponRedemption, CouponScope, CouponType, CouponUserTarget
from app.models.inventory_reservation import InventoryReservation, ReservationStatus
from app.models.order import Order, OrderItem, OrderPaymentStatus, OrderStatus, OrderStatusEvent
from app.models.payment_attempt import PaymentAttempt, PaymentAttemptStatus
from app.models.product import Product, ProductCategory, ProductStatus, ProductVariant
from app.models.recovery_attempt import AttemptStatus, RecoveryAttempt
from app.models.recovery_campaign import RecoveryCampaign
from app.models.recovery_discount import DiscountStatus, RecoveryDiscount
from app.models.recovery_journey import JourneyStatus, RecoveryJourney
from app.models.shipping_zone import ShippingConditionType, ShippingOption, ShippingZone
from app.models.user import User
from app.models.webhook_event import GatewayWebhookEvent, WebhookEventStatus

__all__ = [
    "AttemptStatus",
    "CartCandidate",
    "CartItem",
    "Coupon",
    "CouponRedemption",
    "CouponScope",
    "CouponType",
    "CouponUserTarget",
    "DiscountStatus",
    "GatewayWebhookEvent",
    "InventoryReservation",
    "JourneyStatus",
    "Order",
    "OrderItem",
    "OrderPaymentStatus",
    "OrderStatus",
    "OrderStatusEvent",
    "PaymentAttempt",
    "PaymentAttemptStatus",
    "Product",
    "ProductCategory",
    "ProductStatus",
    "ProductVariant",
    "RecoveryAttempt",
    "RecoveryCampaign",
    "RecoveryDiscount",
    "RecoveryJourney",
    "ReservationStatus",
    "ShippingConditionType",
    "ShippingOption",
    "ShippingZone",
    "User",
    "WebhookEventStatus",
]
