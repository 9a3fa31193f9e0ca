from app.repositories.cart_candidate_repository import CartCandidateRepository
from app.repositories.cart_repository import CartRepository
from app.repositories.coupon_repository import CouponRepository
from app.repositories.inventory_reservation_repository import InventoryReservationRepository
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_attempt_repository import PaymentAttemptRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.recovery_attempt_repository import RecoveryAttemptRepository
from app.repositories.recovery_campaign_repository import RecoveryCampaignRepository
from app.repositories.recovery_discount_repository import RecoveryDiscountRepository
from app.repositories.recovery_journey_repository import RecoveryJourneyRepository
from app.repositories.shipping_repository import ShippingRepository
from app.repositories.user_repository import UserRepository
from app.repositories.webhook_event_repository import WebhookEventRepository

__all__ = [
    "CartCandidateRepository",
    "CartRepository",
    "CouponRepository",
    "InventoryReservationRepository",
    "OrderRepository",
    "PaymentAttemptRepository",
    "ProductRepository",
    "RecoveryAttemptRepository",
    "RecoveryCampaignRepository",
    "RecoveryDiscountRepository",
    "RecoveryJourneyRepository",
    "ShippingRepository",
    "UserRepository",
    "WebhookEventRepository",
]
