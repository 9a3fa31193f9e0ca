from app.schemas.cart import CartItemUpdate, CartLine, CartResponse
from app.schemas.coupon import (
    CouponCreate,
    CouponResponse,
    CouponValidateRequest,
    CouponValidateResponse,
)
from app.schemas.order import (
    OrderDetailResponse,
    OrderItemResponse,
    OrderListItem,
    OrderMetricsResponse,
    OrderResponse,
    OrderStatusEventResponse,
    OrderStatusUpdate,
)
from app.schemas.payment import (
    Address,
    CheckoutSummaryResponse,
    CreatePaymentOrderRequest,
    CreatePaymentOrderResponse,
    RetryPaymentRequest,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from app.schemas.recovery import (
    AttemptResponse,
    CampaignResponse,
    CampaignUpdate,
    DiscountResponse,
    JourneyListItem,
    JourneyResponse,
    JourneyTimelineResponse,
    MaintenanceSummary,
    ProcessRequest,
    ProcessSummary,
    RecoveryInsightsResponse,
)

__all__ = [
    "Address",
    "AttemptResponse",
    "CampaignResponse",
    "CampaignUpdate",
    "CartItemUpdate",
    "CartLine",
    "CartResponse",
    "CheckoutSummaryResponse",
    "CouponCreate",
    "CouponResponse",
    "CouponValidateRequest",
    "CouponValidateResponse",
    "CreatePaymentOrderRequest",
    "CreatePaymentOrderResponse",
    "DiscountResponse",
    "JourneyListItem",
    "JourneyResponse",
    "JourneyTimelineResponse",
    "MaintenanceSummary",
    "OrderDetailResponse",
    "OrderItemResponse",
    "OrderListItem",
    "OrderMetricsResponse",
    "OrderResponse",
    "OrderStatusEventResponse",
    "OrderStatusUpdate",
    "ProcessRequest",
    "ProcessSummary",
    "RecoveryInsightsResponse",
    "RetryPaymentRequest",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
    "WebhookAck",
]
