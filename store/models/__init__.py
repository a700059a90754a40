# store/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from store.models.user import User  # noqa: F401
from store.models.wallet import WalletLedger  # noqa: F401
from store.models.coupon import Coupon, CouponType, CouponUsage  # noqa: F401
from store.models.order import Order, OrderStatus  # noqa: F401
from store.models.payment import PaymentProvider, PaymentRequest, PaymentStatus  # noqa: F401
from store.models.price import CryptoPrice  # noqa: F401
