from .db import db, atomic
from .user import User, Role, user_roles
from .auth_session import AuthSession
from .audit_log import AuditLog
from .center import InspectionCenter
from .car import Car
from .slot import TimeSlot
from .booking import Booking, BookingStatus
from .payment import Payment, PaymentStatus
from .payment_callback import PaymentCallback
from .notification import Notification
