from .health import health_bp
from .auth import auth_bp
from .slots import slots_bp
from .booking import booking_bp
from .payments import payments_bp
from .cmi_callback import callback_bp
from .pay_pages import pay_pages_bp
from .audit_logs import audit_bp
