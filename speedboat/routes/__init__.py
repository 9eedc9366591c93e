from speedboat.routes.health import health_bp
from speedboat.routes.auth import auth_bp
from speedboat.routes.profile import profile_bp
from speedboat.routes.ports import ports_bp
from speedboat.routes.ships import ships_bp
from speedboat.routes.sea_routes import sea_routes_bp
from speedboat.routes.schedules import schedules_bp
from speedboat.routes.bookings import bookings_bp
from speedboat.routes.payments import payments_bp
from speedboat.routes.tickets import tickets_bp
from speedboat.routes.admin_users import admin_users_bp
from speedboat.routes.admin_analytics import admin_analytics_bp
from speedboat.routes.admin_payments import admin_payments_bp

__all__ = [
    'health_bp', 'auth_bp', 'profile_bp', 'ports_bp', 'ships_bp', 'sea_routes_bp',
    'schedules_bp', 'bookings_bp', 'payments_bp', 'tickets_bp',
    'admin_users_bp', 'admin_analytics_bp', 'admin_payments_bp'
]
