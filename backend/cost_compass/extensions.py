# Overview: Flask extension instances for database, migrations, permission cache and notification bus.
# Each object is created unbound here and attached to the app in create_app() via init_app().

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.notification_bus import NotificationBus
from .services.permission_cache import PermissionCache

db = SQLAlchemy()
migrate = Migrate()
permission_cache = PermissionCache()
notification_bus = NotificationBus()
