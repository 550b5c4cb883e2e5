# Overview: Flask extension instances for database, migrations, and order signals.

from blinker import Namespace
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

# Order change notifications. Senders are order ids so a listener can
# subscribe to one order document.
order_signals = Namespace()
order_updated = order_signals.signal("order-updated")
