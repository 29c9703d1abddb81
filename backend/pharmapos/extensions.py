# Overview: Flask extension instances for database, migrations, and stock locks.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .locks import StockLockRegistry

db = SQLAlchemy()
migrate = Migrate()
stock_locks = StockLockRegistry()
